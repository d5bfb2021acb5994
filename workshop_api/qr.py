import io
from urllib.parse import urlencode

import qrcode
from qrcode.constants import ERROR_CORRECT_H

from workshop_api.config import PUBLIC_BASE_URL

QR_FILL_COLOR = "#0F172A"
QR_BACK_COLOR = "#FFFFFF"


# Purpose: Build the URL a student device opens after scanning a token QR.
def token_url(path: str, token: str) -> str:
    return f"{PUBLIC_BASE_URL.rstrip('/')}/{path.lstrip('/')}?{urlencode({'token': token})}"


# Purpose: Render a QR PNG image for a token link.
def build_qr_png(data: str) -> bytes:
    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_CORRECT_H,
        box_size=10,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)

    image = qr.make_image(fill_color=QR_FILL_COLOR, back_color=QR_BACK_COLOR)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
