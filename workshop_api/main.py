import asyncio
from contextlib import asynccontextmanager, suppress
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from workshop_api.config import (
    ATTENDANCE_TOKEN_TTL_SECONDS,
    LOG_LEVEL,
    MAX_UPLOAD_BYTES,
    TOKEN_PURGE_INTERVAL_SECONDS,
    UPLOAD_DIR,
)
from workshop_api.db import Base, engine
from workshop_api.errors import RegistrationError, StorageUnavailable, ValidationError
from workshop_api.routers.admin import router as admin_router
from workshop_api.routers.admin_workshops import router as admin_workshops_router
from workshop_api.routers.attendance import router as attendance_router
from workshop_api.routers.registration import router as registration_router
from workshop_api.routers.spot import router as spot_router
from workshop_api.routers.workshops import router as workshops_router
from workshop_api.storage import LocalBlobStore
from workshop_api.tokens import AttendanceTokenBroker, InMemoryTokenStore

logger = logging.getLogger(__name__)


# Purpose: Configure process-wide logging for the API.
def configure_logging() -> None:
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# Purpose: Drop expired attendance tokens on a fixed interval.
async def purge_tokens_periodically(broker: AttendanceTokenBroker, interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        purged = broker.purge_expired()
        if purged:
            logger.info("Purged %s expired attendance tokens", purged)


@asynccontextmanager
# Purpose: Create tables and the upload root, then run the token purge task for the app lifetime.
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    app.state.blob_store.root.mkdir(parents=True, exist_ok=True)
    purge_task = asyncio.create_task(
        purge_tokens_periodically(app.state.token_broker, TOKEN_PURGE_INTERVAL_SECONDS)
    )
    logger.info("Workshop registration API started")

    yield

    purge_task.cancel()
    with suppress(asyncio.CancelledError):
        await purge_task
    logger.info("Workshop registration API stopped")


configure_logging()

app = FastAPI(title="Workshop Registration API", lifespan=lifespan)
app.state.token_broker = AttendanceTokenBroker(InMemoryTokenStore(), ATTENDANCE_TOKEN_TTL_SECONDS)
app.state.blob_store = LocalBlobStore(UPLOAD_DIR, MAX_UPLOAD_BYTES)


@app.exception_handler(RegistrationError)
# Purpose: Render domain rejections as {"detail", "kind"} with their HTTP status.
async def registration_error_handler(request: Request, exc: RegistrationError) -> JSONResponse:
    content = {"detail": exc.message, "kind": exc.kind}
    if isinstance(exc, ValidationError) and exc.field:
        content["field"] = exc.field
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(OperationalError)
# Purpose: Render a lost database connection as 503 storage_unavailable.
async def storage_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error("Database unavailable on %s %s: %s", request.method, request.url.path, exc.orig)
    error = StorageUnavailable("Storage is temporarily unavailable. Please try again.")
    return JSONResponse(status_code=error.status_code, content={"detail": error.message, "kind": error.kind})


app.include_router(workshops_router)
app.include_router(registration_router)
app.include_router(spot_router)
app.include_router(attendance_router)
app.include_router(admin_workshops_router)
app.include_router(admin_router)
