import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from filebox import __version__
from filebox.api.middleware.logging import RequestLoggingMiddleware
from filebox.api.routes.intake import router as intake_router
from filebox.config import get_settings

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    """Configure root logging from the ``log_level`` setting."""
    logging.basicConfig(
        level=level or get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


configure_logging()

app = FastAPI(
    title="FileBox API",
    description="Secure file intake, screening and archiving",
    version=__version__,
    docs_url="/v1/docs",
    openapi_url="/v1/openapi.json",
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(intake_router)


@app.get("/healthz", tags=["health"])
async def health_check() -> JSONResponse:
    return JSONResponse({"status": "ok"})


@app.on_event("startup")
async def startup_event() -> None:
    settings = get_settings()
    logger.info(
        "FileBox API starting up environment=%s scanner_enabled=%s remote_endpoint=%s",
        settings.environment,
        settings.scanner_enabled,
        settings.scanner_remote_endpoint or "-",
    )


@app.on_event("shutdown")
async def shutdown_event() -> None:
    logger.info("FileBox API shutting down")
