import logging.config

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from parley.realtime import shutdown_realtime, startup_realtime

from app.api.routes import router as api_router
from app.api.ws import router as ws_router
from app.config import get_settings
from app.services.errors import ChatError


LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        }
    },
    "handlers": {
        "default": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        }
    },
    "root": {
        "handlers": ["default"],
        "level": "INFO",
    },
    "loggers": {
        "parley.realtime.transport": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        }
    },
}


logging.config.dictConfig(LOGGING_CONFIG)

logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin).rstrip("/") for origin in settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    logger.debug("%s %s rejected: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.get("/health", tags=["system"])
def health_check() -> dict[str, str]:
    """Simple health check endpoint."""
    return {"status": "ok", "environment": settings.environment}


@app.on_event("startup")
async def _startup() -> None:
    await startup_realtime()


@app.on_event("shutdown")
async def _shutdown() -> None:
    await shutdown_realtime()


app.include_router(api_router, prefix="/api")
app.include_router(ws_router)
