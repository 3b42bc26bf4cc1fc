import logging
import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from openpulpit.app.api import routes_jobs
from openpulpit.domain.services.job_service import get_settings
from openpulpit.logging_setup import setup_logging

settings = get_settings()
setup_logging(settings.log_level)

logger = logging.getLogger("uvicorn.access")

app = FastAPI(title="OpenPulpit API", version="0.1.0")


class LogRequestsMiddleware(BaseHTTPMiddleware):
    """Log uploads as soon as they arrive, then again with status and time once answered."""

    async def dispatch(self, request, call_next):
        started = time.perf_counter()
        if request.method == "POST":
            logger.info("Upload started: %s", request.url.path)
        response = await call_next(request)
        logger.info(
            "%s %s -> %d in %.0f ms",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response


app.add_middleware(LogRequestsMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    # credentials cannot be combined with a wildcard origin
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(routes_jobs.router)


@app.get("/health")
async def health():
    return {"status": "ok"}
