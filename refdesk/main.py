"""
refdesk API entry point.

Serves job submission and status endpoints; all job work runs in the
Celery workers started from ``refdesk.celery_worker``.
"""

import logging
from logging import Filter, getLogger

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from refdesk.api.v1.helpers.responses import error_body
from refdesk.api.v1.router import api_router
from refdesk.celery_app import get_celery_app
from refdesk.config import settings
from refdesk.core.exceptions import JobPipelineError

logger = getLogger(__name__)
logger.setLevel(logging.INFO)


class HealthCheckFilter(Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.getMessage().find("/health") == -1


logging.getLogger("uvicorn.access").addFilter(HealthCheckFilter())


app = FastAPI(title=settings.app_name, debug=settings.debug, redirect_slashes=False)


@app.on_event("startup")
async def startup_event():
    logger.info("--- Starting refdesk API ---")
    app.state.celery_app = get_celery_app()
    logger.info("--- refdesk startup completed ---")


@app.on_event("shutdown")
async def shutdown_event():
    try:
        logger.info("--- Server shutting down! ---")

        from refdesk.db.session import dispose_engine

        await dispose_engine()
        logger.info("--- Database connections closed. ---")
    except Exception as e:
        logger.error(f"Warning: Error during shutdown: {e}")


@app.exception_handler(JobPipelineError)
async def job_pipeline_error_handler(request: Request, exc: JobPipelineError):
    logger.info(f"{request.method} {request.url.path} rejected: {exc.code}: {exc.message}")
    return error_body(exc.message)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
