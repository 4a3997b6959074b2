"""
Celery application: broker on Valkey, beat schedule of the periodic tasks.

Workers run async SQLAlchemy code through ``asyncio.run`` inside each task,
so the engine globals must never cross a fork.
"""

import asyncio
import logging
import ssl

from celery import Celery, signals
from celery.schedules import crontab

from refdesk.config import settings

logger = logging.getLogger(__name__)


@signals.worker_process_init.connect
def reset_engine_after_fork(**kwargs):
    """Drop the engine inherited from the parent; the child builds its own."""
    import refdesk.db.session as session_module

    session_module._engine = None
    session_module._AsyncSessionLocal = None
    logger.info("Worker process started with a fresh database engine")


@signals.worker_process_shutdown.connect
def dispose_engine_on_exit(**kwargs):
    import refdesk.db.session as session_module

    if session_module._engine is None:
        return
    try:
        asyncio.run(session_module.dispose_engine())
    except Exception as e:
        logger.error(f"Error disposing database engine during shutdown: {e}")


def _valkey_url() -> str:
    """redis:// URL of the Valkey instance; rediss:// when an auth token is set."""
    if settings.valkey_auth_token:
        return (
            f"rediss://:{settings.valkey_auth_token}@{settings.valkey_host}:"
            f"{settings.valkey_port}/{settings.valkey_db}?ssl_cert_reqs=CERT_REQUIRED"
        )
    return f"redis://{settings.valkey_host}:{settings.valkey_port}/{settings.valkey_db}"


broker_url = settings.celery_broker_url or _valkey_url()
result_backend = settings.celery_result_backend or broker_url

celery_app = Celery(
    "refdesk",
    broker=broker_url,
    backend=result_backend,
)

_ssl_conf = {}
if settings.valkey_auth_token:
    _ssl_conf = {
        "broker_use_ssl": {"ssl_cert_reqs": ssl.CERT_REQUIRED},
        "redis_backend_use_ssl": {"ssl_cert_reqs": ssl.CERT_REQUIRED},
    }

celery_app.conf.update(
    task_serializer=settings.celery_task_serializer,
    result_serializer=settings.celery_result_serializer,
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # A job message is only acknowledged once its worker returned
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    **_ssl_conf,
    beat_schedule={
        "job-reconciler": {
            "task": "job_reconciler.reconcile_pending_jobs",
            "schedule": 30.0,
        },
        "job-reaper": {
            "task": "job_reaper.reap_expired_leases",
            "schedule": 60.0,
        },
        "mission-order-batches": {
            "task": "mission_order_batches.process_pending",
            "schedule": 30.0,
        },
        "export-jobs": {
            "task": "exports.process_pending",
            "schedule": 30.0,
        },
        "job-cleanup": {
            "task": "job_cleanup.cleanup_old_jobs",
            "schedule": crontab(hour=0, minute=0),  # Daily at midnight UTC
        },
    },
)

celery_app.autodiscover_tasks(["refdesk.tasks"])


def get_celery_app() -> Celery:
    return celery_app
