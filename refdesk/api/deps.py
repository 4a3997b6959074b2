"""
Shared FastAPI dependencies.

Each is a seam that tests override through ``app.dependency_overrides``.
"""

from functools import lru_cache

from celery import Celery
from fastapi import Depends, Request

from refdesk.celery_app import get_celery_app
from refdesk.core.dispatch import DispatchTrigger
from refdesk.core.job_kinds import JobKindRegistry, default_registry
from refdesk.db.session import get_session_local
from refdesk.services.storage import BlobStorage, get_storage


@lru_cache
def get_registry() -> JobKindRegistry:
    return default_registry()


def get_session_factory():
    """Session factory for work that outlives the request session."""
    return get_session_local()


def get_celery(request: Request) -> Celery:
    return getattr(request.app.state, "celery_app", None) or get_celery_app()


def get_dispatch_trigger(
    registry: JobKindRegistry = Depends(get_registry),
    celery_app: Celery = Depends(get_celery),
) -> DispatchTrigger:
    return DispatchTrigger(registry, celery_app)


def get_blob_storage() -> BlobStorage:
    return get_storage()
