"""
Valkey lock that keeps periodic Celery tasks from overlapping.

Beat fires the reconciler, reaper and batch/export processors on short
intervals; a run that is still busy when the next tick arrives makes the
new run return a "skipped" result instead of doing the work twice.
"""

import logging
from collections.abc import Callable
from contextlib import contextmanager
from functools import wraps
from typing import Any

from valkey import Valkey

from refdesk.config import settings

logger = logging.getLogger(__name__)

LOCK_PREFIX = "celery:lock:"


def get_valkey_client() -> Valkey:
    return Valkey(
        host=settings.valkey_host,
        port=settings.valkey_port,
        db=settings.valkey_db,
        password=settings.valkey_auth_token or None,
        ssl=bool(settings.valkey_auth_token),
        decode_responses=False,
    )


@contextmanager
def acquire_task_lock(lock_name: str, blocking: bool = False):
    """
    Yield True when the lock named ``lock_name`` was taken, False otherwise.

    The lock expires after ``settings.task_lock_timeout_seconds`` so a killed
    worker cannot hold it forever; it is released as soon as the body exits.
    """
    lock = get_valkey_client().lock(
        f"{LOCK_PREFIX}{lock_name}",
        timeout=settings.task_lock_timeout_seconds,
        blocking_timeout=0,
    )

    acquired = False
    try:
        acquired = lock.acquire(blocking=blocking)
        if not acquired:
            logger.info(f"Task {lock_name} already running, lock not acquired")
        yield acquired
    finally:
        if acquired:
            try:
                lock.release()
            except Exception as e:
                logger.warning(f"Error releasing lock for task {lock_name}: {e}")


def with_task_lock(lock_name: str | None = None, blocking: bool = False):
    """Decorator form of acquire_task_lock for periodic task functions."""

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            name = lock_name or func.__name__
            with acquire_task_lock(name, blocking=blocking) as acquired:
                if not acquired:
                    return {
                        "status": "skipped",
                        "reason": "previous_task_still_running",
                        "message": f"Task {name} is already running, skipped this execution",
                    }
                return func(*args, **kwargs)

        return wrapper

    return decorator
