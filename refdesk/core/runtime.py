"""
Worker runtime - the lifecycle contract shared by every job worker.

A worker run enters ``processing``, folds over its units, and ends with
exactly one terminal write. Per-unit errors are collected into an immutable
FoldResult and only turned into progress numbers at the store boundary.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from refdesk.config import settings
from refdesk.core.exceptions import WORKER_ERROR_CODE
from refdesk.core.job_store import JobStore, lease_deadline
from refdesk.db.session import dispose_engine, get_session_local
from refdesk.models.jobs import JobStatus

logger = logging.getLogger(__name__)

SKIPPED = "skipped"


@dataclass(frozen=True)
class UnitFailure:
    unit: Any
    error: str


@dataclass(frozen=True)
class FoldResult:
    succeeded: tuple = ()
    failed: tuple[UnitFailure, ...] = ()

    @property
    def processed(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def all_failed(self) -> bool:
        return bool(self.failed) and not self.succeeded

    def with_success(self, value: Any) -> "FoldResult":
        return FoldResult(self.succeeded + (value,), self.failed)

    def with_failure(self, failure: UnitFailure) -> "FoldResult":
        return FoldResult(self.succeeded, self.failed + (failure,))


async def fold_units(
    units: Iterable[Any],
    handler: Callable[[Any], Awaitable[Any]],
    on_unit: Callable[[FoldResult], Awaitable[None]] | None = None,
) -> FoldResult:
    """
    Run ``handler`` over ``units`` in order, tolerating per-unit failures.

    Args:
        units: Units of work, processed in the order given
        handler: Async callable for one unit; its return value is collected
        on_unit: Called with the accumulated result after every unit

    Returns:
        FoldResult with one entry per unit, in either ``succeeded`` or ``failed``
    """
    acc = FoldResult()
    for unit in units:
        try:
            value = await handler(unit)
        except Exception as exc:
            logger.warning(f"Unit {unit!r} failed: {exc}")
            acc = acc.with_failure(UnitFailure(unit=unit, error=str(exc)))
        else:
            acc = acc.with_success(value)
        if on_unit is not None:
            await on_unit(acc)
    return acc


class JobRun:
    """Writes of one worker run against its job row, one transaction each."""

    def __init__(
        self,
        record: dict[str, Any],
        session_factory,
        lease_seconds: int | None = None,
    ):
        self.record = record
        self.job_id = uuid.UUID(str(record["id"]))
        self.session_factory = session_factory
        self.lease_seconds = lease_seconds or settings.job_lease_seconds
        self.outcome: str | None = None

    @property
    def payload(self) -> dict[str, Any]:
        return self.record.get("payload") or {}

    @property
    def actor_id(self) -> str:
        return str(self.record["created_by"])

    async def _write(self, operation: Callable[[JobStore], Awaitable[bool]]) -> bool:
        async with self.session_factory() as session:
            updated = await operation(JobStore(session))
            await session.commit()
            return updated

    async def begin(self) -> bool:
        """Enter processing; False when the job is already terminal."""
        return await self._write(
            lambda store: store.update_status(
                self.job_id,
                JobStatus.PROCESSING,
                lease_expires_at=lease_deadline(self.lease_seconds),
            )
        )

    async def advance(self, progress: int) -> bool:
        return await self._write(
            lambda store: store.advance_progress(
                self.job_id, progress, lease_seconds=self.lease_seconds
            )
        )

    async def track(self, fold: FoldResult) -> None:
        await self.advance(fold.processed)

    async def complete(
        self,
        result: dict[str, Any],
        artifact_path: str | None = None,
        progress: int | None = None,
    ) -> bool:
        fields: dict[str, Any] = {"result": result}
        if artifact_path is not None:
            fields["artifact_path"] = artifact_path
        if progress is not None:
            fields["progress"] = progress
        updated = await self._write(
            lambda store: store.update_status(self.job_id, JobStatus.COMPLETED, **fields)
        )
        self._settle(updated, JobStatus.COMPLETED)
        if updated:
            logger.info(f"Job {self.job_id} completed: {result}")
        return updated

    async def fail(self, message: str, code: str = WORKER_ERROR_CODE) -> bool:
        updated = await self._write(
            lambda store: store.update_status(
                self.job_id,
                JobStatus.FAILED,
                error_message=message,
                error_code=code,
            )
        )
        self._settle(updated, JobStatus.FAILED)
        if updated:
            logger.warning(f"Job {self.job_id} failed ({code}): {message}")
        return updated

    def _settle(self, updated: bool, status: JobStatus) -> None:
        # The outcome is what the row holds; a lost write leaves it as it was
        if updated:
            self.outcome = status.value
        else:
            self.outcome = SKIPPED
            logger.info(
                f"Ignored {status.value} write for job {self.job_id}: no longer active"
            )


async def execute_job(
    record: dict[str, Any],
    body: Callable[[JobRun], Awaitable[None]],
) -> dict[str, Any]:
    """
    Run a worker body against a job record and never raise.

    The body is expected to end the job with ``run.complete`` or ``run.fail``;
    an exception escaping it fails the job with its message.
    """
    run = JobRun(record, get_session_local())
    try:
        if not await run.begin():
            logger.info(f"Job {run.job_id} is no longer active, skipping")
            return {"status": SKIPPED, "job_id": str(run.job_id)}

        await body(run)
        if run.outcome is None:
            await run.fail("Worker finished without a result")
        return {"status": run.outcome, "job_id": str(run.job_id)}

    except Exception as exc:
        logger.error(f"Job {run.job_id} crashed: {exc}", exc_info=True)
        code = getattr(exc, "code", WORKER_ERROR_CODE)
        try:
            await run.fail(str(exc) or exc.__class__.__name__, code)
        except Exception as write_exc:
            logger.error(f"Could not record failure of job {run.job_id}: {write_exc}")
        return {
            "status": run.outcome or JobStatus.FAILED.value,
            "job_id": str(run.job_id),
            "error": str(exc),
        }
    finally:
        # Dispose so the next asyncio.run in this worker gets a fresh engine
        await dispose_engine()
