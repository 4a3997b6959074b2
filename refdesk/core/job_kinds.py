"""
Job-kind registry.

Maps every JobKind to the shape of its payload, the Celery task that
executes it and the number of units it declares. The registry is handed to
the submission service and the dispatch trigger explicitly; it refuses to
build unless every JobKind has exactly one entry.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from refdesk.core.dedupe import normalize_orders
from refdesk.core.exceptions import InvalidJobPayload, UnknownJobKind


class JobKind(str, Enum):
    MISSION_ORDERS_BULK_PDF = "mission_orders.bulk_pdf"
    MISSION_ORDERS_SINGLE_PDF = "mission_orders.single_pdf"
    MISSION_ORDERS_SINGLE_EMAIL = "mission_orders.single_email"
    MATCH_SHEETS_BULK_EMAIL = "match_sheets.bulk_email"
    MESSAGING_BULK_EMAIL = "messaging.bulk_email"


PDF_WORKER = "workers.pdf.generate_mission_orders"
EMAIL_WORKER = "workers.email.send_job_emails"


# ---------------------------------------------------------------------------
# Payload schemas
# ---------------------------------------------------------------------------


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class OrderRef(_Payload):
    match_id: UUID = Field(alias="matchId")
    official_id: UUID = Field(alias="officialId")


class MissionOrdersPayload(_Payload):
    orders: list[OrderRef] = Field(min_length=1)
    file_name: str | None = Field(default=None, alias="fileName", max_length=200)


class SingleMissionOrderPayload(_Payload):
    match_id: UUID = Field(alias="matchId")
    official_id: UUID = Field(alias="officialId")
    file_name: str | None = Field(default=None, alias="fileName", max_length=200)


class SingleEmailPayload(_Payload):
    match_id: UUID = Field(alias="matchId")
    official_id: UUID = Field(alias="officialId")


class MatchSheetsPayload(_Payload):
    match_ids: list[UUID] = Field(alias="matchIds", min_length=1)


class MessagingPayload(_Payload):
    official_ids: list[UUID] = Field(alias="officialIds", min_length=1)
    subject: str | None = Field(default=None, max_length=255)
    message: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class JobKindSpec:
    kind: JobKind
    payload_schema: type[BaseModel]
    worker: str
    unit_count: Callable[[Any], int]
    # Canonical content used for the automatic dedupe key. None for kinds whose
    # repeat is a deliberate new request (e-mails); those dedupe only on a
    # client-supplied request key.
    dedupe_items: Callable[[Any], list] | None = None


class JobKindRegistry:
    def __init__(self, specs: Iterable[JobKindSpec]):
        table: dict[JobKind, JobKindSpec] = {}
        for spec in specs:
            if spec.kind in table:
                raise ValueError(f"Duplicate registry entry for {spec.kind.value}")
            table[spec.kind] = spec

        missing = [kind.value for kind in JobKind if kind not in table]
        if missing:
            raise ValueError(f"No registry entry for job kinds: {', '.join(missing)}")

        self._table = table

    def __contains__(self, job_type: object) -> bool:
        try:
            return JobKind(job_type) in self._table
        except ValueError:
            return False

    def kinds(self) -> list[JobKind]:
        return list(self._table)

    def resolve(self, job_type: str) -> JobKindSpec:
        try:
            kind = JobKind(job_type)
        except ValueError:
            raise UnknownJobKind(str(job_type)) from None
        return self._table[kind]

    def worker_for(self, job_type: str) -> str:
        return self.resolve(job_type).worker

    def validate_payload(self, job_type: str, payload: Any) -> BaseModel:
        """Parse ``payload`` against the kind's schema.

        Raises:
            UnknownJobKind: if ``job_type`` is not registered
            InvalidJobPayload: if the payload does not match the schema
        """
        spec = self.resolve(job_type)
        if not isinstance(payload, dict):
            raise InvalidJobPayload("payload must be an object")
        try:
            return spec.payload_schema.model_validate(payload)
        except ValidationError as exc:
            raise InvalidJobPayload(describe_validation_error(exc)) from None


def describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error["loc"]) or "payload"
        parts.append(f"{location}: {error['msg']}")
    return "Invalid payload: " + "; ".join(parts)


def _order_items(payload: MissionOrdersPayload) -> list:
    orders = [
        {"matchId": str(o.match_id), "officialId": str(o.official_id)}
        for o in payload.orders
    ]
    return [f"{o['matchId']}:{o['officialId']}" for o in normalize_orders(orders)]


def default_registry() -> JobKindRegistry:
    return JobKindRegistry(
        [
            JobKindSpec(
                kind=JobKind.MISSION_ORDERS_BULK_PDF,
                payload_schema=MissionOrdersPayload,
                worker=PDF_WORKER,
                unit_count=lambda p: len(p.orders),
                dedupe_items=_order_items,
            ),
            JobKindSpec(
                kind=JobKind.MISSION_ORDERS_SINGLE_PDF,
                payload_schema=SingleMissionOrderPayload,
                worker=PDF_WORKER,
                unit_count=lambda p: 1,
                dedupe_items=lambda p: [f"{p.match_id}:{p.official_id}"],
            ),
            JobKindSpec(
                kind=JobKind.MISSION_ORDERS_SINGLE_EMAIL,
                payload_schema=SingleEmailPayload,
                worker=EMAIL_WORKER,
                unit_count=lambda p: 1,
            ),
            JobKindSpec(
                kind=JobKind.MATCH_SHEETS_BULK_EMAIL,
                payload_schema=MatchSheetsPayload,
                worker=EMAIL_WORKER,
                unit_count=lambda p: len(p.match_ids),
            ),
            JobKindSpec(
                kind=JobKind.MESSAGING_BULK_EMAIL,
                payload_schema=MessagingPayload,
                worker=EMAIL_WORKER,
                unit_count=lambda p: 1,
            ),
        ]
    )
