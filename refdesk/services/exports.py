"""
Tabular exports: parameter schemas and CSV builders per export type.

Every builder loads its rows through the given session and returns the CSV
document as bytes (UTF-8 with BOM so spreadsheet tools pick up the accents).
"""

import csv
import io
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import date
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from refdesk.core.exceptions import InvalidJobPayload, JobPipelineError
from refdesk.core.job_kinds import describe_validation_error
from refdesk.models.jobs import ExportType
from refdesk.models.league import Match, Official
from refdesk.services.mission_orders import match_query

logger = logging.getLogger(__name__)

ACCOUNTING_STATUS_TEXT = {
    "NOT_ENTERED": "En attente de saisie",
    "PENDING_VALIDATION": "En attente de validation",
    "VALIDATED": "Prêt à payer",
    "REJECTED": "Rejeté",
    "CLOSED": "Payé et Clôturé",
}

MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class EmptyExport(JobPipelineError):
    code = "EmptyExport"


# ---------------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------------


class _Params(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class MonthParams(_Params):
    month: str = Field(pattern=MONTH_PATTERN)

    def bounds(self) -> tuple[date, date]:
        year, month = (int(part) for part in self.month.split("-"))
        start = date(year, month, 1)
        end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
        return start, end


class GameDayParams(_Params):
    game_day: str | None = Field(default=None, alias="gameDay")
    match_date: date | None = Field(default=None, alias="date")

    @model_validator(mode="after")
    def _require_selector(self) -> "GameDayParams":
        if self.game_day is None and self.match_date is None:
            raise ValueError("gameDay or date is required")
        return self


class IndividualStatementParams(_Params):
    official_id: UUID = Field(alias="officialId")
    start: date
    end: date

    @model_validator(mode="after")
    def _ordered_range(self) -> "IndividualStatementParams":
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self


PARAMS_SCHEMAS: dict[ExportType, type[_Params]] = {
    ExportType.PAYMENTS_MONTHLY: MonthParams,
    ExportType.GAME_DAY_SUMMARY: GameDayParams,
    ExportType.MONTHLY_ACCOUNTING_SUMMARY: MonthParams,
    ExportType.INDIVIDUAL_STATEMENT: IndividualStatementParams,
}


def parse_export_type(value: Any) -> ExportType:
    try:
        return ExportType(value)
    except ValueError:
        raise InvalidJobPayload("Type de job invalide.") from None


def validate_export_params(export_type: ExportType, params: Any) -> _Params:
    """
    Raises:
        InvalidJobPayload: if ``params`` is not an object or does not match the type
    """
    if not isinstance(params, dict):
        raise InvalidJobPayload("Paramètres manquants ou invalides.")
    try:
        return PARAMS_SCHEMAS[export_type].model_validate(params)
    except ValidationError as exc:
        raise InvalidJobPayload(describe_validation_error(exc)) from None


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _fr_date(value: date | None) -> str:
    return value.strftime("%d/%m/%Y") if value else "N/A"


def _amount(value: float | None) -> float:
    return round(value or 0.0, 2)


def _to_csv(sections: Iterable[list[list[Any]]]) -> bytes:
    """Write row blocks separated by a blank line."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=";", lineterminator="\n")
    for index, rows in enumerate(sections):
        if index:
            writer.writerow([])
        writer.writerows(rows)
    return buffer.getvalue().encode("utf-8-sig")


async def _matches(session: AsyncSession, *criteria) -> list[Match]:
    result = await session.execute(
        match_query().where(and_(*criteria)).order_by(Match.match_date, Match.match_time)
    )
    return list(result.scalars().all())


def _billable(match: Match) -> bool:
    return not match.is_archived and match.status != "CANCELLED"


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


PAYMENT_HEADERS = [
    "ID Assignation",
    "Nom Officiel",
    "Description Match",
    "Date Match",
    "Rôle",
    "Montant Brut (DZD)",
    "IRG (DZD)",
    "Net à Payer (DZD)",
    "Distance (km)",
    "Statut",
]


async def build_payments_monthly(session: AsyncSession, params: MonthParams) -> bytes:
    start, end = params.bounds()
    matches = await _matches(session, Match.match_date >= start, Match.match_date < end)

    rows = []
    for match in matches:
        if not _billable(match):
            continue
        for assignment in match.assignments:
            if assignment.official is None:
                continue
            gross = _amount(assignment.indemnity_amount)
            irg = _amount(assignment.irg_amount)
            rows.append(
                [
                    str(assignment.id),
                    assignment.official.full_name,
                    match.description,
                    _fr_date(match.match_date),
                    assignment.role,
                    gross,
                    irg,
                    round(gross - irg, 2),
                    assignment.travel_distance_km or 0,
                    ACCOUNTING_STATUS_TEXT.get(match.accounting_status, match.accounting_status),
                ]
            )

    if not rows:
        raise EmptyExport("Aucune donnée à exporter.")
    return _to_csv([[PAYMENT_HEADERS, *rows]])


GAME_DAY_HEADERS = ["Date", "Heure", "Match", "Stade", "Rôle", "Officiel Désigné", "Feuille Envoyée"]


async def build_game_day_summary(session: AsyncSession, params: GameDayParams) -> bytes:
    criteria = []
    if params.game_day is not None:
        criteria.append(Match.game_day == params.game_day)
    if params.match_date is not None:
        criteria.append(Match.match_date == params.match_date)
    matches = await _matches(session, Match.is_archived.is_(False), *criteria)

    rows = []
    for match in matches:
        common = [
            _fr_date(match.match_date),
            match.match_time or "N/A",
            match.description,
            match.stadium.name if match.stadium else "N/A",
        ]
        sent = "Oui" if match.is_sheet_sent else "Non"
        if not match.assignments:
            rows.append([*common, "N/A", "Aucun", sent])
            continue
        for assignment in match.assignments:
            name = assignment.official.full_name if assignment.official else "Non assigné"
            rows.append([*common, assignment.role, name, sent])

    if not rows:
        raise EmptyExport("Aucun match à exporter.")
    return _to_csv([[GAME_DAY_HEADERS, *rows]])


async def build_monthly_accounting_summary(
    session: AsyncSession, params: MonthParams
) -> bytes:
    start, end = params.bounds()
    matches = await _matches(session, Match.match_date >= start, Match.match_date < end)

    summary: dict[UUID, dict[str, Any]] = {}
    details = []
    for match in matches:
        if not _billable(match):
            continue
        for assignment in match.assignments:
            official = assignment.official
            if official is None:
                continue
            indemnity = _amount(assignment.indemnity_amount)
            details.append(
                [
                    official.full_name,
                    match.match_date,
                    match.description,
                    assignment.role,
                    indemnity,
                    assignment.travel_distance_km or 0,
                ]
            )
            entry = summary.setdefault(
                official.id, {"official": official, "matches": 0, "total": 0.0}
            )
            entry["matches"] += 1
            entry["total"] += indemnity

    if not summary:
        raise EmptyExport("Aucune donnée calculée.")

    summary_rows = sorted(
        (
            [e["official"].full_name, e["official"].category or "", e["matches"], round(e["total"], 2)]
            for e in summary.values()
        ),
        key=lambda row: row[0],
    )
    details.sort(key=lambda row: (row[0], row[1] or date.min))
    detail_rows = [[row[0], _fr_date(row[1]), *row[2:]] for row in details]

    return _to_csv(
        [
            [["Nom de l'Officiel", "Catégorie", "Nombre de Matchs", "Total à Payer (DZD)"], *summary_rows],
            [["Nom Officiel", "Date Match", "Match", "Rôle", "Indemnité", "Distance (km)"], *detail_rows],
        ]
    )


async def build_individual_statement(
    session: AsyncSession, params: IndividualStatementParams
) -> bytes:
    official = await session.get(Official, params.official_id)
    if official is None:
        raise EmptyExport("Officiel requis.")

    matches = await _matches(
        session, Match.match_date >= params.start, Match.match_date <= params.end
    )
    details = []
    for match in matches:
        if not _billable(match):
            continue
        for assignment in match.assignments:
            if assignment.official_id != official.id:
                continue
            gross = _amount(assignment.indemnity_amount)
            irg = _amount(assignment.irg_amount)
            details.append(
                [_fr_date(match.match_date), match.description, assignment.role, gross, irg, round(gross - irg, 2)]
            )

    total_gross = round(sum(row[3] for row in details), 2)
    total_irg = round(sum(row[4] for row in details), 2)
    header = [
        ["Relevé Individuel d'Indemnités"],
        ["Officiel:", official.full_name],
        ["Période:", f"Du {_fr_date(params.start)} au {_fr_date(params.end)}"],
    ]
    totals = [
        ["Résumé"],
        ["Nombre de matchs:", len(details)],
        ["Total Brut:", total_gross],
        ["Total IRG:", total_irg],
        ["Total Net:", round(total_gross - total_irg, 2)],
    ]
    detail_block = [
        ["Détails des Prestations"],
        ["Date Match", "Description Match", "Rôle", "Montant Brut (DZD)", "IRG (DZD)", "Net Payé (DZD)"],
        *details,
    ]
    return _to_csv([header, totals, detail_block])


ExportBuilder = Callable[[AsyncSession, Any], Awaitable[bytes]]

EXPORT_BUILDERS: dict[ExportType, ExportBuilder] = {
    ExportType.PAYMENTS_MONTHLY: build_payments_monthly,
    ExportType.GAME_DAY_SUMMARY: build_game_day_summary,
    ExportType.MONTHLY_ACCOUNTING_SUMMARY: build_monthly_accounting_summary,
    ExportType.INDIVIDUAL_STATEMENT: build_individual_statement,
}


async def build_export(session: AsyncSession, export_type: str, params: Any) -> bytes:
    kind = parse_export_type(export_type)
    parsed = validate_export_params(kind, params)
    return await EXPORT_BUILDERS[kind](session, parsed)
