"""
Mission order documents: loading their data, rendering and merging PDFs.
"""

import hashlib
import logging
import re
import unicodedata
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

import pymupdf
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from refdesk.core.runtime import FoldResult, fold_units
from refdesk.models.league import Match, MatchAssignment, Official, Stadium

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = 595, 842
ORG_NAME = "Ligue Inter-Régions de Football"


@dataclass(frozen=True)
class MissionOrderData:
    reference: str
    name: str
    position: str
    administrative_headquarters: str
    mission_location: str
    departure_date: str
    return_date: str
    mission_timing: str
    mission_type: str


@dataclass(frozen=True)
class RenderedOrders:
    pdf: bytes | None
    pages: int
    fold: FoldResult


def sanitize_file_name(name: str) -> str:
    """ASCII-only file name: accents stripped, other characters replaced by '_'."""
    decomposed = unicodedata.normalize("NFD", name)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    cleaned = re.sub(r"[^\w.-]", "_", stripped, flags=re.ASCII)
    return re.sub(r"_+", "_", cleaned)


def order_reference(match_id: Any, official_id: Any) -> str:
    digest = hashlib.sha256(f"{match_id}:{official_id}".encode()).hexdigest()
    return digest[:8].upper()


def _format_date(value) -> str:
    return value.strftime("%d/%m/%Y") if value else ""


def build_order_data(match: Match, official: Official, role: str) -> MissionOrderData:
    stadium = match.stadium
    stadium_name = stadium.name if stadium else "Stade non défini"
    stadium_location = (
        stadium.location.name if stadium is not None and stadium.location else ""
    )
    mission_location = ", ".join(p for p in (stadium_name, stadium_location) if p)
    return MissionOrderData(
        reference=order_reference(match.id, official.id),
        name=official.full_name,
        position=role,
        administrative_headquarters=official.location.name if official.location else "",
        mission_location=mission_location,
        departure_date=_format_date(match.match_date),
        return_date=_format_date(match.match_date),
        mission_timing=match.match_time or "Non défini",
        mission_type=f"{role} : {match.home_team.name} contre {match.away_team.name}",
    )


def match_query():
    return select(Match).options(
        selectinload(Match.home_team),
        selectinload(Match.away_team),
        selectinload(Match.stadium).selectinload(Stadium.location),
        selectinload(Match.assignments)
        .selectinload(MatchAssignment.official)
        .selectinload(Official.location),
    )


async def load_match(session: AsyncSession, match_id: uuid.UUID) -> Match | None:
    result = await session.execute(match_query().where(Match.id == match_id))
    return result.scalar_one_or_none()


async def load_order_data(
    session: AsyncSession, match_id: uuid.UUID, official_id: uuid.UUID
) -> MissionOrderData:
    """
    Raises:
        LookupError: if the match does not exist or the official is not assigned to it
    """
    match = await load_match(session, match_id)
    if match is None:
        raise LookupError(f"Match {match_id} not found")

    result = await session.execute(
        select(MatchAssignment)
        .options(selectinload(MatchAssignment.official).selectinload(Official.location))
        .where(
            and_(
                MatchAssignment.match_id == match_id,
                MatchAssignment.official_id == official_id,
            )
        )
        .limit(1)
    )
    assignment = result.scalar_one_or_none()
    if assignment is None or assignment.official is None:
        raise LookupError(f"Official {official_id} is not assigned to match {match_id}")
    return build_order_data(match, assignment.official, assignment.role)


def render_mission_order(data: MissionOrderData) -> bytes:
    """Single-page mission order PDF."""
    doc = pymupdf.open()
    try:
        page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
        page.insert_text((72, 80), ORG_NAME, fontsize=16, fontname="hebo")
        page.insert_text((72, 130), "ORDRE DE MISSION", fontsize=20, fontname="hebo")
        page.insert_text((72, 155), f"N° {data.reference}", fontsize=12)

        rows = [
            ("Nom et prénom", data.name),
            ("Qualité", data.position),
            ("Siège administratif", data.administrative_headquarters),
            ("Lieu de la mission", data.mission_location),
            ("Date de départ", data.departure_date),
            ("Date de retour", data.return_date),
            ("Horaire de la mission", data.mission_timing),
            ("Nature de la mission", data.mission_type),
        ]
        y = 210
        for label, value in rows:
            page.insert_text((72, y), f"{label} :", fontsize=11, fontname="hebo")
            page.insert_text((230, y), value or "-", fontsize=11)
            y += 28

        page.insert_text(
            (72, y + 40),
            "Les autorités civiles et militaires sont priées de faciliter la mission du porteur.",
            fontsize=9,
        )
        return doc.tobytes()
    finally:
        doc.close()


def merge_pdfs(documents: Iterable[bytes]) -> tuple[bytes | None, int]:
    """Concatenate PDFs; returns (None, 0) when there is nothing to merge."""
    merged = pymupdf.open()
    try:
        for data in documents:
            source = pymupdf.open(stream=data, filetype="pdf")
            try:
                merged.insert_pdf(source)
            finally:
                source.close()
        pages = merged.page_count
        if pages == 0:
            return None, 0
        return merged.tobytes(garbage=3, deflate=True), pages
    finally:
        merged.close()


async def render_orders(
    session: AsyncSession,
    orders: Iterable[dict],
    on_unit: Callable[[FoldResult], Awaitable[None]] | None = None,
) -> RenderedOrders:
    """Render one document per {matchId, officialId} order and merge them."""

    async def render_one(order: dict) -> bytes:
        data = await load_order_data(
            session,
            uuid.UUID(str(order["matchId"])),
            uuid.UUID(str(order["officialId"])),
        )
        return render_mission_order(data)

    fold = await fold_units(orders, render_one, on_unit=on_unit)
    pdf, pages = merge_pdfs(fold.succeeded)
    logger.info(
        f"Rendered {len(fold.succeeded)} mission orders ({len(fold.failed)} failed, {pages} pages)"
    )
    return RenderedOrders(pdf=pdf, pages=pages, fold=fold)
