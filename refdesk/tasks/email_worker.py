"""
E-mail worker for broadcast messages, single mission orders and match sheets.

Delivery flags on a match (``is_sheet_sent``) are only set after the mail
API accepted the message; a failed send resets the flag to False so a
match is never reported as delivered when it was not.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from celery import shared_task
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from refdesk.core.exceptions import (
    MailerError,
    NoRecipients,
    UnknownJobKind,
)
from refdesk.core.job_kinds import EMAIL_WORKER, JobKind
from refdesk.core.runtime import JobRun, execute_job, fold_units
from refdesk.models.league import Match, Official
from refdesk.services.email_templates import broadcast_email, match_sheet_email
from refdesk.services.mailer import Attachment, EmailMessage, get_mailer
from refdesk.services.mission_orders import (
    build_order_data,
    load_match,
    merge_pdfs,
    render_mission_order,
    sanitize_file_name,
)

logger = logging.getLogger(__name__)

SENT = "sent"
SKIPPED = "skipped"


async def _set_sheet_flags(session: AsyncSession, match_id: uuid.UUID, sent: bool) -> None:
    values: dict[str, Any] = {"is_sheet_sent": sent}
    if sent:
        values["has_unsent_changes"] = False
    await session.execute(update(Match).where(Match.id == match_id).values(**values))
    await session.commit()


async def _send_for_match(
    session: AsyncSession, match: Match, message: EmailMessage
) -> None:
    """Send ``message`` and record the match-sheet delivery flags accordingly."""
    try:
        await get_mailer().send(message)
    except MailerError:
        await session.rollback()
        await _set_sheet_flags(session, match.id, sent=False)
        raise
    await _set_sheet_flags(session, match.id, sent=True)


# ---------------------------------------------------------------------------
# messaging.bulk_email
# ---------------------------------------------------------------------------


async def _send_broadcast(run: JobRun) -> None:
    official_ids = [uuid.UUID(str(i)) for i in run.payload.get("officialIds", [])]

    async with run.session_factory() as session:
        result = await session.execute(
            select(Official.email).where(Official.id.in_(official_ids))
        )
        emails = sorted({e.strip() for e in result.scalars().all() if e and e.strip()})

    if not emails:
        logger.info(f"Job {run.job_id}: no official with an email address, nothing to send")
        await run.complete({"sent": 0}, progress=1)
        return

    rendered = broadcast_email(run.payload.get("subject"), run.payload.get("message", ""))
    try:
        await get_mailer().send(
            EmailMessage(
                to=emails, subject=rendered.subject, html=rendered.html, text=rendered.text
            )
        )
    except MailerError as exc:
        await run.fail(exc.message, exc.code)
        return

    await run.complete({"sent": len(emails)}, progress=1)


# ---------------------------------------------------------------------------
# mission_orders.single_email
# ---------------------------------------------------------------------------


async def _send_single_mission_order(run: JobRun) -> None:
    match_id = uuid.UUID(str(run.payload["matchId"]))
    official_id = uuid.UUID(str(run.payload["officialId"]))

    async with run.session_factory() as session:
        match = await load_match(session, match_id)
        if match is None:
            await run.fail(f"Match {match_id} not found", "NotFound")
            return

        assignment = next(
            (a for a in match.assignments if a.official_id == official_id), None
        )
        if assignment is None or assignment.official is None:
            await run.fail(
                f"Official {official_id} is not assigned to match {match_id}", "NotFound"
            )
            return

        official = assignment.official
        if not official.email:
            await run.fail(
                f"Official {official.full_name} has no email address", NoRecipients.code
            )
            return

        pdf = render_mission_order(build_order_data(match, official, assignment.role))
        file_name = sanitize_file_name(
            f"ordre_de_mission_{official.last_name}_{match.home_team.code}_{match.away_team.code}.pdf"
        )
        rendered = match_sheet_email(match, is_update=bool(match.is_sheet_sent))
        message = EmailMessage(
            to=[official.email],
            subject=rendered.subject,
            html=rendered.html,
            text=rendered.text,
            attachments=[Attachment(filename=file_name, content=pdf)],
        )

        try:
            await _send_for_match(session, match, message)
        except MailerError as exc:
            await run.fail(exc.message, exc.code)
            return

    await run.complete({"sent": 1}, progress=1)


# ---------------------------------------------------------------------------
# match_sheets.bulk_email
# ---------------------------------------------------------------------------


async def _send_match_sheet(session: AsyncSession, match_id: uuid.UUID) -> str:
    match = await load_match(session, match_id)
    if match is None:
        raise LookupError(f"Match {match_id} not found")

    recipients = [
        a for a in match.assignments if a.official is not None and a.official.email
    ]
    if not recipients:
        logger.info(f"Skipping match {match_id}: no recipients with valid emails")
        return SKIPPED

    async def render(assignment) -> bytes:
        return render_mission_order(
            build_order_data(match, assignment.official, assignment.role)
        )

    documents = await fold_units(recipients, render)
    pdf, pages = merge_pdfs(documents.succeeded)
    if pdf is None:
        logger.warning(f"Skipping match {match_id}: no mission order could be generated")
        return SKIPPED

    rendered = match_sheet_email(match, is_update=bool(match.is_sheet_sent))
    message = EmailMessage(
        to=sorted({a.official.email for a in recipients}),
        subject=rendered.subject,
        html=rendered.html,
        text=rendered.text,
        attachments=[
            Attachment(
                filename=sanitize_file_name(
                    f"ordres_de_mission_{match.home_team.code}_vs_{match.away_team.code}.pdf"
                ),
                content=pdf,
            )
        ],
    )
    await _send_for_match(session, match, message)
    return SENT


async def _send_match_sheets(run: JobRun) -> None:
    match_ids = [uuid.UUID(str(m)) for m in run.payload.get("matchIds", [])]

    async with run.session_factory() as session:

        async def handle(match_id: uuid.UUID) -> str:
            try:
                return await _send_match_sheet(session, match_id)
            except Exception:
                await session.rollback()
                raise

        fold = await fold_units(match_ids, handle, on_unit=run.track)

    if fold.all_failed:
        await run.fail(
            f"All match sheet emails failed: {fold.failed[0].error}", MailerError.code
        )
        return

    await run.complete(
        {
            "sent": sum(1 for outcome in fold.succeeded if outcome == SENT),
            "skipped": sum(1 for outcome in fold.succeeded if outcome == SKIPPED),
            "failed": len(fold.failed),
        },
        progress=fold.processed,
    )


EMAIL_HANDLERS: dict[JobKind, Callable[[JobRun], Awaitable[None]]] = {
    JobKind.MESSAGING_BULK_EMAIL: _send_broadcast,
    JobKind.MISSION_ORDERS_SINGLE_EMAIL: _send_single_mission_order,
    JobKind.MATCH_SHEETS_BULK_EMAIL: _send_match_sheets,
}


async def _send_job_emails(run: JobRun) -> None:
    job_type = run.record.get("type")
    try:
        handler = EMAIL_HANDLERS.get(JobKind(job_type))
    except ValueError:
        handler = None
    if handler is None:
        await run.fail(f"Unknown job type: {job_type}", UnknownJobKind.code)
        return
    await handler(run)


@shared_task(name=EMAIL_WORKER)
def send_job_emails(job: dict[str, Any]) -> dict[str, Any]:
    """Celery entry point for every e-mail job kind."""
    return asyncio.run(execute_job(job, _send_job_emails))
