"""
Shared test fixtures for refdesk.

Runs the models on in-memory SQLite (aiosqlite + StaticPool, so every
session shares one connection) unless TEST_DATABASE_URL points at a real
Postgres. Celery, blob storage and the mail API are replaced by fakes.
"""

import os
from datetime import date
from typing import Any
from unittest.mock import MagicMock
from uuid import uuid4

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-tests")
os.environ.setdefault("TRIGGER_SECRET", "test-trigger-secret")
os.environ.setdefault("MAILER_API_KEY", "test-mailer-key")

from refdesk.db.base import Base  # noqa: E402
import refdesk.models  # noqa: E402,F401
from refdesk.main import app  # noqa: E402

TEST_DB_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    if TEST_DB_URL.startswith("sqlite"):
        engine = create_async_engine(
            TEST_DB_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
    else:
        engine = create_async_engine(TEST_DB_URL, pool_pre_ping=True, echo=False)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine):
    """Fresh tables per test: drop → create → yield session → drop."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    async with factory() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture()
async def session_factory(test_engine, db_session):
    """Factory for the extra sessions opened by workers and background dispatch."""
    return async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False
    )


# ---------------------------------------------------------------------------
# Celery, storage and mailer fakes
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def mock_celery():
    """Celery app whose send_task records calls instead of hitting a broker."""
    dispatched: list[dict[str, Any]] = []

    def fake_send_task(name, args=None, kwargs=None, **kw):
        dispatched.append({"name": name, "args": args, "kwargs": kwargs})
        result = MagicMock()
        result.id = f"celery-task-{len(dispatched)}"
        return result

    celery_app = MagicMock()
    celery_app.send_task.side_effect = fake_send_task
    celery_app.dispatched = dispatched
    return celery_app


class FakeStorage:
    """In-memory stand-in for BlobStorage; every signature is unique."""

    def __init__(self):
        self.objects: dict[tuple[str, str], bytes] = {}
        self.content_types: dict[tuple[str, str], str] = {}
        self.signed: list[tuple[str, str, int]] = []
        self.fail_uploads = False

    async def upload(self, bucket, key, data, content_type="application/pdf"):
        from refdesk.core.exceptions import StorageError

        if self.fail_uploads:
            raise StorageError(f"Upload of {key} failed: bucket unavailable")
        self.objects[(bucket, key)] = data
        self.content_types[(bucket, key)] = content_type
        return key

    async def sign(self, bucket, key, expires_in):
        self.signed.append((bucket, key, expires_in))
        return f"https://storage.test/{bucket}/{key}?expires={expires_in}&sig={len(self.signed)}"


@pytest_asyncio.fixture()
async def fake_storage(monkeypatch):
    storage = FakeStorage()
    for module in (
        "refdesk.tasks.pdf_worker",
        "refdesk.tasks.batch_worker",
        "refdesk.tasks.export_worker",
    ):
        monkeypatch.setattr(f"{module}.get_storage", lambda: storage)
    return storage


class FakeMailer:
    """Records sent messages; addresses in ``failing`` make the send fail."""

    def __init__(self):
        self.sent = []
        self.failing: set[str] = set()

    async def send(self, message):
        from refdesk.core.exceptions import MailerError

        if self.failing.intersection(message.to):
            raise MailerError("Failed to send email (502): upstream error")
        self.sent.append(message)


@pytest_asyncio.fixture()
async def fake_mailer(monkeypatch):
    mailer = FakeMailer()
    monkeypatch.setattr("refdesk.tasks.email_worker.get_mailer", lambda: mailer)
    return mailer


# ---------------------------------------------------------------------------
# Test client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(scope="function")
async def test_client(db_session, session_factory, mock_celery, fake_storage):
    from refdesk.api.deps import get_blob_storage, get_session_factory
    from refdesk.db.session import get_db

    async def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_blob_storage] = lambda: fake_storage
    app.state.celery_app = mock_celery

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()
    del app.state.celery_app


@pytest_asyncio.fixture()
async def actor_id():
    return uuid4()


@pytest_asyncio.fixture()
async def auth_headers(actor_id):
    """Bearer JWT for ``actor_id``."""
    from refdesk.api.v1.helpers.authentication import create_access_token

    token = create_access_token({"sub": str(actor_id)})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture()
async def other_auth_headers():
    from refdesk.api.v1.helpers.authentication import create_access_token

    token = create_access_token({"sub": str(uuid4())})
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Factory fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(scope="function")
async def job_factory(db_session, actor_id):
    from refdesk.models.jobs import Job

    async def _create(
        job_type: str = "mission_orders.single_pdf",
        status: str = "pending",
        payload: dict | None = None,
        total: int | None = 1,
        progress: int = 0,
        created_by=None,
        **fields: Any,
    ) -> Job:
        job = Job(
            id=uuid4(),
            type=job_type,
            label=fields.pop("label", job_type),
            payload=payload if payload is not None else {},
            status=status,
            total=total,
            progress=progress,
            created_by=created_by or actor_id,
            **fields,
        )
        db_session.add(job)
        await db_session.commit()
        await db_session.refresh(job)
        return job

    return _create


@pytest_asyncio.fixture(scope="function")
async def official_factory(db_session):
    from refdesk.models.league import Location, Official

    async def _create(
        first_name: str = "Karim",
        last_name: str | None = None,
        email: str | None = "__auto__",
        category: str | None = "Ligue 1",
    ) -> Official:
        last_name = last_name or f"Official{uuid4().hex[:4]}"
        location = Location(name="Alger", wilaya="16")
        db_session.add(location)
        await db_session.flush()
        official = Official(
            first_name=first_name,
            last_name=last_name,
            email=f"{last_name.lower()}@example.dz" if email == "__auto__" else email,
            category=category,
            location_id=location.id,
        )
        db_session.add(official)
        await db_session.commit()
        return official

    return _create


@pytest_asyncio.fixture(scope="function")
async def match_factory(db_session):
    """Creates a match with one assignment per (official, role) pair."""
    from refdesk.models.league import Location, Match, MatchAssignment, Stadium, Team

    async def _create(
        crew: list | None = None,
        home: tuple[str, str] = ("MCA", "MC Alger"),
        away: tuple[str, str] = ("CRB", "CR Belouizdad"),
        match_date: date | None = date(2026, 3, 14),
        match_time: str | None = "17:00",
        game_day: str | None = "J20",
        status: str = "SCHEDULED",
        accounting_status: str = "NOT_ENTERED",
        is_archived: bool = False,
        is_sheet_sent: bool = False,
        has_unsent_changes: bool = False,
        indemnity: float = 12000.0,
        irg: float = 1200.0,
    ) -> Match:
        location = Location(name="Alger", wilaya="16")
        home_team = Team(code=home[0], name=home[1])
        away_team = Team(code=away[0], name=away[1])
        db_session.add_all([location, home_team, away_team])
        await db_session.flush()

        stadium = Stadium(name="Stade 5 Juillet", location_id=location.id)
        db_session.add(stadium)
        await db_session.flush()

        match = Match(
            home_team_id=home_team.id,
            away_team_id=away_team.id,
            stadium_id=stadium.id,
            match_date=match_date,
            match_time=match_time,
            game_day=game_day,
            status=status,
            accounting_status=accounting_status,
            is_archived=is_archived,
            is_sheet_sent=is_sheet_sent,
            has_unsent_changes=has_unsent_changes,
        )
        db_session.add(match)
        await db_session.flush()

        for official, role in crew or []:
            db_session.add(
                MatchAssignment(
                    match_id=match.id,
                    official_id=official.id if official is not None else None,
                    role=role,
                    travel_distance_km=42.0,
                    indemnity_amount=indemnity,
                    irg_amount=irg,
                )
            )
        await db_session.commit()
        return match

    return _create
