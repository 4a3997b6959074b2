"""Exports API tests."""

from uuid import UUID, uuid4

import pytest
from sqlalchemy import update

from refdesk.models.jobs import ExportJob

EXPORTS = "/api/v1/exports/"


@pytest.mark.asyncio
async def test_create_export(test_client, auth_headers):
    resp = await test_client.post(
        EXPORTS,
        headers=auth_headers,
        json={"type": "payments_monthly", "params": {"month": "2026-03"}},
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True

    status = (await test_client.get(f"{EXPORTS}{body['jobId']}", headers=auth_headers)).json()
    assert status["status"] == "pending"
    assert status["type"] == "payments_monthly"
    assert status["params"] == {"month": "2026-03"}
    assert "fileUrl" not in status


@pytest.mark.asyncio
async def test_invalid_export_type(test_client, auth_headers):
    resp = await test_client.post(
        EXPORTS, headers=auth_headers, json={"type": "payroll", "params": {}}
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Type de job invalide."}


@pytest.mark.asyncio
async def test_missing_params(test_client, auth_headers):
    resp = await test_client.post(
        EXPORTS, headers=auth_headers, json={"type": "payments_monthly", "params": "2026-03"}
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Paramètres manquants ou invalides."}


@pytest.mark.asyncio
async def test_invalid_params(test_client, auth_headers):
    resp = await test_client.post(
        EXPORTS,
        headers=auth_headers,
        json={
            "type": "individual_statement",
            "params": {"officialId": str(uuid4()), "start": "2026-03-31", "end": "2026-03-01"},
        },
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_completed_export_has_file_url(
    test_client, auth_headers, db_session, fake_storage
):
    created = (
        await test_client.post(
            EXPORTS,
            headers=auth_headers,
            json={"type": "game_day_summary", "params": {"gameDay": "J20"}},
        )
    ).json()
    path = f"exports/{created['jobId']}/game_day_summary.csv"
    await db_session.execute(
        update(ExportJob)
        .where(ExportJob.id == UUID(created["jobId"]))
        .values(status="completed", file_path=path, file_size=120)
    )
    await db_session.commit()

    body = (await test_client.get(f"{EXPORTS}{created['jobId']}", headers=auth_headers)).json()
    assert body["status"] == "completed"
    assert body["filePath"] == path
    assert body["fileSize"] == 120
    assert body["fileUrl"].startswith(f"https://storage.test/exports/{path}")


@pytest.mark.asyncio
async def test_exports_are_private_to_requester(
    test_client, auth_headers, other_auth_headers
):
    created = (
        await test_client.post(
            EXPORTS,
            headers=auth_headers,
            json={"type": "payments_monthly", "params": {"month": "2026-03"}},
        )
    ).json()

    resp = await test_client.get(f"{EXPORTS}{created['jobId']}", headers=other_auth_headers)
    assert resp.json() == {"status": "not_found"}

    listing = (await test_client.get(EXPORTS, headers=other_auth_headers)).json()
    assert listing == {"exports": [], "total": 0}
