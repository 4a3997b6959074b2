"""Mission order batch API tests."""

from uuid import uuid4

import pytest
from sqlalchemy import update

from refdesk.core.dedupe import mission_orders_hash, normalize_orders
from refdesk.models.jobs import MissionOrderBatch
from refdesk.tasks.batch_worker import PROCESS_PENDING_TASK

BATCHES = "/api/v1/mission-orders/batches/"


def _orders(n: int) -> list[dict]:
    return [{"matchId": str(uuid4()), "officialId": str(uuid4())} for _ in range(n)]


@pytest.mark.asyncio
async def test_create_batch_is_keyed_by_order_set(test_client, auth_headers, mock_celery):
    orders = _orders(3)

    first = await test_client.post(BATCHES, headers=auth_headers, json={"orders": orders})
    reordered = await test_client.post(
        BATCHES, headers=auth_headers, json={"orders": list(reversed(orders)) + orders[:1]}
    )

    assert first.status_code == 200
    assert first.json() == {
        "hash": mission_orders_hash(normalize_orders(orders)),
        "status": "pending",
    }
    assert reordered.json()["hash"] == first.json()["hash"]
    assert [d["name"] for d in mock_celery.dispatched] == [PROCESS_PENDING_TASK]


@pytest.mark.asyncio
async def test_empty_batch_is_rejected(test_client, auth_headers):
    resp = await test_client.post(BATCHES, headers=auth_headers, json={"orders": []})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_completed_batch_has_signed_url(
    test_client, auth_headers, db_session, fake_storage
):
    orders = _orders(1)
    created = (
        await test_client.post(BATCHES, headers=auth_headers, json={"orders": orders})
    ).json()
    await db_session.execute(
        update(MissionOrderBatch)
        .where(MissionOrderBatch.hash == created["hash"])
        .values(status="completed", artifact_path=f"batches/{created['hash']}.pdf")
    )
    await db_session.commit()

    resp = await test_client.get(f"{BATCHES}{created['hash']}", headers=auth_headers)
    body = resp.json()
    assert body["status"] == "completed"
    assert f"batches/{created['hash']}.pdf" in body["artifactUrl"]


@pytest.mark.asyncio
async def test_failed_batch_reports_error(test_client, auth_headers, db_session):
    created = (
        await test_client.post(BATCHES, headers=auth_headers, json={"orders": _orders(1)})
    ).json()
    await db_session.execute(
        update(MissionOrderBatch)
        .where(MissionOrderBatch.hash == created["hash"])
        .values(status="failed", error="no_pages")
    )
    await db_session.commit()

    body = (await test_client.get(f"{BATCHES}{created['hash']}", headers=auth_headers)).json()
    assert body == {"hash": created["hash"], "status": "failed", "error": "no_pages"}


@pytest.mark.asyncio
async def test_unknown_batch(test_client, auth_headers):
    resp = await test_client.get(f"{BATCHES}{'0' * 64}", headers=auth_headers)
    assert resp.json() == {"status": "not_found"}
