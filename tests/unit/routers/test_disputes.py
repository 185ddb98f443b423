"""Tests for the dispute endpoints."""

from __future__ import annotations

from decimal import Decimal

import pytest

from tests.unit.routers.conftest import (
    admin_headers,
    advance,
    assigned_job,
    create_job,
    register,
)


@pytest.fixture
async def disputed(client):
    """An in-transit job with a dispute opened by its client."""
    _, client_headers = await register(client, "client")
    _, driver_headers = await register(client, "driver")
    job_id = (await assigned_job(client, client_headers, driver_headers))["job"]["job_id"]
    await advance(client, job_id, driver_headers, "pickup_confirmed", "in_transit")

    response = await client.post(
        "/disputes",
        json={"job_id": job_id, "reason": "late_delivery", "description": "Two hours late"},
        headers=client_headers,
    )
    assert response.status_code == 201, response.text
    return {
        "job_id": job_id,
        "dispute": response.json(),
        "client_headers": client_headers,
        "driver_headers": driver_headers,
        "admin_headers": await admin_headers(client),
    }


@pytest.mark.unit
class TestOpenDispute:
    async def test_open_dispute(self, disputed):
        dispute = disputed["dispute"]
        assert dispute["job_id"] == disputed["job_id"]
        assert dispute["status"] == "open"
        assert dispute["opened_by_role"] == "client"
        assert dispute["resolution"] is None

    async def test_missing_fields(self, client):
        _, headers = await register(client, "client")
        response = await client.post("/disputes", json={"job_id": "job-x"}, headers=headers)
        assert response.status_code == 400
        assert response.json()["error"] == "MISSING_FIELD"

    async def test_job_id_must_be_string(self, client):
        _, headers = await register(client, "client")
        response = await client.post(
            "/disputes",
            json={"job_id": 12, "reason": "other", "description": "?"},
            headers=headers,
        )
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_FIELD_TYPE"

    async def test_open_job_is_not_disputable(self, client):
        _, headers = await register(client, "client")
        job_id = await create_job(client, headers)
        response = await client.post(
            "/disputes",
            json={"job_id": job_id, "reason": "other", "description": "Changed my mind"},
            headers=headers,
        )
        assert response.status_code == 409
        assert response.json()["error"] == "JOB_NOT_DISPUTABLE"

    async def test_second_active_dispute_conflicts(self, client, disputed):
        response = await client.post(
            "/disputes",
            json={
                "job_id": disputed["job_id"],
                "reason": "damaged_item",
                "description": "Box is crushed",
            },
            headers=disputed["driver_headers"],
        )
        assert response.status_code == 409
        assert response.json()["error"] == "DISPUTE_ALREADY_ACTIVE"

    async def test_dispute_freezes_progress(self, client, disputed):
        response = await client.post(
            f"/jobs/{disputed['job_id']}/status",
            json={"status": "delivered"},
            headers=disputed["driver_headers"],
        )
        assert response.status_code == 409
        assert response.json()["error"] == "DISPUTE_ACTIVE"


@pytest.mark.unit
class TestDisputeReads:
    async def test_parties_and_admin_can_read(self, client, disputed):
        dispute_id = disputed["dispute"]["dispute_id"]
        for headers in (
            disputed["client_headers"],
            disputed["driver_headers"],
            disputed["admin_headers"],
        ):
            response = await client.get(f"/disputes/{dispute_id}", headers=headers)
            assert response.status_code == 200

    async def test_outsider_cannot_read(self, client, disputed):
        _, outsider = await register(client, "client")
        response = await client.get(
            f"/disputes/{disputed['dispute']['dispute_id']}", headers=outsider
        )
        assert response.status_code == 403

    async def test_list_filters(self, client, disputed):
        headers = disputed["admin_headers"]
        open_disputes = await client.get("/disputes", params={"status": "open"}, headers=headers)
        assert len(open_disputes.json()["disputes"]) == 1

        resolved = await client.get("/disputes", params={"status": "resolved"}, headers=headers)
        assert resolved.json()["disputes"] == []

        by_job = await client.get(
            "/disputes", params={"job_id": disputed["job_id"]}, headers=headers
        )
        assert len(by_job.json()["disputes"]) == 1

    async def test_unknown_dispute(self, client, disputed):
        response = await client.get(
            "/disputes/dsp-missing", headers=disputed["admin_headers"]
        )
        assert response.status_code == 404
        assert response.json()["error"] == "DISPUTE_NOT_FOUND"


@pytest.mark.unit
class TestResolution:
    async def test_refund_cancels_job(self, client, disputed):
        dispute_id = disputed["dispute"]["dispute_id"]
        headers = disputed["admin_headers"]
        reviewed = await client.post(f"/disputes/{dispute_id}/review", headers=headers)
        assert reviewed.status_code == 200
        assert reviewed.json()["status"] == "under_review"

        response = await client.post(
            f"/disputes/{dispute_id}/resolve",
            json={"resolution": "refund_client", "admin_notes": "Driver was late"},
            headers=headers,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["dispute"]["status"] == "resolved"
        assert body["dispute"]["resolution"] == "refund_client"
        assert body["transaction"]["payment_status"] == "refunded"

        job = (
            await client.get(f"/jobs/{disputed['job_id']}", headers=disputed["client_headers"])
        ).json()
        assert job["status"] == "cancelled"
        assert job["cancelled_by"] == "admin"

        wallet = (await client.get("/wallet", headers=disputed["client_headers"])).json()
        assert Decimal(wallet["balance"]) == Decimal("70.00")

    async def test_release_confirms_job(self, client, disputed):
        dispute_id = disputed["dispute"]["dispute_id"]
        headers = disputed["admin_headers"]
        await client.post(f"/disputes/{dispute_id}/review", headers=headers)

        response = await client.post(
            f"/disputes/{dispute_id}/resolve",
            json={"resolution": "release_driver"},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["transaction"]["payment_status"] == "paid"

        wallet = (await client.get("/wallet", headers=disputed["driver_headers"])).json()
        assert Decimal(wallet["balance"]) == Decimal("59.50")

    async def test_resolve_requires_review(self, client, disputed):
        response = await client.post(
            f"/disputes/{disputed['dispute']['dispute_id']}/resolve",
            json={"resolution": "refund_client"},
            headers=disputed["admin_headers"],
        )
        assert response.status_code == 409
        assert response.json()["error"] == "DISPUTE_NOT_UNDER_REVIEW"

    async def test_missing_resolution(self, client, disputed):
        response = await client.post(
            f"/disputes/{disputed['dispute']['dispute_id']}/resolve",
            json={},
            headers=disputed["admin_headers"],
        )
        assert response.status_code == 400
        assert response.json()["error"] == "MISSING_FIELD"

    async def test_split_resolution_rejected(self, client, disputed):
        dispute_id = disputed["dispute"]["dispute_id"]
        headers = disputed["admin_headers"]
        await client.post(f"/disputes/{dispute_id}/review", headers=headers)

        response = await client.post(
            f"/disputes/{dispute_id}/resolve", json={"resolution": "split"}, headers=headers
        )
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_RESOLUTION"

    async def test_parties_cannot_review_or_resolve(self, client, disputed):
        dispute_id = disputed["dispute"]["dispute_id"]
        review = await client.post(
            f"/disputes/{dispute_id}/review", headers=disputed["client_headers"]
        )
        assert review.status_code == 403

        resolve = await client.post(
            f"/disputes/{dispute_id}/resolve",
            json={"resolution": "release_driver"},
            headers=disputed["driver_headers"],
        )
        assert resolve.status_code == 403
