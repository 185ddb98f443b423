"""Tests for the bid endpoints."""

from __future__ import annotations

import pytest

from tests.unit.routers.conftest import create_job, register


async def _bid(client, job_id, headers, amount="70.00", message=None):
    body = {"amount": amount}
    if message is not None:
        body["message"] = message
    return await client.post(f"/jobs/{job_id}/bids", json=body, headers=headers)


@pytest.mark.unit
class TestSubmitBid:
    async def test_first_bid_opens_bidding(self, client):
        _, client_headers = await register(client, "client")
        driver, driver_headers = await register(client, "driver")
        job_id = await create_job(client, client_headers)

        response = await _bid(client, job_id, driver_headers, "65.50", "On my way")
        assert response.status_code == 201
        bid = response.json()
        assert bid["driver_id"] == driver["user_id"]
        assert bid["amount"] == "65.50"
        assert bid["message"] == "On my way"
        assert bid["status"] == "pending"

        job = (await client.get(f"/jobs/{job_id}", headers=client_headers)).json()
        assert job["status"] == "bidding"

    async def test_missing_amount(self, client):
        _, client_headers = await register(client, "client")
        _, driver_headers = await register(client, "driver")
        job_id = await create_job(client, client_headers)

        response = await client.post(f"/jobs/{job_id}/bids", json={}, headers=driver_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "MISSING_FIELD"

    async def test_client_cannot_bid(self, client):
        _, client_headers = await register(client, "client")
        job_id = await create_job(client, client_headers)

        response = await _bid(client, job_id, client_headers)
        assert response.status_code == 403

    async def test_duplicate_bid(self, client):
        _, client_headers = await register(client, "client")
        _, driver_headers = await register(client, "driver")
        job_id = await create_job(client, client_headers)
        await _bid(client, job_id, driver_headers)

        response = await _bid(client, job_id, driver_headers, "60.00")
        assert response.status_code == 409
        assert response.json()["error"] == "DUPLICATE_BID"


@pytest.mark.unit
class TestBidVisibility:
    async def test_client_sees_all_bids_driver_sees_own(self, client):
        _, client_headers = await register(client, "client")
        _, first_headers = await register(client, "driver")
        _, second_headers = await register(client, "driver")
        job_id = await create_job(client, client_headers)
        first_bid = (await _bid(client, job_id, first_headers)).json()
        await _bid(client, job_id, second_headers, "80.00")

        all_bids = (await client.get(f"/jobs/{job_id}/bids", headers=client_headers)).json()
        assert len(all_bids["bids"]) == 2

        own = (await client.get(f"/jobs/{job_id}/bids", headers=first_headers)).json()
        assert [bid["bid_id"] for bid in own["bids"]] == [first_bid["bid_id"]]

    async def test_other_driver_cannot_read_bid(self, client):
        _, client_headers = await register(client, "client")
        _, first_headers = await register(client, "driver")
        _, second_headers = await register(client, "driver")
        job_id = await create_job(client, client_headers)
        bid_id = (await _bid(client, job_id, first_headers)).json()["bid_id"]

        assert (await client.get(f"/bids/{bid_id}", headers=client_headers)).status_code == 200
        assert (await client.get(f"/bids/{bid_id}", headers=second_headers)).status_code == 403

    async def test_unknown_bid(self, client):
        _, headers = await register(client, "client")
        response = await client.get("/bids/bid-missing", headers=headers)
        assert response.status_code == 404
        assert response.json()["error"] == "BID_NOT_FOUND"


@pytest.mark.unit
class TestBidDecisions:
    async def test_accept_rejects_the_other_bids(self, client):
        _, client_headers = await register(client, "client")
        _, first_headers = await register(client, "driver")
        _, second_headers = await register(client, "driver")
        job_id = await create_job(client, client_headers)
        winner = (await _bid(client, job_id, first_headers)).json()
        loser = (await _bid(client, job_id, second_headers, "80.00")).json()

        response = await client.post(f"/bids/{winner['bid_id']}/accept", headers=client_headers)
        assert response.status_code == 200
        assert response.json()["job"]["assigned_bid_id"] == winner["bid_id"]

        loser_now = (await client.get(f"/bids/{loser['bid_id']}", headers=client_headers)).json()
        assert loser_now["status"] == "rejected"

    async def test_accept_by_driver_forbidden(self, client):
        _, client_headers = await register(client, "client")
        _, driver_headers = await register(client, "driver")
        job_id = await create_job(client, client_headers)
        bid_id = (await _bid(client, job_id, driver_headers)).json()["bid_id"]

        response = await client.post(f"/bids/{bid_id}/accept", headers=driver_headers)
        assert response.status_code == 403

    async def test_shortlist_then_reject(self, client):
        _, client_headers = await register(client, "client")
        _, driver_headers = await register(client, "driver")
        job_id = await create_job(client, client_headers)
        bid_id = (await _bid(client, job_id, driver_headers)).json()["bid_id"]

        shortlisted = await client.post(f"/bids/{bid_id}/shortlist", headers=client_headers)
        assert shortlisted.status_code == 200
        assert shortlisted.json()["status"] == "shortlisted"

        rejected = await client.post(f"/bids/{bid_id}/reject", headers=client_headers)
        assert rejected.status_code == 200
        assert rejected.json()["status"] == "rejected"

    async def test_driver_withdraws_own_bid(self, client):
        _, client_headers = await register(client, "client")
        _, driver_headers = await register(client, "driver")
        job_id = await create_job(client, client_headers)
        bid_id = (await _bid(client, job_id, driver_headers)).json()["bid_id"]

        response = await client.post(f"/bids/{bid_id}/withdraw", headers=driver_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "withdrawn"

        accept = await client.post(f"/bids/{bid_id}/accept", headers=client_headers)
        assert accept.status_code == 409
        assert accept.json()["error"] == "BID_NOT_ACCEPTABLE"
