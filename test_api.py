"""
API Test Suite

Drives the FastAPI app end to end: submit a week, confirm a driver,
finalize, then record and reverse a payment.
"""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from api.server import create_app
from reconciliation.engine import evaluate_checks


WEEK = "2025-W14"


@pytest.fixture
def client(settings, registry):
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def submitted(client):
    response = client.post("/batches", json={
        "week_label": WEEK,
        "trips": [
            {"trip_id": "T1", "driver_name": "Jurubita Razvan"},
            {"trip_id": "T2", "driver_name": "Andrei Marin"},
        ],
        "invoice_7day": [
            {"primary_id": "T1", "amount": 100},
            {"primary_id": "T2", "amount": "250"},
        ],
        "invoice_30day": [
            {"primary_id": "T2", "amount": "n/a"},
        ],
    })
    assert response.status_code == 201
    return response.json()


class TestBatchesAPI:

    def test_submit(self, submitted):
        assert submitted["version"] == 1
        assert submitted["status"] == "WARN"
        assert submitted["summary"]["lines_skipped"] == 1
        assert [p["driver_name"] for p in submitted["pending_mappings"]] == ["Jurubita Razvan"]
        assert submitted["report"]["Unmatched"]["Total_7_days"] == 100.0

    def test_confirm_then_report(self, client, submitted, registry):
        batch_id = submitted["batch_id"]
        pending = client.get(f"/mappings/{batch_id}/pending").json()
        assert pending[0]["suggestion"]["company_name"] == "Fast Express"

        response = client.post(f"/mappings/{batch_id}/confirm", json={
            "driver_name": "Jurubita Razvan",
            "company_id": registry["daniel"].id,
        })
        assert response.status_code == 200
        body = response.json()
        assert body["created"] is True
        assert body["result_version"] == 2
        assert body["pending_remaining"] == 0

        report = client.get(f"/batches/{batch_id}/report").json()
        daniel = report["Daniel Ontheroad S.R.L."]
        assert daniel["Total_7_days"] == 100.0
        assert daniel["Total_comision"] == 4.0
        assert "Unmatched" not in report

    def test_reassign(self, client, submitted, registry):
        batch_id = submitted["batch_id"]
        response = client.post(f"/batches/{batch_id}/reassign", json={
            "trip_id": "T1",
            "company_id": registry["stef"].id,
        })
        assert response.status_code == 200
        assert response.json()["report"]["Stef Trans S.R.L."]["Total_comision"] == 2.0

        missing = client.post(f"/batches/{batch_id}/reassign", json={"trip_id": "T1", "company_id": registry["stef"].id})
        assert missing.status_code == 404

    def test_errors(self, client, submitted):
        batch_id = submitted["batch_id"]

        response = client.get("/batches/B-missing")
        assert response.status_code == 404
        assert response.json()["error"] == "BatchNotFoundError"

        response = client.post(f"/mappings/{batch_id}/confirm", json={
            "driver_name": "Jurubita Razvan",
            "company_id": 999,
        })
        assert response.status_code == 422

        response = client.post(f"/mappings/{batch_id}/confirm", json={
            "driver_name": "Someone Else",
            "company_id": 1,
        })
        assert response.status_code == 404

    def test_trip_with_only_secondary_id(self, client):
        response = client.post("/batches", json={
            "week_label": WEEK,
            "trips": [{"secondary_id": "VR9", "driver_name": "Andrei Marin"}],
            "invoice_7day": [{"secondary_id": "VR9", "amount": "80"}],
        })
        assert response.status_code == 201
        fast = response.json()["report"]["Fast Express"]
        assert fast["VRID_details"]["VR9"]["commission"] == 3.2
        assert "Unmatched" not in response.json()["report"]

        response = client.post("/batches", json={
            "week_label": WEEK,
            "trips": [{"trip_id": " ", "driver_name": "Andrei Marin"}],
        })
        assert response.status_code == 422

    def test_blocked_finalize_is_conflict(self, client, submitted, settings):
        batch_id = submitted["batch_id"]
        held = client.app.state.orchestrator.store.get(batch_id)
        held.result.expected_total += Decimal("5")
        evaluate_checks(held.result, settings.discrepancy_tolerance)

        response = client.post(f"/batches/{batch_id}/finalize")
        assert response.status_code == 409
        assert response.json()["error"] == "BatchBlockedError"


class TestFinalizeAndBalancesAPI:

    @pytest.fixture
    def finalized(self, client, submitted, registry):
        batch_id = submitted["batch_id"]
        client.post(f"/mappings/{batch_id}/confirm", json={
            "driver_name": "Jurubita Razvan",
            "company_id": registry["daniel"].id,
        })
        response = client.post(f"/batches/{batch_id}/finalize")
        assert response.status_code == 200
        return response.json()

    def test_finalize(self, client, finalized):
        assert finalized["week_label"] == WEEK
        assert finalized["archived_trips"] == 2
        assert len(finalized["balances"]) == 2

        search = client.post("/historical/search", json={"trip_ids": ["T1", "T9"]}).json()
        assert search["found"] == 1
        assert search["found_trips"]["T1"]["driver_name"] == "Jurubita Razvan"

        stats = client.get("/historical/stats").json()
        assert stats["total_trips"] == 2

    def test_payment_and_delete(self, client, finalized, registry):
        company_id = registry["daniel"].id
        balances = client.get("/balances", params={"period_label": WEEK}).json()
        assert len(balances) == 2

        response = client.post(f"/balances/{company_id}/{WEEK}/payments", json={"amount": "50", "description": "transfer"})
        assert response.status_code == 201
        body = response.json()
        assert body["balance"]["status"] == "partial"
        assert Decimal(str(body["balance"]["outstanding"])) == Decimal("46")

        payments = client.get(f"/balances/{company_id}/{WEEK}/payments").json()
        assert len(payments) == 1

        deleted = client.delete(f"/balances/payments/{body['payment']['id']}")
        assert deleted.status_code == 200
        assert deleted.json()["status"] == "pending"
        assert Decimal(str(deleted.json()["total_paid"])) == Decimal("0")

        again = client.delete(f"/balances/payments/{body['payment']['id']}")
        assert again.status_code == 404

    def test_reverse_and_missing_balance(self, client, finalized, registry):
        company_id = registry["daniel"].id
        client.post(f"/balances/{company_id}/{WEEK}/payments", json={"amount": "96"})

        reversed_balance = client.post(f"/balances/{company_id}/{WEEK}/reverse", json={"amount": "20"}).json()
        assert reversed_balance["status"] == "partial"

        missing = client.get(f"/balances/{registry['stef'].id}/{WEEK}")
        assert missing.status_code == 404


class TestHealthAPI:

    def test_health(self, client, submitted):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["held_batches"] == 1
        assert body["services"]["database"] == "up"

        assert client.get("/ready").json() == {"status": "ready"}
        assert client.get("/live").json() == {"status": "alive"}


if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
