import pytest
from fastapi.testclient import TestClient

from korban.config import get_config
from korban.database import get_db
from korban.main import app


@pytest.fixture
def client(db, config):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_config] = lambda: config
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def participant_id(client):
    group = client.post("/api/groups", json={"name": "Kumpulan 1"}).json()
    resp = client.post("/api/participants", json={"name": "Ahmad", "group_id": group["id"]})
    assert resp.status_code == 200
    return resp.json()["id"]


def test_toggle_and_status(client, participant_id):
    resp = client.post("/api/ledger/payments/toggle", json={
        "participant_id": participant_id, "month": "2025-08", "paid": True,
    })
    assert resp.status_code == 200

    status = client.get(f"/api/ledger/participants/{participant_id}/status", params={"today": "2025-10-15"}).json()
    months = {m["month"]: m for m in status["months"]}
    assert months["2025-08"]["status"] == "paid"
    assert months["2025-09"]["status"] == "overdue"
    assert months["2025-11"]["overdue_months"] == 0
    assert status["paid_count"] == 1


def test_lump_sum_and_credit(client, participant_id):
    resp = client.post("/api/ledger/lump-sum", json={
        "participant_id": participant_id,
        "total_amount": 150,
        "target_months": ["2025-08", "2025-09"],
        "source_ref": "R-77",
    })
    body = resp.json()
    assert resp.status_code == 200
    assert body["months_marked_paid"] == 1
    assert body["credit_delta"] == -50.0

    credit = client.get(f"/api/ledger/participants/{participant_id}/credit").json()
    assert credit["credit_balance"] == 50.0
    assert [t["type"] for t in credit["transactions"]] == ["payment", "usage"]


def test_credit_adjust(client, participant_id):
    resp = client.post("/api/ledger/credit/adjust", json={"participant_id": participant_id, "amount": 25})
    assert resp.status_code == 200
    assert resp.json()["credit_balance"] == 25.0

    resp = client.post("/api/ledger/credit/adjust", json={"participant_id": participant_id, "amount": -5})
    assert resp.status_code == 400


def test_bulk_and_summaries(client, participant_id):
    other = client.post("/api/participants", json={"name": "Bakar"}).json()["id"]
    resp = client.post("/api/ledger/payments/bulk", json={
        "participant_ids": [participant_id, other], "month": "2025-08",
    })
    assert resp.json()["changed"] == 2

    groups = client.get("/api/ledger/summary/groups", params={"month": "2025-08"}).json()["groups"]
    assert sum(g["paid"] for g in groups) == 2
    months = client.get("/api/ledger/summary/months").json()["months"]
    assert months[0]["collected"] == 200.0
    assert client.get("/api/ledger/summary/overview").json()["total_participants"] == 2


def test_validation_errors_map_to_http(client, participant_id):
    resp = client.get("/api/ledger/participants/999/status")
    assert resp.status_code == 404

    resp = client.post("/api/ledger/payments/toggle", json={
        "participant_id": participant_id, "month": "2030-01", "paid": True,
    })
    assert resp.status_code == 400
    assert "2030-01" in resp.json()["detail"]


def test_integrity_endpoints(client, db, participant_id, add_payment):
    add_payment(participant_id, "2025-08")
    add_payment(participant_id, "2025-08")
    add_payment(999, "2025-09")

    scan = client.get("/api/integrity/scan").json()
    assert scan["total_issues"] == 2

    report = client.get("/api/integrity/report")
    assert report.headers["content-type"].startswith("text/plain")
    assert "DUPLICATE PAYMENTS: 1" in report.text

    cleanup = client.post("/api/integrity/cleanup").json()
    assert cleanup["removed"] == 1
    assert cleanup["remaining_issues"] == 1


def test_participant_lifecycle(client, participant_id):
    resp = client.patch(f"/api/participants/{participant_id}", json={"sacrifice_type": "aqiqah"})
    assert resp.json()["sacrifice_type"] == "aqiqah"

    assert client.post(f"/api/participants/{participant_id}/archive").json()["archived"] is True
    assert client.get("/api/participants").json()["total"] == 0
    assert client.get("/api/participants", params={"include_archived": True}).json()["total"] == 1

    assert client.get(f"/api/participants/{participant_id}/purge-preview").json()["payments"] == 0
    assert client.delete(f"/api/participants/{participant_id}").status_code == 400
    assert client.delete(f"/api/participants/{participant_id}", params={"confirm": True}).status_code == 200
    assert client.get(f"/api/participants/{participant_id}/purge-preview").status_code == 404


def test_change_request_flow(client, participant_id):
    resp = client.post(f"/api/participants/{participant_id}/change-requests", json={
        "requested_by": "0123456789", "changes": {"phone": "0199999999"}, "notes": "nombor baru",
    })
    assert resp.status_code == 200
    request_id = resp.json()["id"]

    queue = client.get("/api/change-requests").json()
    assert [r["id"] for r in queue["requests"]] == [request_id]

    approved = client.post(f"/api/change-requests/{request_id}/approve", json={"approved_by": "imam"})
    assert approved.json()["participant"]["phone"] == "0199999999"
    assert client.get("/api/change-requests").json()["total"] == 0
    assert client.get("/api/change-requests", params={"status": "approved"}).json()["total"] == 1

    again = client.post(f"/api/change-requests/{request_id}/reject", json={})
    assert again.status_code == 400
    assert client.post("/api/change-requests/999/approve", json={}).status_code == 404

    history = client.get(f"/api/participants/{participant_id}/change-requests").json()
    assert history["requests"][0]["status"] == "approved"

    log = client.get(f"/api/participants/{participant_id}/audit-log").json()
    assert [e["action"] for e in log["entries"]] == ["detail_change_approved", "detail_change_requested"]
    assert log["entries"][0]["field"] == "phone"


def test_change_request_validation_http(client, participant_id):
    assert client.post(f"/api/participants/{participant_id}/change-requests", json={
        "requested_by": "x", "changes": {"group_id": 3},
    }).status_code == 400
    assert client.post("/api/participants/999/change-requests", json={
        "requested_by": "x", "changes": {"phone": "1"},
    }).status_code == 404


def test_purge_keeps_credit_and_audit(client, participant_id):
    client.post("/api/ledger/lump-sum", json={
        "participant_id": participant_id, "total_amount": "150", "target_months": ["2025-08"],
    })
    client.patch(f"/api/participants/{participant_id}", params={"performed_by": "bendahari"},
                 json={"phone": "0111111111"})

    preview = client.get(f"/api/participants/{participant_id}/purge-preview").json()
    assert preview["credit_retained"] is True
    assert client.delete(f"/api/participants/{participant_id}", params={"confirm": True}).status_code == 200

    log = client.get(f"/api/participants/{participant_id}/audit-log").json()
    assert [e["action"] for e in log["entries"]] == ["purged", "detail_updated"]
    assert log["entries"][1]["performed_by"] == "bendahari"
