from __future__ import annotations

from app.db.models.security_audit import AuditLog

OPERATOR = {"X-Employee-Id": "7", "X-Station-Code": "M-01"}


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_activity_flow(client):
    r = client.get("/work-orders/1001/activity-state", headers=OPERATOR)
    assert r.status_code == 200
    assert r.json()["state"]["can_start"] is True

    r = client.post("/work-orders/1001/activity/start", headers=OPERATOR)
    assert r.status_code == 200
    assert r.json()["process_type"] == "BAS"
    assert r.headers["X-Request-Id"]

    r = client.post("/work-orders/1001/activity/start", headers=OPERATOR)
    assert r.status_code == 409
    assert r.json()["detail"]["error"] == "CONFLICT"

    r = client.post("/work-orders/1001/activity/stop", headers=OPERATOR, json={})
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "VALIDATION"

    r = client.post("/work-orders/1001/activity/stop", headers=OPERATOR, json={"break_code": "02", "notes": "jam"})
    assert r.status_code == 200
    assert r.json()["state"]["can_resume"] is True

    assert client.post("/work-orders/1001/activity/resume", headers=OPERATOR).status_code == 200
    assert client.post("/work-orders/1001/activity/finish", headers=OPERATOR, json={"notes": "done"}).status_code == 200

    history = client.get("/work-orders/1001/activity-history", params={"locale": "en"}).json()["entries"]
    assert [e["process_type_label"] for e in history] == ["Finish", "Resume", "Stop", "Start"]
    assert history[2]["break_reason_text"] == "Arıza"


def test_actions_need_a_station_and_employee(client):
    r = client.post("/work-orders/1001/activity/start", headers={"X-Employee-Id": "7"})
    assert r.status_code == 400
    assert r.json()["detail"]["message"] == "No station selected"

    r = client.post("/work-orders/1001/activity/start", headers={"X-Station-Code": "M-01"})
    assert r.status_code == 400


def test_failed_calls_are_audited(client, db):
    client.post("/work-orders/1001/activity/resume", headers={**OPERATOR, "X-Request-Id": "req-1"})
    log = db.query(AuditLog).filter(AuditLog.request_id == "req-1").one()
    assert log.actor == "emp:7"
    assert log.status_code == 409
    assert log.success is False


def test_validate_endpoint(client):
    r = client.post("/work-orders/1001/production-entry/validate", json={"accepted_qty": 300, "rejected_qty": 0})
    body = r.json()
    assert r.status_code == 200
    assert body["is_valid"] is True
    assert body["requires_confirmation"] is True

    r = client.post("/work-orders/1001/production-entry/validate", json={"accepted_qty": 0, "rejected_qty": 0})
    assert r.json()["is_valid"] is False

    r = client.post("/work-orders/1002/production-entry/validate", json={"accepted_qty": 1})
    assert r.status_code == 400


def test_report_endpoint_is_idempotent(client, erp):
    headers = {**OPERATOR, "Idempotency-Key": "terminal-1-0001"}
    r = client.post("/work-orders/1001/production-entry", headers=headers,
                    json={"accepted_qty": 100, "rejected_qty": 50})
    assert r.status_code == 200
    first = r.json()
    assert first["work_order"]["remaining_qty"] == 400.0
    assert first["batch_number"].startswith("ANS")
    assert first["idempotency_key"] == "terminal-1-0001"

    r = client.post("/work-orders/1001/production-entry", headers=headers,
                    json={"accepted_qty": 100, "rejected_qty": 50})
    assert r.json()["batch_number"] == first["batch_number"]
    assert len(erp.issues) == 1
    assert len(erp.receipts) == 2


def test_report_endpoint_insufficient_stock(client, erp):
    r = client.post("/work-orders/1001/production-entry", headers=OPERATOR,
                    json={"accepted_qty": 250, "rejected_qty": 0})
    assert r.status_code == 400
    detail = r.json()["detail"]
    assert detail["error"] == "INSUFFICIENT_STOCK"
    assert {d["item_code"] for d in detail["details"]} == {"RM-A", "RM-B"}
    assert erp.receipts == []


def test_stock_availability_and_break_reasons(client):
    lines = client.get("/work-orders/1001/stock-availability").json()["lines"]
    assert [l["item_code"] for l in lines] == ["RM-A", "RM-B"]
    assert client.get("/work-orders/4242/stock-availability").status_code == 404

    reasons = client.get("/break-reasons").json()
    assert [r["code"] for r in reasons] == ["02", "03", "01"]
    assert client.get("/break-reasons", params={"search": "mola"}).json() == [{"code": "01", "name": "Mola"}]
