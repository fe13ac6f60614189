from __future__ import annotations

import pytest

from app.db.models.mes_exec import ActivityRecord
from app.db.models.security_audit import AuditLog
from app.events.outbox import OutboxEvent
from services.production import activity
from services.production.activity import ProcessType, capabilities
from services.production.errors import ConflictError, ValidationError


@pytest.mark.parametrize("latest, expected", [
    (None, (True, False, False, False)),
    ("BAS", (False, True, False, True)),
    ("DEV", (False, True, False, True)),
    ("DUR", (False, False, True, True)),
    ("BIT", (True, False, False, False)),
    ("XYZ", (True, False, False, False)),
])
def test_capabilities_table(latest, expected):
    assert capabilities(latest) == expected


def _kw(**extra):
    return {"work_order_id": 1001, "employee_id": 7, "resource_code": "M-01", **extra}


def test_state_depends_only_on_latest_record(seeded):
    db = seeded
    activity.start_work(db, **_kw())
    activity.stop_work(db, **_kw(break_code="01"))
    activity.resume_work(db, **_kw())
    activity.stop_work(db, **_kw(break_code="02"))

    state = activity.get_worker_state(db, 1001, 7)["state"]
    assert state["process_type"] == "DUR"
    assert state["break_code"] == "02"
    assert (state["can_start"], state["can_stop"], state["can_resume"], state["can_finish"]) == (False, False, True, True)


def test_start_from_clean_and_after_finish(seeded):
    db = seeded
    out = activity.start_work(db, **_kw())
    assert out["success"] is True
    assert out["process_type"] == "BAS"
    assert out["state"]["can_stop"] is True

    activity.finish_work(db, **_kw(notes="lot done"))
    again = activity.start_work(db, **_kw())
    assert again["process_type"] == "BAS"
    assert db.query(ActivityRecord).count() == 3


@pytest.mark.parametrize("history", [["BAS"], ["BAS", "DEV"], ["BAS", "DUR"]])
def test_start_conflicts_while_work_is_open(seeded, history):
    db = seeded
    for pt in history:
        db.add(ActivityRecord(work_order_id=1001, employee_id=7, resource_code="M-01", process_type=pt,
                              break_code="01" if pt == "DUR" else None))
        db.commit()
    with pytest.raises(ConflictError):
        activity.start_work(db, **_kw())


def test_state_is_per_employee(seeded):
    db = seeded
    activity.start_work(db, **_kw())
    # another operator on the same order is unaffected
    out = activity.start_work(db, work_order_id=1001, employee_id=8, resource_code="M-02")
    assert out["success"] is True


def test_stop_requires_break_code_even_when_running(seeded):
    db = seeded
    activity.start_work(db, **_kw())
    with pytest.raises(ValidationError, match="Break reason code is required"):
        activity.stop_work(db, **_kw(break_code=None))
    with pytest.raises(ValidationError, match="Break reason code is required"):
        activity.stop_work(db, **_kw(break_code="   "))
    with pytest.raises(ValidationError, match="Invalid break reason code"):
        activity.stop_work(db, **_kw(break_code="99"))


def test_stop_before_start_conflicts(seeded):
    with pytest.raises(ConflictError):
        activity.stop_work(seeded, **_kw(break_code="01"))


def test_resume_and_finish_guards(seeded):
    db = seeded
    with pytest.raises(ConflictError):
        activity.resume_work(db, **_kw())
    with pytest.raises(ConflictError):
        activity.finish_work(db, **_kw())
    activity.start_work(db, **_kw())
    with pytest.raises(ConflictError):
        activity.resume_work(db, **_kw())


def test_invalid_inputs(seeded):
    db = seeded
    with pytest.raises(ValidationError):
        activity.start_work(db, work_order_id=0, employee_id=7, resource_code="M-01")
    with pytest.raises(ValidationError):
        activity.start_work(db, work_order_id=1001, employee_id=-1, resource_code="M-01")
    with pytest.raises(ValidationError, match="resource_code"):
        activity.start_work(db, work_order_id=1001, employee_id=7, resource_code=" ")
    with pytest.raises(ValidationError, match="not found"):
        activity.start_work(db, work_order_id=4242, employee_id=7, resource_code="M-01")


def test_transitions_are_audited_and_published(seeded):
    db = seeded
    out = activity.start_work(db, **_kw())
    log = db.query(AuditLog).filter(AuditLog.action == "mes.activity.started").one()
    assert log.actor == "emp:7"
    assert log.entity_id == out["activity_code"]
    evt = db.query(OutboxEvent).filter(OutboxEvent.topic == "mes.activity.started").one()
    assert evt.payload["work_order_id"] == 1001


def test_history_is_enriched_newest_first(seeded):
    db = seeded
    activity.start_work(db, **_kw())
    activity.stop_work(db, **_kw(break_code="01", notes="coffee"))
    activity.start_work(db, work_order_id=1001, employee_id=99, resource_code="M-03")

    entries = activity.get_activity_history(db, 1001)["entries"]
    assert [e["process_type"] for e in entries] == ["BAS", "DUR", "BAS"]

    unknown, stop, start = entries
    assert unknown["employee_name"] == "Unknown"
    assert stop["employee_name"] == "Ayşe Yılmaz"
    assert stop["break_reason_text"] == "Mola"
    assert stop["process_type_label"] == "Dur"
    assert stop["notes"] == "coffee"
    assert start["break_reason_text"] is None

    en = activity.get_activity_history(db, 1001, locale="en")["entries"]
    assert en[1]["process_type_label"] == "Stop"


def test_label_falls_back_to_code():
    assert activity.process_type_label("ZZZ") == "ZZZ"
    assert activity.process_type_label(ProcessType.FINISH.value, "tr") == "Bitir"
