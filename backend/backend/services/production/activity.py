"""Worker activity on work orders: start (BAS), stop (DUR), resume (DEV), finish (BIT).

The log is append-only. A worker's state on an order is always derived from
their most recent record; nothing else is stored.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import asdict, dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from app.core import config
from app.core.audit import audit
from app.db.models.common import utcnow
from app.db.models.employee import Employee
from app.db.models.mes_exec import ActivityRecord, BreakReason, WorkOrder
from app.events.bus import publish
from services.production.break_reasons import find_break_reason
from services.production.errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)


class ProcessType(str, enum.Enum):
    START = "BAS"
    STOP = "DUR"
    RESUME = "DEV"
    FINISH = "BIT"


PROCESS_TYPE_LABELS = {
    ProcessType.START: {"tr": "Başla", "en": "Start"},
    ProcessType.STOP: {"tr": "Dur", "en": "Stop"},
    ProcessType.RESUME: {"tr": "Devam", "en": "Resume"},
    ProcessType.FINISH: {"tr": "Bitir", "en": "Finish"},
}

_EVENT_NAMES = {
    ProcessType.START: "started",
    ProcessType.STOP: "stopped",
    ProcessType.RESUME: "resumed",
    ProcessType.FINISH: "finished",
}


@dataclass(frozen=True)
class WorkerState:
    activity_code: str | None
    process_type: str | None
    last_activity_time: datetime | None
    break_code: str | None
    can_start: bool
    can_stop: bool
    can_resume: bool
    can_finish: bool

    def as_dict(self) -> dict:
        d = asdict(self)
        d["last_activity_time"] = self.last_activity_time.isoformat() if self.last_activity_time else None
        return d


def capabilities(process_type: str | None) -> tuple[bool, bool, bool, bool]:
    """(can_start, can_stop, can_resume, can_finish) for the latest process type."""
    if process_type in (ProcessType.START.value, ProcessType.RESUME.value):
        return False, True, False, True
    if process_type == ProcessType.STOP.value:
        return False, False, True, True
    # none, finished, or anything unrecognised
    return True, False, False, False


def derive_state(latest: ActivityRecord | None) -> WorkerState:
    if latest is None:
        return WorkerState(None, None, None, None, *capabilities(None))
    return WorkerState(
        latest.code,
        latest.process_type,
        latest.started_at,
        latest.break_code,
        *capabilities(latest.process_type),
    )


def process_type_label(process_type: str, locale: str | None = None) -> str:
    locale = locale or config.MES_LOCALE
    try:
        return PROCESS_TYPE_LABELS[ProcessType(process_type)].get(locale, process_type)
    except ValueError:
        return process_type


# ---- queries ----
def get_latest_activity(db: Session, work_order_id: int, employee_id: int) -> ActivityRecord | None:
    return (db.query(ActivityRecord)
            .filter(ActivityRecord.work_order_id == work_order_id,
                    ActivityRecord.employee_id == employee_id)
            .order_by(ActivityRecord.started_at.desc(), ActivityRecord.id.desc())
            .first())


def find_work_order(db: Session, work_order_id: int) -> WorkOrder | None:
    return db.get(WorkOrder, work_order_id)


def create_activity(db: Session, **fields) -> ActivityRecord:
    rec = ActivityRecord(**fields)
    db.add(rec)
    db.commit()
    db.refresh(rec)
    return rec


def find_activities(db: Session, work_order_id: int):
    return (db.query(ActivityRecord, Employee, BreakReason)
            .outerjoin(Employee, Employee.id == ActivityRecord.employee_id)
            .outerjoin(BreakReason, BreakReason.code == ActivityRecord.break_code)
            .filter(ActivityRecord.work_order_id == work_order_id)
            .order_by(ActivityRecord.started_at.desc(), ActivityRecord.id.desc())
            .all())


# ---- guards ----
def _validate_ids(work_order_id: int, employee_id: int | None = None, resource_code: str | None = None, *, need_resource: bool = False) -> None:
    if not work_order_id or work_order_id <= 0:
        raise ValidationError("Invalid work order id")
    if employee_id is not None and employee_id <= 0:
        raise ValidationError("Invalid employee id")
    if need_resource and (not resource_code or not resource_code.strip()):
        raise ValidationError("Machine code (resource_code) is required")


def _require_work_order(db: Session, work_order_id: int) -> WorkOrder:
    wo = find_work_order(db, work_order_id)
    if not wo:
        raise ValidationError(f"Work order not found: {work_order_id}")
    return wo


# ---- operations ----
def get_worker_state(db: Session, work_order_id: int, employee_id: int) -> dict:
    _validate_ids(work_order_id, employee_id or 0)
    _require_work_order(db, work_order_id)
    state = derive_state(get_latest_activity(db, work_order_id, employee_id))
    return {"state": state.as_dict(), "work_order_id": work_order_id, "employee_id": employee_id}


def _append(
    db: Session,
    *,
    work_order_id: int,
    employee_id: int,
    resource_code: str,
    process_type: ProcessType,
    break_code: str | None = None,
    notes: str | None = None,
) -> dict:
    rec = create_activity(
        db,
        work_order_id=work_order_id,
        employee_id=employee_id,
        resource_code=resource_code.strip(),
        process_type=process_type.value,
        started_at=utcnow(),
        break_code=break_code,
        notes=notes,
    )

    state = derive_state(rec)
    timestamp = rec.started_at.isoformat()
    logger.info("WO %s emp %s on %s: %s", work_order_id, employee_id, rec.resource_code, process_type.value)

    audit(
        db,
        actor=f"emp:{employee_id}",
        action=f"mes.activity.{_EVENT_NAMES[process_type]}",
        entity_type="mes_activity",
        entity_id=rec.code,
        payload={"work_order_id": work_order_id, "resource_code": rec.resource_code, "break_code": break_code},
    )
    publish(db, f"mes.activity.{_EVENT_NAMES[process_type]}", {
        "activity_code": rec.code,
        "work_order_id": work_order_id,
        "employee_id": employee_id,
        "resource_code": rec.resource_code,
        "process_type": process_type.value,
        "break_code": break_code,
        "timestamp": timestamp,
    })

    return {
        "success": True,
        "activity_code": rec.code,
        "process_type": process_type.value,
        "timestamp": timestamp,
        "state": state.as_dict(),
    }


def start_work(db: Session, *, work_order_id: int, employee_id: int, resource_code: str) -> dict:
    _validate_ids(work_order_id, employee_id or 0, resource_code, need_resource=True)
    _require_work_order(db, work_order_id)

    state = derive_state(get_latest_activity(db, work_order_id, employee_id))
    if not state.can_start:
        raise ConflictError(
            "Cannot start work. Work is already in progress or paused. "
            "Use resume to continue or finish to complete current work."
        )
    return _append(db, work_order_id=work_order_id, employee_id=employee_id,
                   resource_code=resource_code, process_type=ProcessType.START)


def stop_work(db: Session, *, work_order_id: int, employee_id: int, resource_code: str,
              break_code: str | None, notes: str | None = None) -> dict:
    _validate_ids(work_order_id, employee_id or 0, resource_code, need_resource=True)
    if not break_code or not break_code.strip():
        raise ValidationError("Break reason code is required when stopping work")
    _require_work_order(db, work_order_id)

    reason = find_break_reason(db, break_code)
    if not reason:
        raise ValidationError(f"Invalid break reason code: {break_code}")

    state = derive_state(get_latest_activity(db, work_order_id, employee_id))
    if not state.can_stop:
        raise ConflictError("Cannot stop work. Work must be started or resumed before stopping.")
    return _append(db, work_order_id=work_order_id, employee_id=employee_id,
                   resource_code=resource_code, process_type=ProcessType.STOP,
                   break_code=reason.code, notes=notes)


def resume_work(db: Session, *, work_order_id: int, employee_id: int, resource_code: str,
                notes: str | None = None) -> dict:
    _validate_ids(work_order_id, employee_id or 0, resource_code, need_resource=True)
    _require_work_order(db, work_order_id)

    state = derive_state(get_latest_activity(db, work_order_id, employee_id))
    if not state.can_resume:
        raise ConflictError("Cannot resume work. Work must be paused before resuming.")
    return _append(db, work_order_id=work_order_id, employee_id=employee_id,
                   resource_code=resource_code, process_type=ProcessType.RESUME, notes=notes)


def finish_work(db: Session, *, work_order_id: int, employee_id: int, resource_code: str,
                notes: str | None = None) -> dict:
    _validate_ids(work_order_id, employee_id or 0, resource_code, need_resource=True)
    _require_work_order(db, work_order_id)

    state = derive_state(get_latest_activity(db, work_order_id, employee_id))
    if not state.can_finish:
        raise ConflictError("Cannot finish work. Work must be started before finishing.")
    return _append(db, work_order_id=work_order_id, employee_id=employee_id,
                   resource_code=resource_code, process_type=ProcessType.FINISH, notes=notes)


def get_activity_history(db: Session, work_order_id: int, *, locale: str | None = None) -> dict:
    _validate_ids(work_order_id)
    _require_work_order(db, work_order_id)

    entries = []
    for rec, emp, reason in find_activities(db, work_order_id):
        entries.append({
            "code": rec.code,
            "process_type": rec.process_type,
            "process_type_label": process_type_label(rec.process_type, locale),
            "timestamp": rec.started_at.isoformat(),
            "employee_id": rec.employee_id,
            "employee_name": emp.display_name if emp else "Unknown",
            "resource_code": rec.resource_code,
            "break_code": rec.break_code,
            "break_reason_text": reason.name if reason else None,
            "notes": rec.notes,
        })
    return {"work_order_id": work_order_id, "entries": entries}
