from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from services.erp.service_layer import ServiceLayerClient, get_service_layer
from services.production import activity, entry
from services.production.break_reasons import list_break_reasons, search_break_reasons
from services.production.errors import HTTP_STATUS, ProductionError
from services.production.stock import get_stock_availability

router = APIRouter(tags=["production"])


# ---- Schemas ----
class NotesIn(BaseModel):
    notes: str | None = Field(default=None, max_length=512)


class StopIn(NotesIn):
    break_code: str | None = Field(default=None, max_length=32)


class EntryIn(BaseModel):
    accepted_qty: Decimal = Decimal("0")
    rejected_qty: Decimal = Decimal("0")


# ---- Operator context ----
@dataclass
class Operator:
    employee_id: int
    station_code: str | None


def get_operator(
    x_employee_id: int | None = Header(default=None),
    x_station_code: str | None = Header(default=None),
) -> Operator:
    if not x_employee_id:
        raise HTTPException(400, {"error": "VALIDATION", "message": "Employee id is required"})
    return Operator(employee_id=x_employee_id, station_code=(x_station_code or "").strip() or None)


def _station(op: Operator) -> str:
    if not op.station_code:
        raise HTTPException(400, {"error": "VALIDATION", "message": "No station selected"})
    return op.station_code


def _http(e: ProductionError) -> HTTPException:
    return HTTPException(HTTP_STATUS[e.kind], e.to_detail())


# ---- Activity ----
@router.get("/work-orders/{wo_id}/activity-state")
def activity_state(wo_id: int, db: Session = Depends(get_db), op: Operator = Depends(get_operator)):
    try:
        return activity.get_worker_state(db, wo_id, op.employee_id)
    except ProductionError as e:
        raise _http(e)


@router.post("/work-orders/{wo_id}/activity/start")
def start(wo_id: int, db: Session = Depends(get_db), op: Operator = Depends(get_operator)):
    station = _station(op)
    try:
        return activity.start_work(db, work_order_id=wo_id, employee_id=op.employee_id, resource_code=station)
    except ProductionError as e:
        raise _http(e)


@router.post("/work-orders/{wo_id}/activity/stop")
def stop(wo_id: int, payload: StopIn, db: Session = Depends(get_db), op: Operator = Depends(get_operator)):
    station = _station(op)
    try:
        return activity.stop_work(db, work_order_id=wo_id, employee_id=op.employee_id, resource_code=station,
                                  break_code=payload.break_code, notes=payload.notes)
    except ProductionError as e:
        raise _http(e)


@router.post("/work-orders/{wo_id}/activity/resume")
def resume(wo_id: int, payload: NotesIn | None = None, db: Session = Depends(get_db),
           op: Operator = Depends(get_operator)):
    station = _station(op)
    try:
        return activity.resume_work(db, work_order_id=wo_id, employee_id=op.employee_id, resource_code=station,
                                    notes=payload.notes if payload else None)
    except ProductionError as e:
        raise _http(e)


@router.post("/work-orders/{wo_id}/activity/finish")
def finish(wo_id: int, payload: NotesIn | None = None, db: Session = Depends(get_db),
           op: Operator = Depends(get_operator)):
    station = _station(op)
    try:
        return activity.finish_work(db, work_order_id=wo_id, employee_id=op.employee_id, resource_code=station,
                                    notes=payload.notes if payload else None)
    except ProductionError as e:
        raise _http(e)


@router.get("/work-orders/{wo_id}/activity-history")
def activity_history(wo_id: int, locale: str | None = None, db: Session = Depends(get_db)):
    try:
        return activity.get_activity_history(db, wo_id, locale=locale)
    except ProductionError as e:
        raise _http(e)


# ---- Production entry ----
@router.post("/work-orders/{wo_id}/production-entry/validate")
def validate_production_entry(wo_id: int, payload: EntryIn, db: Session = Depends(get_db)):
    try:
        return entry.validate_entry(db, wo_id, payload.accepted_qty, payload.rejected_qty).as_dict()
    except ProductionError as e:
        raise _http(e)


@router.post("/work-orders/{wo_id}/production-entry")
def report_production_entry(
    wo_id: int,
    payload: EntryIn,
    idempotency_key: str | None = Header(default=None),
    db: Session = Depends(get_db),
    erp: ServiceLayerClient = Depends(get_service_layer),
    op: Operator = Depends(get_operator),
):
    try:
        return entry.report_quantity(
            db,
            erp,
            work_order_id=wo_id,
            accepted_qty=payload.accepted_qty,
            rejected_qty=payload.rejected_qty,
            employee_id=op.employee_id,
            idempotency_key=idempotency_key,
        )
    except ProductionError as e:
        raise _http(e)


@router.get("/work-orders/{wo_id}/stock-availability")
def stock_availability(wo_id: int, db: Session = Depends(get_db)):
    if not activity.find_work_order(db, wo_id):
        raise HTTPException(404, {"error": "VALIDATION", "message": f"Work order not found: {wo_id}"})
    return {"work_order_id": wo_id, "lines": get_stock_availability(db, wo_id)}


@router.get("/break-reasons")
def break_reasons(search: str | None = None, db: Session = Depends(get_db)):
    if search:
        return search_break_reasons(db, search)
    return list_break_reasons(db)
