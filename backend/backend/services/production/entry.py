"""Production entry: report accepted/rejected quantities against a work order.

Order of ERP writes is fixed: material issue (backflush), then the accepted
goods receipt, then the rejected goods receipt. There is no distributed
transaction; a receipt failure after the issue leaves materials consumed.
The saga record keeps each finished step so a retry with the same
idempotency key resumes at the failed step instead of posting again.
"""
from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import config
from app.core.audit import audit
from app.db.models.common import utcnow
from app.db.models.mes_exec import ProductionEntryLog, WorkOrder, WorkOrderMaterial
from app.events.bus import publish
from services.erp.service_layer import ServiceLayerError
from services.production.backflush import (
    BASE_TYPE_PRODUCTION_ORDER,
    ErpDocuments,
    execute_backflush,
)
from services.production.batch_numbers import next_batch_number
from services.production.stock import consume_stock, receive_stock
from services.production.errors import (
    ConflictError,
    IntegrationError,
    ProductionError,
    ValidationError,
)

logger = logging.getLogger(__name__)

RELEASED = "RELEASED"

STEP_MATERIAL_ISSUE = "material-issue"
STEP_RECEIPT_ACCEPTED = "receipt-accepted"
STEP_RECEIPT_REJECTED = "receipt-rejected"

# Goods receipt transaction types: C feeds completed qty, R feeds rejected qty.
TRAN_COMPLETE = "C"
TRAN_REJECT = "R"


def _dec(v) -> Decimal:
    return v if isinstance(v, Decimal) else Decimal(str(v or 0))


def _fmt(v: Decimal) -> str:
    return format(_dec(v).normalize(), "f")


@dataclass
class EntryValidation:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    new_remaining_qty: Decimal | None = None
    requires_confirmation: bool = False
    confirmation_message: str | None = None

    def as_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": self.errors,
            "new_remaining_qty": float(self.new_remaining_qty) if self.new_remaining_qty is not None else None,
            "requires_confirmation": self.requires_confirmation,
            "confirmation_message": self.confirmation_message,
        }


def _validate_id(value: int, what: str) -> None:
    if not value or value <= 0:
        raise ValidationError(f"Invalid {what}")


def _open_work_order(db: Session, work_order_id: int) -> WorkOrder:
    wo = db.get(WorkOrder, work_order_id)
    if not wo:
        raise ValidationError(f"Work order not found: {work_order_id}")
    if wo.status != RELEASED:
        raise ValidationError("Work order must be released to enter production quantities")
    return wo


def validate_entry(db: Session, work_order_id: int, accepted_qty, rejected_qty) -> EntryValidation:
    _validate_id(work_order_id, "work order id")
    wo = _open_work_order(db, work_order_id)

    accepted = _dec(accepted_qty)
    rejected = _dec(rejected_qty)
    errors: list[str] = []

    if accepted < 0:
        errors.append("Accepted quantity cannot be negative")
    if rejected < 0:
        errors.append("Rejected quantity cannot be negative")
    if accepted == 0 and rejected == 0:
        errors.append("Accepted or rejected quantity must be greater than zero")

    total = accepted + rejected
    remaining = wo.remaining_qty
    if total > remaining:
        errors.append(f"Total quantity ({_fmt(total)}) exceeds remaining quantity ({_fmt(remaining)})")

    if errors:
        return EntryValidation(is_valid=False, errors=errors)

    # Soft threshold: the client re-submits after an explicit confirmation.
    requires_confirmation = accepted > remaining / 2
    return EntryValidation(
        is_valid=True,
        new_remaining_qty=remaining - total,
        requires_confirmation=requires_confirmation,
        confirmation_message=(
            f"You are about to report {_fmt(accepted)} accepted units, which is more than half "
            f"of the remaining quantity ({_fmt(remaining)}). Are you sure?"
        ) if requires_confirmation else None,
    )


# ---- ERP error translation ----
def receipt_error_message(err: ServiceLayerError) -> str:
    code = err.code or ""
    message = err.message or ""
    # Some gateways hand back the raw JSON body as the message.
    try:
        parsed = json.loads(message)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict) and isinstance(parsed.get("error"), dict):
        inner = parsed["error"]
        code = str(inner.get("code") or code)
        msg = inner.get("message")
        message = (msg.get("value") if isinstance(msg, dict) else msg) or message

    if "Item Issued Qty in work order should be larger than zero" in message:
        return ("No material has been issued for this work order yet. "
                "Materials must be issued before production can be reported.")
    if "Update the exchange rate" in message:
        m = re.search(r"'(\w+)'", message)
        currency = m.group(1) if m else "currency"
        return f"No current exchange rate is defined for {currency}. Please contact your system administrator."
    if "field should be empty if the document is referenced" in message:
        return "ERP document reference error. Please contact your system administrator."
    if code == "-10":
        return "Exchange rate error. Please contact your system administrator."
    if code == "-5002":
        return f"ERP validation error: {message}"
    return f"ERP error: {message}"


def build_goods_receipt(work_order_id: int, quantity: Decimal, warehouse: str, batch_number: str | None,
                        transaction_type: str, doc_date: date) -> dict:
    # No ItemCode and no BaseLine: the ERP takes the product from the order header.
    line: dict = {
        "Quantity": float(quantity),
        "WarehouseCode": warehouse,
        "BaseEntry": work_order_id,
        "BaseType": BASE_TYPE_PRODUCTION_ORDER,
        "TransactionType": transaction_type,
    }
    if batch_number:
        line["BatchNumbers"] = [{"BatchNumber": batch_number, "Quantity": float(quantity)}]
    return {"DocDate": doc_date.isoformat(), "DocumentLines": [line]}


# ---- saga bookkeeping ----
def _step_key(entry: ProductionEntryLog, step: str) -> str:
    return f"{entry.batch_number}:{step}"


def _step_done(entry: ProductionEntryLog, step: str) -> bool:
    return _step_key(entry, step) in ((entry.meta or {}).get("steps") or {})


def _mark_step(db: Session, entry: ProductionEntryLog, step: str, **info) -> None:
    meta = dict(entry.meta or {})
    steps = dict(meta.get("steps") or {})
    steps[_step_key(entry, step)] = info
    meta["steps"] = steps
    entry.meta = meta
    db.commit()
    logger.info("Production entry %s: step %s done %s", entry.idempotency_key, _step_key(entry, step), info)


def _fail(db: Session, entry: ProductionEntryLog, message: str) -> None:
    entry.status = "FAILED"
    entry.last_error = message
    db.commit()
    logger.warning("Production entry %s failed: %s", entry.idempotency_key, message)


def _claim(db: Session, entry: ProductionEntryLog) -> None:
    """Take the saga row for this call. A RUNNING row is only taken over once its lease has lapsed."""
    now = utcnow()
    stale = now - timedelta(seconds=config.SAGA_LEASE_SECONDS)
    res = db.execute(
        update(ProductionEntryLog)
        .where(ProductionEntryLog.id == entry.id,
               or_(ProductionEntryLog.status.in_(("PENDING", "FAILED")),
                   and_(ProductionEntryLog.status == "RUNNING",
                        or_(ProductionEntryLog.claimed_at.is_(None), ProductionEntryLog.claimed_at < stale))))
        .values(status="RUNNING", claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if res.rowcount != 1:
        raise ConflictError("This production entry is already being processed. Try again shortly.")
    db.refresh(entry)


def _snapshot(wo: WorkOrder) -> dict:
    # Totals are reported relative to the order as it was before this entry.
    return {
        "planned_qty": str(wo.planned_qty),
        "completed_qty": str(wo.completed_qty or 0),
        "rejected_qty": str(wo.rejected_qty or 0),
    }


def _open_entry(db: Session, *, key: str, work_order_id: int, employee_id: int,
                accepted: Decimal, rejected: Decimal, wo: WorkOrder) -> ProductionEntryLog:
    entry = ProductionEntryLog(
        idempotency_key=key,
        work_order_id=work_order_id,
        employee_id=employee_id,
        accepted_qty=accepted,
        rejected_qty=rejected,
        status="RUNNING",
        claimed_at=utcnow(),
        meta={"before": _snapshot(wo), "steps": {}},
    )
    db.add(entry)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError("A production entry with this idempotency key is already in progress") from e
    db.refresh(entry)
    return entry


def _build_result(entry: ProductionEntryLog, materials_issued: list[dict]) -> dict:
    before = (entry.meta or {}).get("before") or {}
    planned = _dec(before.get("planned_qty"))
    completed = _dec(before.get("completed_qty")) + _dec(entry.accepted_qty)
    rejected = _dec(before.get("rejected_qty")) + _dec(entry.rejected_qty)
    remaining = planned - completed
    progress = int((completed / planned * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)) if planned > 0 else 0
    return {
        "success": True,
        "idempotency_key": entry.idempotency_key,
        "batch_number": entry.batch_number,
        "material_issue_doc_ref": entry.material_issue_ref,
        "accepted_doc_ref": entry.accepted_receipt_ref,
        "rejected_doc_ref": entry.rejected_receipt_ref,
        "materials_issued": materials_issued,
        "work_order": {
            "id": entry.work_order_id,
            "completed_qty": float(completed),
            "rejected_qty": float(rejected),
            "remaining_qty": float(remaining),
            "progress_percent": progress,
        },
    }


def _post_receipt(db: Session, erp: ErpDocuments, entry: ProductionEntryLog, *, quantity: Decimal,
                  warehouse: str, transaction_type: str, doc_date: date) -> int | None:
    payload = build_goods_receipt(entry.work_order_id, quantity, warehouse, entry.batch_number,
                                  transaction_type, doc_date)
    try:
        result = erp.create_goods_receipt(payload)
    except ServiceLayerError as e:
        message = receipt_error_message(e)
        _fail(db, entry, message)
        raise IntegrationError(message) from e
    return result.get("DocEntry")


# ---- main workflow ----
def report_quantity(
    db: Session,
    erp: ErpDocuments,
    *,
    work_order_id: int,
    accepted_qty,
    rejected_qty,
    employee_id: int,
    idempotency_key: str | None = None,
    today: date | None = None,
) -> dict:
    _validate_id(work_order_id, "work order id")
    _validate_id(employee_id, "employee id")
    accepted = _dec(accepted_qty)
    rejected = _dec(rejected_qty)
    today = today or date.today()

    entry = None
    if idempotency_key:
        entry = db.query(ProductionEntryLog).filter(ProductionEntryLog.idempotency_key == idempotency_key).first()

    if entry is not None:
        if (entry.work_order_id != work_order_id
                or _dec(entry.accepted_qty) != accepted
                or _dec(entry.rejected_qty) != rejected):
            raise ConflictError("Idempotency key was already used for a different production entry")
        if entry.status == "COMPLETED":
            logger.info("Production entry %s already completed, returning stored result", idempotency_key)
            return (entry.meta or {}).get("result") or _build_result(entry, [])
        wo = _open_work_order(db, work_order_id)
        if not (entry.meta or {}).get("steps"):
            # Nothing reached the ERP yet, so the quantities must still fit.
            validation = validate_entry(db, work_order_id, accepted, rejected)
            if not validation.is_valid:
                raise ValidationError(". ".join(validation.errors))
        _claim(db, entry)
        if not (entry.meta or {}).get("steps"):
            entry.meta = {**(entry.meta or {}), "before": _snapshot(wo)}
            db.commit()
        logger.info("Resuming production entry %s (batch %s)", idempotency_key, entry.batch_number)
    else:
        validation = validate_entry(db, work_order_id, accepted, rejected)
        if not validation.is_valid:
            raise ValidationError(". ".join(validation.errors))
        wo = _open_work_order(db, work_order_id)
        entry = _open_entry(
            db,
            key=idempotency_key or str(uuid.uuid4()),
            work_order_id=work_order_id,
            employee_id=employee_id,
            accepted=accepted,
            rejected=rejected,
            wo=wo,
        )

    total = accepted + rejected
    if total > 0 and not entry.batch_number:
        # One lot for both receipts keeps accepted and scrap traceable together.
        entry.batch_number = next_batch_number(db, today=today).batch_number
        db.commit()

    # 1) backflush
    materials_issued = list(((entry.meta or {}).get("materials_issued")) or [])
    if not _step_done(entry, STEP_MATERIAL_ISSUE):
        try:
            result = execute_backflush(db, erp, work_order_id=work_order_id, entry_qty=total,
                                       employee_id=employee_id, today=today)
        except ProductionError as e:
            _fail(db, entry, e.message)
            raise

        materials_issued = [m.as_dict() for m in result.materials_issued]
        issued = {m.line_num: m.quantity for m in result.materials_issued}
        if issued:
            for line in db.query(WorkOrderMaterial).filter(WorkOrderMaterial.work_order_id == work_order_id).all():
                if line.line_num in issued:
                    line.issued_qty = _dec(line.issued_qty) + issued[line.line_num]
        for m in result.materials_issued:
            consume_stock(db, item_code=m.item_code, warehouse=m.warehouse, quantity=m.quantity, batches=m.batches)
        entry.material_issue_ref = result.doc_ref
        entry.meta = {**(entry.meta or {}), "materials_issued": materials_issued}
        _mark_step(db, entry, STEP_MATERIAL_ISSUE, doc_ref=result.doc_ref)

    # 2) accepted goods
    if accepted > 0 and not _step_done(entry, STEP_RECEIPT_ACCEPTED):
        doc_ref = _post_receipt(db, erp, entry, quantity=accepted,
                                warehouse=wo.warehouse or config.DEFAULT_FG_WAREHOUSE,
                                transaction_type=TRAN_COMPLETE, doc_date=today)
        entry.accepted_receipt_ref = doc_ref
        wo.completed_qty = _dec(wo.completed_qty) + accepted
        receive_stock(db, item_code=wo.item_code, warehouse=wo.warehouse or config.DEFAULT_FG_WAREHOUSE,
                      quantity=accepted, batch_number=entry.batch_number, in_date=today)
        _mark_step(db, entry, STEP_RECEIPT_ACCEPTED, doc_ref=doc_ref)

    # 3) rejected goods, same lot
    if rejected > 0 and not _step_done(entry, STEP_RECEIPT_REJECTED):
        doc_ref = _post_receipt(db, erp, entry, quantity=rejected,
                                warehouse=config.REJECT_WAREHOUSE,
                                transaction_type=TRAN_REJECT, doc_date=today)
        entry.rejected_receipt_ref = doc_ref
        wo.rejected_qty = _dec(wo.rejected_qty) + rejected
        receive_stock(db, item_code=wo.item_code, warehouse=config.REJECT_WAREHOUSE,
                      quantity=rejected, batch_number=entry.batch_number, in_date=today)
        _mark_step(db, entry, STEP_RECEIPT_REJECTED, doc_ref=doc_ref)

    out = _build_result(entry, materials_issued)
    entry.status = "COMPLETED"
    entry.last_error = None
    entry.meta = {**(entry.meta or {}), "result": out}
    db.commit()

    audit(
        db,
        actor=f"emp:{employee_id}",
        action="mes.production_entry.reported",
        entity_type="mes_production_entry",
        entity_id=entry.id,
        payload={"work_order_id": work_order_id, "accepted_qty": accepted, "rejected_qty": rejected,
                 "batch_number": entry.batch_number},
    )
    publish(db, "mes.production_entry.reported", out)
    logger.info("WO %s: reported %s accepted / %s rejected as lot %s",
                work_order_id, _fmt(accepted), _fmt(rejected), entry.batch_number)
    return out
