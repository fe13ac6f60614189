"""Backflush: consume the raw materials implied by a reported quantity.

1. pre-flight stock check over the whole BOM
2. scale BOM lines to the entry quantity
3. pick lots newest-first for batch-managed items, re-check totals otherwise
4. post one goods issue (OIGE) that references the production order
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Protocol

from sqlalchemy.orm import Session

from services.erp.service_layer import ServiceLayerError
from services.production.errors import InsufficientStockError, IntegrationError
from services.production.stock import (
    BatchPick,
    get_material_requirements,
    get_total_available_qty,
    select_batches_lifo,
    validate_stock_for_entry,
)

logger = logging.getLogger(__name__)

# ERP object type of a production order (OWOR)
BASE_TYPE_PRODUCTION_ORDER = 202


class ErpDocuments(Protocol):
    def create_goods_issue(self, payload: dict) -> dict: ...
    def create_goods_receipt(self, payload: dict) -> dict: ...


@dataclass
class MaterialIssue:
    item_code: str
    warehouse: str
    quantity: Decimal
    line_num: int
    batches: list[BatchPick] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "item_code": self.item_code,
            "warehouse": self.warehouse,
            "quantity": float(self.quantity),
            "line_num": self.line_num,
            "batches": [{"batch_number": b.batch_number, "quantity": float(b.quantity)} for b in self.batches],
        }


@dataclass
class BackflushResult:
    doc_ref: int | None
    materials_issued: list[MaterialIssue]
    success: bool = True


def issue_error_message(err: ServiceLayerError) -> str:
    msg = err.message or ""
    if "insufficient quantity" in msg.lower():
        return "Insufficient stock quantity in the ERP. Please contact the warehouse supervisor."
    if "batch number" in msg.lower():
        return "Batch number error while issuing material. Please try again."
    return f"Material issue could not be created: {msg}"


def build_goods_issue(work_order_id: int, materials: list[MaterialIssue], employee_id: int, doc_date: date) -> dict:
    lines = []
    for m in materials:
        # ItemCode is derived by the ERP from the referenced order line.
        line: dict = {
            "Quantity": float(m.quantity),
            "WarehouseCode": m.warehouse,
            "BaseType": BASE_TYPE_PRODUCTION_ORDER,
            "BaseEntry": work_order_id,
            "BaseLine": m.line_num,
        }
        if m.batches:
            line["BatchNumbers"] = [b.as_payload() for b in m.batches]
        lines.append(line)
    return {
        "DocDate": doc_date.isoformat(),
        "Comments": f"MES Backflush - WO {work_order_id} - Emp {employee_id}",
        "DocumentLines": lines,
    }


def plan_material_issues(db: Session, work_order_id: int, entry_qty: Decimal) -> list[MaterialIssue]:
    """Steps 1-3: validate, scale and allocate. Raises InsufficientStockError."""
    shortages = validate_stock_for_entry(db, work_order_id, entry_qty)
    if shortages:
        logger.info("Backflush blocked for WO %s: %d material(s) short", work_order_id, len(shortages))
        raise InsufficientStockError(shortages)

    issues: list[MaterialIssue] = []
    for req in get_material_requirements(db, work_order_id, entry_qty):
        batches: list[BatchPick] = []
        if req.is_batch_managed:
            allocation = select_batches_lifo(db, req.item_code, req.warehouse, req.required_qty)
            if not allocation.is_sufficient:
                # Stock moved since the pre-flight check.
                logger.warning("Lot allocation short for %s in %s by %s", req.item_code, req.warehouse, allocation.shortage_qty)
                raise InsufficientStockError([req.with_availability(allocation.allocated_qty)])
            batches = allocation.batches
        else:
            available = get_total_available_qty(db, req.item_code, req.warehouse)
            if available < req.required_qty:
                raise InsufficientStockError([req.with_availability(available)])

        issues.append(MaterialIssue(
            item_code=req.item_code,
            warehouse=req.warehouse,
            quantity=req.required_qty,
            line_num=req.line_num,
            batches=batches,
        ))
    return issues


def execute_backflush(
    db: Session,
    erp: ErpDocuments,
    *,
    work_order_id: int,
    entry_qty: Decimal,
    employee_id: int,
    today: date | None = None,
) -> BackflushResult:
    issues = plan_material_issues(db, work_order_id, Decimal(entry_qty))
    if not issues:
        logger.info("WO %s has no inventory BOM lines, nothing to backflush", work_order_id)
        return BackflushResult(doc_ref=None, materials_issued=[])

    payload = build_goods_issue(work_order_id, issues, employee_id, today or date.today())
    try:
        result = erp.create_goods_issue(payload)
    except ServiceLayerError as e:
        raise IntegrationError(issue_error_message(e)) from e

    doc_ref = result.get("DocEntry")
    logger.info("Backflush for WO %s posted as goods issue %s (%d lines)", work_order_id, doc_ref, len(issues))
    return BackflushResult(doc_ref=doc_ref, materials_issued=issues)
