from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, DateTime, JSON, ForeignKey, Numeric, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.base import Base
from app.db.models.common import HasId, HasSeqId, HasCreatedAt, uuid4_str, utcnow

class WorkOrder(Base, HasCreatedAt):
    """Production order as mirrored from the ERP (OWOR)."""
    __tablename__ = "mes_work_order"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)  # ERP DocEntry
    doc_num: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    item_code: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    product_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    planned_qty: Mapped[Decimal] = mapped_column(Numeric(18,6), nullable=False)
    completed_qty: Mapped[Decimal] = mapped_column(Numeric(18,6), default=0, nullable=False)
    rejected_qty: Mapped[Decimal] = mapped_column(Numeric(18,6), default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(24), default="PLANNED", nullable=False, index=True)  # PLANNED/RELEASED/CLOSED/CANCELLED
    warehouse: Mapped[str | None] = mapped_column(String(16), nullable=True)

    @property
    def remaining_qty(self) -> Decimal:
        return Decimal(self.planned_qty or 0) - Decimal(self.completed_qty or 0)

class WorkOrderMaterial(Base, HasId, HasCreatedAt):
    """BOM line of a work order (WOR1)."""
    __tablename__ = "mes_work_order_material"
    work_order_id: Mapped[int] = mapped_column(ForeignKey("mes_work_order.id"), nullable=False, index=True)
    line_num: Mapped[int] = mapped_column(Integer, nullable=False)
    item_code: Mapped[str] = mapped_column(ForeignKey("inv_item.item_code"), nullable=False, index=True)
    warehouse: Mapped[str] = mapped_column(String(16), nullable=False)
    base_qty: Mapped[Decimal] = mapped_column(Numeric(18,6), nullable=False)  # per unit of output
    planned_qty: Mapped[Decimal] = mapped_column(Numeric(18,6), default=0, nullable=False)
    issued_qty: Mapped[Decimal] = mapped_column(Numeric(18,6), default=0, nullable=False)

    work_order: Mapped[WorkOrder] = relationship()

Index("ix_mes_wom_order_line", WorkOrderMaterial.work_order_id, WorkOrderMaterial.line_num, unique=True)

class BreakReason(Base, HasCreatedAt):
    __tablename__ = "mes_break_reason"
    code: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False, index=True)

class ActivityRecord(Base, HasSeqId, HasCreatedAt):
    """Append-only worker activity log. Never updated."""
    __tablename__ = "mes_activity"
    code: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, default=uuid4_str)
    work_order_id: Mapped[int] = mapped_column(ForeignKey("mes_work_order.id"), nullable=False, index=True)
    resource_code: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    employee_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    process_type: Mapped[str] = mapped_column(String(8), nullable=False)  # BAS/DUR/DEV/BIT
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    break_code: Mapped[str | None] = mapped_column(ForeignKey("mes_break_reason.code"), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(512), nullable=True)

Index("ix_mes_activity_order_emp_start", ActivityRecord.work_order_id, ActivityRecord.employee_id, ActivityRecord.started_at)

class BatchSequence(Base):
    """Per-day lot number counter, keyed by '{PREFIX}{YYYYMMDD}'."""
    __tablename__ = "mes_batch_sequence"
    prefix: Mapped[str] = mapped_column(String(32), primary_key=True)
    last_seq: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

class ProductionEntryLog(Base, HasId, HasCreatedAt):
    """Saga record of one production entry. Completed steps are kept in meta["steps"]
    under "{batch_number}:{step}" so a retried call never posts a document twice."""
    __tablename__ = "mes_production_entry"
    idempotency_key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    work_order_id: Mapped[int] = mapped_column(ForeignKey("mes_work_order.id"), nullable=False, index=True)
    employee_id: Mapped[int] = mapped_column(Integer, nullable=False)
    accepted_qty: Mapped[Decimal] = mapped_column(Numeric(18,6), nullable=False)
    rejected_qty: Mapped[Decimal] = mapped_column(Numeric(18,6), nullable=False)
    batch_number: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    material_issue_ref: Mapped[int | None] = mapped_column(Integer, nullable=True)
    accepted_receipt_ref: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rejected_receipt_ref: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="PENDING", nullable=False, index=True)  # PENDING/RUNNING/COMPLETED/FAILED
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
