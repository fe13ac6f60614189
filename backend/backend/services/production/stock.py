from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from sqlalchemy.orm import Session

from app.db.models.inventory import InventoryItem, StockBatch, WarehouseStock
from app.db.models.mes_exec import WorkOrderMaterial

ZERO = Decimal("0")


@dataclass(frozen=True)
class MaterialRequirement:
    item_code: str
    item_name: str
    warehouse: str
    base_qty: Decimal
    required_qty: Decimal
    available_qty: Decimal
    shortage: Decimal
    is_batch_managed: bool
    line_num: int

    def with_availability(self, available_qty: Decimal) -> "MaterialRequirement":
        return replace(
            self,
            available_qty=available_qty,
            shortage=max(ZERO, self.required_qty - available_qty),
        )


@dataclass(frozen=True)
class BatchInfo:
    item_code: str
    batch_number: str
    batch_entry: int
    in_date: date
    warehouse: str
    available_qty: Decimal


@dataclass(frozen=True)
class BatchPick:
    batch_number: str
    quantity: Decimal
    batch_entry: int | None = None

    def as_payload(self) -> dict:
        return {"BatchNumber": self.batch_number, "Quantity": float(self.quantity)}


@dataclass
class BatchAllocation:
    batches: list[BatchPick] = field(default_factory=list)
    is_sufficient: bool = True
    allocated_qty: Decimal = ZERO
    shortage_qty: Decimal = ZERO


def _dec(v) -> Decimal:
    return v if isinstance(v, Decimal) else Decimal(str(v or 0))


def get_available_batches(db: Session, item_code: str, warehouse: str) -> list[BatchInfo]:
    """Lots with stock, newest first (in-date DESC, entry DESC)."""
    rows = (db.query(StockBatch)
            .filter(StockBatch.item_code == item_code,
                    StockBatch.warehouse == warehouse,
                    StockBatch.quantity > 0)
            .order_by(StockBatch.in_date.desc(), StockBatch.id.desc())
            .all())
    return [
        BatchInfo(
            item_code=r.item_code,
            batch_number=r.batch_number,
            batch_entry=r.id,
            in_date=r.in_date,
            warehouse=r.warehouse,
            available_qty=_dec(r.quantity),
        )
        for r in rows
    ]


def _warehouse_row(db: Session, item_code: str, warehouse: str) -> WarehouseStock | None:
    return (db.query(WarehouseStock)
            .filter(WarehouseStock.item_code == item_code, WarehouseStock.warehouse == warehouse)
            .first())


def get_total_available_qty(db: Session, item_code: str, warehouse: str) -> Decimal:
    item = db.query(InventoryItem).filter(InventoryItem.item_code == item_code).first()
    if item is not None and item.is_batch_managed:
        qtys = (db.query(StockBatch.quantity)
                .filter(StockBatch.item_code == item_code,
                        StockBatch.warehouse == warehouse,
                        StockBatch.quantity > 0)
                .all())
        return sum((_dec(q) for (q,) in qtys), ZERO)
    row = _warehouse_row(db, item_code, warehouse)
    if not row or _dec(row.on_hand) <= 0:
        return ZERO
    return _dec(row.on_hand)


def _bom_lines(db: Session, work_order_id: int) -> list[tuple[WorkOrderMaterial, InventoryItem]]:
    return (db.query(WorkOrderMaterial, InventoryItem)
            .join(InventoryItem, InventoryItem.item_code == WorkOrderMaterial.item_code)
            .filter(WorkOrderMaterial.work_order_id == work_order_id,
                    InventoryItem.is_inventory_item == True)  # noqa: E712
            .order_by(WorkOrderMaterial.line_num.asc())
            .all())


def get_material_requirements(db: Session, work_order_id: int, entry_qty: Decimal) -> list[MaterialRequirement]:
    """Every inventory BOM line scaled to `entry_qty`, with current availability."""
    entry_qty = _dec(entry_qty)
    out: list[MaterialRequirement] = []
    for line, item in _bom_lines(db, work_order_id):
        required = _dec(line.base_qty) * entry_qty
        available = get_total_available_qty(db, line.item_code, line.warehouse)
        out.append(MaterialRequirement(
            item_code=line.item_code,
            item_name=item.name,
            warehouse=line.warehouse,
            base_qty=_dec(line.base_qty),
            required_qty=required,
            available_qty=available,
            shortage=max(ZERO, required - available),
            is_batch_managed=bool(item.is_batch_managed),
            line_num=line.line_num,
        ))
    return out


def validate_stock_for_entry(db: Session, work_order_id: int, entry_qty: Decimal) -> list[MaterialRequirement]:
    """Only the lines that are short; empty means the entry is covered."""
    return [r for r in get_material_requirements(db, work_order_id, entry_qty) if r.shortage > 0]


def allocate_lifo(batches: list[BatchInfo], required_qty: Decimal) -> BatchAllocation:
    """Greedy newest-first allocation over `batches` (already ordered newest first)."""
    required_qty = _dec(required_qty)
    remaining = required_qty
    picks: list[BatchPick] = []
    for b in batches:
        if remaining <= 0:
            break
        if b.available_qty <= 0:
            continue
        take = b.available_qty if b.available_qty <= remaining else remaining
        picks.append(BatchPick(batch_number=b.batch_number, quantity=take, batch_entry=b.batch_entry))
        remaining -= take
    return BatchAllocation(
        batches=picks,
        is_sufficient=remaining <= 0,
        allocated_qty=required_qty - remaining,
        shortage_qty=max(ZERO, remaining),
    )


def select_batches_lifo(db: Session, item_code: str, warehouse: str, required_qty: Decimal) -> BatchAllocation:
    """Re-reads lot stock; callers must treat is_sufficient=False as fatal."""
    return allocate_lifo(get_available_batches(db, item_code, warehouse), required_qty)


# ---- local mirror upkeep after posted ERP documents (caller commits) ----
def consume_stock(db: Session, *, item_code: str, warehouse: str, quantity: Decimal,
                  batches: list[BatchPick] | None = None) -> None:
    for pick in batches or []:
        row = db.get(StockBatch, pick.batch_entry) if pick.batch_entry is not None else None
        if row is None:
            row = (db.query(StockBatch)
                   .filter(StockBatch.item_code == item_code,
                           StockBatch.warehouse == warehouse,
                           StockBatch.batch_number == pick.batch_number)
                   .order_by(StockBatch.id.desc())
                   .first())
        if row is not None:
            row.quantity = max(ZERO, _dec(row.quantity) - _dec(pick.quantity))
    on_hand = _warehouse_row(db, item_code, warehouse)
    if on_hand is not None:
        on_hand.on_hand = max(ZERO, _dec(on_hand.on_hand) - _dec(quantity))


def receive_stock(db: Session, *, item_code: str, warehouse: str, quantity: Decimal,
                  batch_number: str | None, in_date: date) -> None:
    item = db.get(InventoryItem, item_code)
    if item is None:
        # not mirrored yet; the next ERP sync brings it in
        return
    if item.is_batch_managed and batch_number:
        db.add(StockBatch(item_code=item_code, batch_number=batch_number, warehouse=warehouse,
                          in_date=in_date, quantity=_dec(quantity)))
    on_hand = _warehouse_row(db, item_code, warehouse)
    if on_hand is None:
        db.add(WarehouseStock(item_code=item_code, warehouse=warehouse, on_hand=_dec(quantity)))
    else:
        on_hand.on_hand = _dec(on_hand.on_hand) + _dec(quantity)


def get_stock_availability(db: Session, work_order_id: int) -> list[dict]:
    """Pick-list view: remaining-to-issue per BOM line against warehouse stock."""
    out = []
    for line, item in _bom_lines(db, work_order_id):
        planned = _dec(line.planned_qty)
        issued = _dec(line.issued_qty)
        remaining = planned - issued
        available = get_total_available_qty(db, line.item_code, line.warehouse)
        short = remaining - available if available < remaining else ZERO
        out.append({
            "line_num": line.line_num,
            "item_code": line.item_code,
            "item_name": item.name,
            "source_warehouse": line.warehouse,
            "base_qty": float(line.base_qty),
            "planned_qty": float(planned),
            "issued_qty": float(issued),
            "remaining_to_issue": float(remaining),
            "available_in_warehouse": float(available),
            "stock_status": "INSUFFICIENT" if short > 0 else "OK",
            "shortage": float(short),
        })
    return out
