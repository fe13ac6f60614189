"""
MODULE: INVENTORY SNAPSHOT
Read-side mirror of ERP item master, lot quantities and warehouse totals.
The ERP owns these numbers; rows here are refreshed from it and are only
trusted as a point-in-time view.
"""

from __future__ import annotations

from app.db.base import Base
from app.db.models.common import HasId, HasSeqId, HasCreatedAt
from datetime import date
from decimal import Decimal
from sqlalchemy import String, Date, Numeric, ForeignKey, Boolean, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

# ============= ITEM MASTER =============

class InventoryItem(Base, HasCreatedAt):
    """Item master (OITM)."""
    __tablename__ = "inv_item"

    item_code: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)

    is_batch_managed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_inventory_item: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

# ============= LOT QUANTITIES =============

class StockBatch(Base, HasSeqId, HasCreatedAt):
    """
    Quantity of one lot in one warehouse (OBTN joined with OBTQ).
    `id` is the internal entry ordinal that breaks same-day ties for LIFO.
    """
    __tablename__ = "inv_stock_batch"

    item_code: Mapped[str] = mapped_column(ForeignKey("inv_item.item_code"), nullable=False, index=True)
    batch_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    warehouse: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    in_date: Mapped[date] = mapped_column(Date, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 6), default=0, nullable=False)

    item: Mapped[InventoryItem] = relationship()

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_stock_batch_qty_nonneg"),
    )

Index("ix_stock_batch_item_whs", StockBatch.item_code, StockBatch.warehouse)

# ============= WAREHOUSE TOTALS =============

class WarehouseStock(Base, HasId, HasCreatedAt):
    """On-hand quantity per item and warehouse (OITW), used for non-batch items."""
    __tablename__ = "inv_warehouse_stock"

    item_code: Mapped[str] = mapped_column(ForeignKey("inv_item.item_code"), nullable=False, index=True)
    warehouse: Mapped[str] = mapped_column(String(16), nullable=False)
    on_hand: Mapped[Decimal] = mapped_column(Numeric(18, 6), default=0, nullable=False)

Index("ix_whs_stock_item_whs", WarehouseStock.item_code, WarehouseStock.warehouse, unique=True)
