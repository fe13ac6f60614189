from __future__ import annotations

import os

# Must be set before app.db.session builds the engine.
os.environ["DATABASE_URL"] = "sqlite://"

from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app.db.base import Base
from app.db import models  # noqa: F401
from app.db.models.employee import Employee
from app.db.models.inventory import InventoryItem, StockBatch, WarehouseStock
from app.db.models.mes_exec import BreakReason, WorkOrder, WorkOrderMaterial
from app.db.session import SessionLocal, engine, get_db
from services.erp.service_layer import ServiceLayerError, get_service_layer


class FakeErp:
    """Records posted documents; `fail` maps a call kind to errors raised once, in order."""

    def __init__(self):
        self.issues: list[dict] = []
        self.receipts: list[dict] = []
        self.fail: dict[str, list[Exception]] = {}
        self._next = 1000

    def _doc(self) -> dict:
        self._next += 1
        return {"DocEntry": self._next}

    def _maybe_fail(self, kind: str) -> None:
        pending = self.fail.get(kind)
        if pending:
            raise pending.pop(0)

    def create_goods_issue(self, payload: dict) -> dict:
        self._maybe_fail("issue")
        self.issues.append(payload)
        return self._doc()

    def create_goods_receipt(self, payload: dict) -> dict:
        tx = payload["DocumentLines"][0]["TransactionType"]
        self._maybe_fail("receipt-" + tx)
        self.receipts.append(payload)
        return self._doc()


@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def erp():
    return FakeErp()


@pytest.fixture()
def seeded(db):
    """Work order 1001: planned 1000, completed 500, rejected 50.

    BOM per unit: 2 x RM-A (lot managed, 350 on hand) and 0.5 x RM-B (100 on hand).
    """
    db.add_all([
        InventoryItem(item_code="RM-A", name="Steel sheet", is_batch_managed=True),
        InventoryItem(item_code="RM-B", name="Paint", is_batch_managed=False),
        InventoryItem(item_code="SRV", name="Labour", is_inventory_item=False),
        InventoryItem(item_code="FG-1", name="Cabinet", is_batch_managed=True),
        Employee(id=7, first_name="Ayşe", last_name="Yılmaz"),
        BreakReason(code="01", name="Mola"),
        BreakReason(code="02", name="Arıza"),
        BreakReason(code="03", name="Malzeme bekleme"),
    ])
    db.flush()
    db.add_all([
        WorkOrder(id=1001, doc_num=5001, item_code="FG-1", product_name="Cabinet",
                  planned_qty=Decimal("1000"), completed_qty=Decimal("500"), rejected_qty=Decimal("50"),
                  status="RELEASED", warehouse="03"),
        WorkOrder(id=1002, doc_num=5002, item_code="FG-1", planned_qty=Decimal("100"), status="PLANNED"),
    ])
    db.flush()
    db.add_all([
        WorkOrderMaterial(work_order_id=1001, line_num=0, item_code="RM-A", warehouse="01",
                          base_qty=Decimal("2"), planned_qty=Decimal("2000"), issued_qty=Decimal("1000")),
        WorkOrderMaterial(work_order_id=1001, line_num=1, item_code="RM-B", warehouse="01",
                          base_qty=Decimal("0.5"), planned_qty=Decimal("500"), issued_qty=Decimal("250")),
        WorkOrderMaterial(work_order_id=1001, line_num=2, item_code="SRV", warehouse="01",
                          base_qty=Decimal("1"), planned_qty=Decimal("1000")),
        StockBatch(item_code="RM-A", batch_number="L-OLD", warehouse="01", in_date=date(2026, 10, 1), quantity=Decimal("200")),
        StockBatch(item_code="RM-A", batch_number="L-NEW", warehouse="01", in_date=date(2026, 10, 5), quantity=Decimal("150")),
        StockBatch(item_code="RM-A", batch_number="L-EMPTY", warehouse="01", in_date=date(2026, 10, 9), quantity=Decimal("0")),
        WarehouseStock(item_code="RM-B", warehouse="01", on_hand=Decimal("100")),
    ])
    db.commit()
    return db


@pytest.fixture()
def client(seeded, erp):
    from main import app

    def _db():
        yield seeded

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_service_layer] = lambda: erp
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def sl_error():
    def make(message: str, code: str | None = None) -> ServiceLayerError:
        return ServiceLayerError(message, code=code, status_code=400)
    return make
