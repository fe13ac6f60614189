from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from app.db.models.inventory import StockBatch, WarehouseStock
from app.db.models.mes_exec import WorkOrder
from services.production import backflush
from services.production.backflush import build_goods_issue, execute_backflush, issue_error_message
from services.production.errors import InsufficientStockError, IntegrationError

DAY = date(2026, 10, 18)


def test_goods_issue_payload(seeded, erp):
    result = execute_backflush(seeded, erp, work_order_id=1001, entry_qty=Decimal("150"), employee_id=7, today=DAY)

    assert result.success is True
    assert result.doc_ref == 1001
    payload = erp.issues[0]
    assert payload["DocDate"] == "2026-10-18"
    assert payload["Comments"] == "MES Backflush - WO 1001 - Emp 7"

    steel, paint = payload["DocumentLines"]
    assert steel == {
        "Quantity": 300.0,
        "WarehouseCode": "01",
        "BaseType": 202,
        "BaseEntry": 1001,
        "BaseLine": 0,
        "BatchNumbers": [
            {"BatchNumber": "L-NEW", "Quantity": 150.0},
            {"BatchNumber": "L-OLD", "Quantity": 150.0},
        ],
    }
    assert "BatchNumbers" not in paint
    assert paint["Quantity"] == 75.0
    assert "ItemCode" not in paint


def test_insufficient_stock_posts_nothing(seeded, erp):
    with pytest.raises(InsufficientStockError) as exc:
        execute_backflush(seeded, erp, work_order_id=1001, entry_qty=Decimal("250"), employee_id=7, today=DAY)
    assert erp.issues == []
    details = exc.value.to_detail()
    assert details["error"] == "INSUFFICIENT_STOCK"
    by_item = {d["item_code"]: d for d in details["details"]}
    assert by_item["RM-A"] == {"item_code": "RM-A", "item_name": "Steel sheet", "required": 500.0,
                               "available": 350.0, "shortage": 150.0, "warehouse": "01"}
    assert by_item["RM-B"]["shortage"] == 25.0


def test_lot_allocation_rechecks_stock(seeded, erp, monkeypatch):
    monkeypatch.setattr(backflush, "validate_stock_for_entry", lambda db, wo, qty: [])
    with pytest.raises(InsufficientStockError) as exc:
        execute_backflush(seeded, erp, work_order_id=1001, entry_qty=Decimal("200"), employee_id=7, today=DAY)
    (short,) = exc.value.shortages
    assert short.item_code == "RM-A"
    assert short.required_qty == Decimal("400")
    assert short.available_qty == Decimal("350")
    assert short.shortage == Decimal("50")
    assert erp.issues == []


def test_plain_item_rechecks_stock(seeded, erp, monkeypatch):
    seeded.query(WarehouseStock).filter_by(item_code="RM-B").one().on_hand = Decimal("10")
    seeded.commit()
    monkeypatch.setattr(backflush, "validate_stock_for_entry", lambda db, wo, qty: [])
    with pytest.raises(InsufficientStockError) as exc:
        execute_backflush(seeded, erp, work_order_id=1001, entry_qty=Decimal("100"), employee_id=7, today=DAY)
    (short,) = exc.value.shortages
    assert (short.item_code, short.available_qty, short.shortage) == ("RM-B", Decimal("10"), Decimal("40"))
    assert erp.issues == []


def test_stock_drained_after_check_posts_nothing(seeded, erp, monkeypatch):
    check = backflush.validate_stock_for_entry

    def check_then_drain(db, work_order_id, entry_qty):
        out = check(db, work_order_id, entry_qty)
        # another terminal consumes L-OLD in between
        db.query(StockBatch).filter_by(batch_number="L-OLD").one().quantity = Decimal("0")
        db.commit()
        return out

    monkeypatch.setattr(backflush, "validate_stock_for_entry", check_then_drain)
    with pytest.raises(InsufficientStockError) as exc:
        execute_backflush(seeded, erp, work_order_id=1001, entry_qty=Decimal("150"), employee_id=7, today=DAY)
    (short,) = exc.value.shortages
    assert (short.available_qty, short.shortage) == (Decimal("150"), Decimal("150"))
    assert erp.issues == []


def test_order_without_bom_is_a_no_op(seeded, erp):
    seeded.add(WorkOrder(id=1003, doc_num=5003, item_code="FG-1", planned_qty=Decimal("10"), status="RELEASED"))
    seeded.commit()
    result = execute_backflush(seeded, erp, work_order_id=1003, entry_qty=Decimal("5"), employee_id=7, today=DAY)
    assert result.doc_ref is None
    assert result.materials_issued == []
    assert erp.issues == []


def test_erp_rejection_becomes_integration_error(seeded, erp, sl_error):
    erp.fail["issue"] = [sl_error("Batch number 'L-NEW' not found")]
    with pytest.raises(IntegrationError, match="Batch number error"):
        execute_backflush(seeded, erp, work_order_id=1001, entry_qty=Decimal("10"), employee_id=7, today=DAY)


def test_issue_error_messages(sl_error):
    assert "Insufficient stock" in issue_error_message(sl_error("Insufficient quantity for item RM-A"))
    assert issue_error_message(sl_error("boom")) == "Material issue could not be created: boom"


def test_build_goods_issue_empty_materials():
    payload = build_goods_issue(1001, [], 7, DAY)
    assert payload["DocumentLines"] == []
