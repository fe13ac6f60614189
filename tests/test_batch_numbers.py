from __future__ import annotations

from datetime import date
from decimal import Decimal

from app.db.models.inventory import StockBatch
from services.production.batch_numbers import format_batch_number, next_batch_number, query_max_batch_sequence

DAY = date(2026, 10, 18)


def test_format():
    assert format_batch_number("ANS", DAY, 7) == "ANS20261018007"


def test_first_of_day_is_001(db):
    bn = next_batch_number(db, today=DAY)
    assert bn.batch_number == "ANS20261018001"
    assert bn.date == "20261018"
    assert bn.sequence == 1


def test_continues_after_existing_lots(seeded):
    db = seeded
    db.add_all([
        StockBatch(item_code="FG-1", batch_number="ANS20261018007", warehouse="03", in_date=DAY, quantity=Decimal("1")),
        StockBatch(item_code="FG-1", batch_number="ANS20261018003", warehouse="FRD", in_date=DAY, quantity=Decimal("1")),
        StockBatch(item_code="FG-1", batch_number="ANS20261018X", warehouse="03", in_date=DAY, quantity=Decimal("1")),
        StockBatch(item_code="FG-1", batch_number="ANS20261017042", warehouse="03", in_date=DAY, quantity=Decimal("1")),
    ])
    db.commit()
    assert query_max_batch_sequence(db, "ANS20261018") == 7
    assert next_batch_number(db, today=DAY).batch_number.endswith("008")


def test_counter_never_repeats(db):
    numbers = [next_batch_number(db, today=DAY).batch_number for _ in range(5)]
    assert len(set(numbers)) == 5
    assert numbers[-1] == "ANS20261018005"
    # a new day starts over
    assert next_batch_number(db, today=date(2026, 10, 19)).batch_number == "ANS20261019001"
