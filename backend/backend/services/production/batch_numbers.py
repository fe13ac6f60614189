"""Lot numbers for production receipts: {PREFIX}{YYYYMMDD}{SEQ:03d}.

The daily sequence lives in one mes_batch_sequence row per prefix+date. The
row is seeded once from the highest suffix already present in lot stock,
then advanced only with an atomic UPDATE, so concurrent callers never
compute the same "max + 1".
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import config
from app.db.models.inventory import StockBatch
from app.db.models.mes_exec import BatchSequence

logger = logging.getLogger(__name__)

SEQ_WIDTH = 3
SEED_ATTEMPTS = 3


@dataclass(frozen=True)
class BatchNumber:
    batch_number: str
    date: str
    sequence: int


def format_batch_number(prefix: str, day: date, sequence: int) -> str:
    return f"{prefix}{day.strftime('%Y%m%d')}{sequence:0{SEQ_WIDTH}d}"


def query_max_batch_sequence(db: Session, date_prefix: str) -> int | None:
    """Highest numeric suffix among lots named '{date_prefix}NNN', or None."""
    rows = (db.query(StockBatch.batch_number)
            .filter(StockBatch.batch_number.like(f"{date_prefix}%"))
            .distinct()
            .all())
    best: int | None = None
    for (number,) in rows:
        suffix = number[len(date_prefix):]
        if not suffix.isdigit():
            continue
        seq = int(suffix)
        if best is None or seq > best:
            best = seq
    return best


def _seed_counter(db: Session, key: str) -> None:
    for _ in range(SEED_ATTEMPTS):
        if db.get(BatchSequence, key) is not None:
            return
        floor = query_max_batch_sequence(db, key) or 0
        db.add(BatchSequence(prefix=key, last_seq=floor))
        try:
            db.commit()
            logger.info("Seeded lot counter %s at %s", key, floor)
            return
        except IntegrityError:
            # Another request created the row first; use theirs.
            db.rollback()
    if db.get(BatchSequence, key) is None:
        raise RuntimeError(f"could not create lot counter {key}")


def next_batch_number(db: Session, *, today: date | None = None, prefix: str | None = None) -> BatchNumber:
    prefix = prefix if prefix is not None else config.BATCH_PREFIX
    today = today or date.today()
    key = f"{prefix}{today.strftime('%Y%m%d')}"

    _seed_counter(db, key)

    # Row lock is held from the UPDATE until commit, so the read-back is ours.
    db.execute(
        update(BatchSequence)
        .where(BatchSequence.prefix == key)
        .values(last_seq=BatchSequence.last_seq + 1)
    )
    seq = db.query(BatchSequence.last_seq).filter(BatchSequence.prefix == key).scalar()
    db.commit()

    number = format_batch_number(prefix, today, seq)
    logger.info("Allocated lot number %s", number)
    return BatchNumber(batch_number=number, date=today.strftime("%Y%m%d"), sequence=seq)
