from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy.orm import Session

from app.db.models.common import utcnow
from app.events.outbox import OutboxEvent


def publish(db: Session, topic: str, payload: dict, *, available_at: datetime | None = None) -> OutboxEvent:
    """Publish an event by writing to the transactional outbox.

    Decimal and datetime values are stored as strings so the row stays
    JSON-serializable.
    """
    evt = OutboxEvent(
        topic=topic,
        payload=json.loads(json.dumps(payload or {}, default=str)),
        available_at=available_at or utcnow(),
        delivered=False,
        attempt_count=0,
    )
    db.add(evt)
    db.commit()
    db.refresh(evt)
    return evt
