from __future__ import annotations

from sqlalchemy.orm import Session

from app.db.models.mes_exec import BreakReason


# Activities store the reason code, never the description text.
def find_break_reason(db: Session, code: str) -> BreakReason | None:
    if not code:
        return None
    return db.query(BreakReason).filter(BreakReason.code == code.strip()).first()


def list_break_reasons(db: Session) -> list[dict]:
    rows = db.query(BreakReason).order_by(BreakReason.name.asc()).all()
    return [{"code": r.code, "name": r.name} for r in rows]


def search_break_reasons(db: Session, text: str) -> list[dict]:
    pattern = f"%{(text or '').strip().lower()}%"
    rows = (db.query(BreakReason)
            .filter(BreakReason.name.ilike(pattern))
            .order_by(BreakReason.name.asc())
            .all())
    return [{"code": r.code, "name": r.name} for r in rows]
