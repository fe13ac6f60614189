from __future__ import annotations

import enum
from decimal import Decimal
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from services.production.stock import MaterialRequirement


class ErrorKind(str, enum.Enum):
    VALIDATION = "VALIDATION"
    CONFLICT = "CONFLICT"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    INTEGRATION = "INTEGRATION"


class ProductionError(Exception):
    """Base of the closed set of shop-floor errors.

    Callers branch on `kind`; only INSUFFICIENT_STOCK carries structured details.
    """

    kind: ErrorKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict:
        return {"error": self.kind.value, "message": self.message}


class ValidationError(ProductionError):
    kind = ErrorKind.VALIDATION


class ConflictError(ProductionError):
    kind = ErrorKind.CONFLICT


class IntegrationError(ProductionError):
    kind = ErrorKind.INTEGRATION


def _num(value: Decimal) -> float:
    return float(value)


class InsufficientStockError(ProductionError):
    kind = ErrorKind.INSUFFICIENT_STOCK

    def __init__(self, shortages: Sequence["MaterialRequirement"], message: str = "Insufficient raw material stock"):
        super().__init__(message)
        self.shortages = list(shortages)

    @property
    def details(self) -> list[dict]:
        return [
            {
                "item_code": s.item_code,
                "item_name": s.item_name,
                "required": _num(s.required_qty),
                "available": _num(s.available_qty),
                "shortage": _num(s.shortage),
                "warehouse": s.warehouse,
            }
            for s in self.shortages
        ]

    def to_detail(self) -> dict:
        return {**super().to_detail(), "details": self.details}


# HTTP status per kind; ERP failures surface as a plain bad request.
HTTP_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INSUFFICIENT_STOCK: 400,
    ErrorKind.INTEGRATION: 400,
}
