from __future__ import annotations

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.models.common import HasCreatedAt


class Employee(Base, HasCreatedAt):
    __tablename__ = "hr_employee"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)  # ERP empID
    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
