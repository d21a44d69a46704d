"""Модели базы данных."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Optional


SCHEMA_VERSION = 1


@dataclass
class PersistedSession:
    """Снимок сессии в локальном хранилище."""

    session_id: str
    cart: list[dict] = field(default_factory=list)  # CartLine.to_dict()
    order_type: Optional[str] = None
    timestamp: float = 0.0  # time.time() в момент записи
    schema_version: int = SCHEMA_VERSION

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> "PersistedSession":
        data = json.loads(raw)
        return cls(
            session_id=data["session_id"],
            cart=list(data.get("cart") or []),
            order_type=data.get("order_type"),
            timestamp=float(data.get("timestamp") or 0.0),
            schema_version=int(data.get("schema_version") or 0),
        )


@dataclass
class OrderRecord:
    """Оформленный заказ (для статистики администратора)."""

    order_number: str
    transaction_id: str
    order_type: Optional[str]
    payment_method: str
    items: list[dict]
    subtotal: int
    tax: int
    total: int
    estimated_minutes: int
    created_at: str


@dataclass
class PendingAction:
    """Неудавшееся действие после оплаты, ожидающее повтора."""

    step: str  # kds, pos, printer, queue
    order_number: str
    payload: dict
    attempts: int = 0
    last_error: Optional[str] = None
    action_id: Optional[int] = None
    created_at: Optional[str] = None
