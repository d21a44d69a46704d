"""Доменные модели киоска: каталог, корзина, заказ, ошибки."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Awaitable, Callable, Optional


class Screen(str, Enum):
    """Экраны киоска."""

    IDLE = "idle"
    ORDER_TYPE = "order-type"
    MENU = "menu"
    ITEM_DETAIL = "item-detail"
    CART = "cart"
    UPSELL = "upsell"
    PAYMENT = "payment"
    CONFIRMATION = "confirmation"


ORDER_TYPES = ("dine-in", "takeaway")
PAYMENT_METHODS = ("card", "contactless")


def to_minor_units(value) -> int:
    """Перевести сумму в валюте ("5.99", 5.99, Decimal) в центы."""

    amount = Decimal(str(value)) * 100
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_money(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}${cents // 100}.{cents % 100:02d}"


@dataclass(frozen=True)
class CustomizationOption:
    """Вариант кастомизации с доплатой в центах."""

    id: str
    name: str
    price: int = 0
    is_default: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "CustomizationOption":
        return cls(
            id=data["id"],
            name=data["name"],
            price=to_minor_units(data.get("price", 0)),
            is_default=bool(data.get("isDefault", False)),
        )


@dataclass(frozen=True)
class Customization:
    """Настраиваемый аспект позиции (размер, добавки)."""

    id: str
    name: str
    type: str  # single, multiple
    required: bool = False
    options: tuple[CustomizationOption, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "Customization":
        kind = data.get("type", "single")
        if kind not in ("single", "multiple"):
            raise ValueError(f"Неизвестный тип кастомизации {kind!r} у {data.get('id')!r}")
        return cls(
            id=data["id"],
            name=data["name"],
            type=kind,
            required=bool(data.get("required", False)),
            options=tuple(CustomizationOption.from_dict(row) for row in data.get("options") or []),
        )

    def option(self, option_id: str) -> Optional[CustomizationOption]:
        for opt in self.options:
            if opt.id == option_id:
                return opt
        return None


@dataclass(frozen=True)
class MenuItem:
    """Позиция меню. Неизменяема после загрузки каталога."""

    id: str
    name: str
    price: int
    category: str
    description: str = ""
    customizations: tuple[Customization, ...] = ()
    is_popular: bool = False
    calories: Optional[int] = None
    allergens: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "MenuItem":
        return cls(
            id=data["id"],
            name=data["name"],
            price=to_minor_units(data["price"]),
            category=data["category"],
            description=data.get("description") or "",
            customizations=tuple(Customization.from_dict(row) for row in data.get("customizations") or []),
            is_popular=bool(data.get("isPopular", False)),
            calories=data.get("calories"),
            allergens=tuple(data.get("allergens") or ()),
        )

    def customization(self, customization_id: str) -> Optional[Customization]:
        for custom in self.customizations:
            if custom.id == customization_id:
                return custom
        return None


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    icon: str = ""


@dataclass(frozen=True)
class SelectedCustomization:
    """Выбранные варианты одной кастомизации."""

    customization_id: str
    option_ids: frozenset[str]

    def to_dict(self) -> dict:
        return {"customizationId": self.customization_id, "optionIds": sorted(self.option_ids)}

    @classmethod
    def from_dict(cls, data: dict) -> "SelectedCustomization":
        return cls(
            customization_id=data["customizationId"],
            option_ids=frozenset(data.get("optionIds") or ()),
        )


@dataclass
class CartLine:
    """Строка корзины. Итоговая цена не хранится, а пересчитывается."""

    line_id: str
    menu_item: MenuItem
    quantity: int
    selections: tuple[SelectedCustomization, ...] = ()

    @property
    def total_price(self) -> int:
        from .pricing import compute_line_total

        return compute_line_total(self.menu_item, self.quantity, self.selections)

    def to_dict(self) -> dict:
        return {
            "lineId": self.line_id,
            "menuItemId": self.menu_item.id,
            "name": self.menu_item.name,
            "quantity": self.quantity,
            "customizations": [sel.to_dict() for sel in self.selections],
            "totalPrice": self.total_price,
        }


@dataclass(frozen=True)
class CartTotals:
    subtotal: int
    tax: int
    grand_total: int

    def to_dict(self) -> dict:
        return {"subtotal": self.subtotal, "tax": self.tax, "total": self.grand_total}


@dataclass(frozen=True)
class Order:
    """Оплаченный заказ. Создаётся один раз и больше не меняется."""

    order_number: str
    transaction_id: str
    order_type: Optional[str]
    payment_method: str
    lines: tuple[CartLine, ...]
    totals: CartTotals
    estimated_minutes: int
    created_at: datetime

    @property
    def grand_total(self) -> int:
        return self.totals.grand_total

    def to_dict(self) -> dict:
        return {
            "orderNumber": self.order_number,
            "transactionId": self.transaction_id,
            "orderType": self.order_type,
            "paymentMethod": self.payment_method,
            "items": [line.to_dict() for line in self.lines],
            **self.totals.to_dict(),
            "estimatedTime": self.estimated_minutes,
            "createdAt": self.created_at.isoformat(),
        }


class ErrorKind(str, Enum):
    """Типы ошибок, показываемых покупателю."""

    NETWORK = "network"
    PAYMENT = "payment"
    PRINTER = "printer"
    KDS = "kds"
    OUT_OF_STOCK = "out-of-stock"


RetryAction = Callable[[], Awaitable[object]]


@dataclass(frozen=True)
class PipelineError:
    """Ошибка для UI: тип, сообщение и необязательное действие повтора."""

    kind: ErrorKind
    message: str
    step: Optional[str] = None
    retry_action: Optional[RetryAction] = field(default=None, compare=False, repr=False)
    fallback_action: Optional[RetryAction] = field(default=None, compare=False, repr=False)

    @property
    def can_retry(self) -> bool:
        return self.retry_action is not None

    def to_dict(self) -> dict:
        return {
            "type": self.kind.value,
            "message": self.message,
            "step": self.step,
            "canRetry": self.can_retry,
            "canChooseOtherMethod": self.fallback_action is not None,
        }
