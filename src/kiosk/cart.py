"""Хранилище корзины: единственный владелец строк корзины."""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from decimal import Decimal
from typing import Callable, Iterable, List, Optional

from .models import CartLine, CartTotals, MenuItem, SelectedCustomization
from .pricing import DEFAULT_TAX_RATE, PricingError, compute_cart_totals, compute_line_total


logger = logging.getLogger(__name__)

DEFAULT_MAX_QUANTITY = 99

CartListener = Callable[[str, Optional[CartLine]], None]


class CartError(ValueError):
    """Некорректная операция с корзиной."""


def new_line_id() -> str:
    return f"line-{uuid.uuid4().hex}"


class CartStore:
    """Упорядоченная корзина. Порядок добавления = порядок показа.

    Все операции синхронные; слушатели вызываются после того,
    как изменение полностью применено.
    """

    def __init__(
        self,
        *,
        max_quantity: int = DEFAULT_MAX_QUANTITY,
        tax_rate: Decimal = DEFAULT_TAX_RATE,
        id_factory: Callable[[], str] = new_line_id,
    ) -> None:
        self.max_quantity = max_quantity
        self.tax_rate = tax_rate
        self._id_factory = id_factory
        self._lines: List[CartLine] = []
        self._issued_ids: set[str] = set()
        self._listeners: List[CartListener] = []

    def subscribe(self, listener: CartListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _notify(self, action: str, line: Optional[CartLine]) -> None:
        for listener in list(self._listeners):
            listener(action, line)

    def _next_id(self) -> str:
        line_id = self._id_factory()
        while line_id in self._issued_ids:
            line_id = self._id_factory()
        self._issued_ids.add(line_id)
        return line_id

    def _clamp(self, quantity: int) -> int:
        return min(quantity, self.max_quantity)

    # Чтение

    @property
    def lines(self) -> tuple[CartLine, ...]:
        """Копии строк: внешние компоненты не могут менять корзину напрямую."""

        return tuple(replace(line) for line in self._lines)

    def get(self, line_id: str) -> Optional[CartLine]:
        for line in self._lines:
            if line.line_id == line_id:
                return replace(line)
        return None

    def __len__(self) -> int:
        return len(self._lines)

    @property
    def is_empty(self) -> bool:
        return not self._lines

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self._lines)

    def totals(self) -> CartTotals:
        return compute_cart_totals(self._lines, self.tax_rate)

    # Изменение

    def add_line(
        self,
        menu_item: MenuItem,
        quantity: int = 1,
        selections: Iterable[SelectedCustomization] = (),
    ) -> CartLine:
        """Добавить новую строку в конец корзины."""

        selections = tuple(selections)
        try:
            compute_line_total(menu_item, quantity, selections)
        except PricingError as exc:
            raise CartError(str(exc)) from exc

        line = CartLine(
            line_id=self._next_id(),
            menu_item=menu_item,
            quantity=self._clamp(quantity),
            selections=selections,
        )
        self._lines.append(line)
        logger.debug("Добавлена строка %s: %s x%s", line.line_id, menu_item.id, line.quantity)
        self._notify("add", replace(line))
        return replace(line)

    def update_quantity(self, line_id: str, quantity: int) -> Optional[CartLine]:
        """Изменить количество. Количество <= 0 удаляет строку."""

        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise CartError(f"Количество должно быть целым числом, получено {quantity!r}")
        if quantity <= 0:
            self.remove_line(line_id)
            return None

        for line in self._lines:
            if line.line_id == line_id:
                line.quantity = self._clamp(quantity)
                self._notify("update", replace(line))
                return replace(line)
        return None

    def remove_line(self, line_id: str) -> bool:
        """Удалить строку. Повторное удаление ничего не делает."""

        for index, line in enumerate(self._lines):
            if line.line_id == line_id:
                del self._lines[index]
                self._notify("remove", replace(line))
                return True
        return False

    def clear(self) -> None:
        had_lines = bool(self._lines)
        self._lines = []
        if had_lines:
            self._notify("clear", None)

    def restore(self, lines: Iterable[CartLine]) -> None:
        """Заменить содержимое восстановленными строками (сохраняя их идентификаторы)."""

        restored: List[CartLine] = []
        for line in lines:
            if line.line_id in self._issued_ids:
                line = replace(line, line_id=self._next_id())
            else:
                self._issued_ids.add(line.line_id)
            restored.append(replace(line, quantity=self._clamp(line.quantity)))
        self._lines = restored
        self._notify("restore", None)
