"""Расчёт цен: строка корзины и итоги по корзине.

Все суммы в центах (int), поэтому ошибки округления float не накапливаются.
Налог округляется до цента по правилу half-up.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Optional

from .models import CartLine, CartTotals, MenuItem, SelectedCustomization


DEFAULT_TAX_RATE = Decimal("0.08")
DEFAULT_MAX_ADDONS = 2


class PricingError(ValueError):
    """Некорректные входные данные для расчёта цены."""


def compute_line_total(
    menu_item: MenuItem,
    quantity: int,
    selections: Iterable[SelectedCustomization],
) -> int:
    """Цена строки: (базовая цена + доплаты за выбранные опции) × количество.

    Выборы по неизвестным кастомизациям и неизвестные опции игнорируются.
    """

    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise PricingError(f"Количество должно быть целым положительным числом, получено {quantity!r}")

    unit = menu_item.price
    for selection in selections:
        custom = menu_item.customization(selection.customization_id)
        if custom is None:
            continue
        for opt in custom.options:
            if opt.id in selection.option_ids:
                unit += opt.price
    return unit * quantity


def compute_tax(subtotal: int, tax_rate: Decimal = DEFAULT_TAX_RATE) -> int:
    tax = Decimal(subtotal) * Decimal(tax_rate)
    return int(tax.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_cart_totals(lines: Iterable[CartLine], tax_rate: Decimal = DEFAULT_TAX_RATE) -> CartTotals:
    """Подытог, налог и итог. Всегда пересчитываются из строк корзины."""

    subtotal = sum(line.total_price for line in lines)
    tax = compute_tax(subtotal, tax_rate)
    return CartTotals(subtotal=subtotal, tax=tax, grand_total=subtotal + tax)


class SelectionBuilder:
    """Выбор кастомизаций для одной позиции перед добавлением в корзину.

    single: ровно один активный вариант, новый выбор заменяет старый;
    multiple: независимые переключатели, общее число добавок по всем
    multiple-кастомизациям ограничено ``max_addons``.
    """

    def __init__(self, menu_item: MenuItem, *, max_addons: int = DEFAULT_MAX_ADDONS) -> None:
        self.menu_item = menu_item
        self.max_addons = max_addons
        self._selected: dict[str, list[str]] = {}
        for custom in menu_item.customizations:
            default = next((opt for opt in custom.options if opt.is_default), None)
            self._selected[custom.id] = [default.id] if default else []

    @classmethod
    def from_mapping(
        cls,
        menu_item: MenuItem,
        mapping: Optional[Mapping[str, Iterable[str]]],
        *,
        max_addons: int = DEFAULT_MAX_ADDONS,
    ) -> "SelectionBuilder":
        """Выбор, пришедший целиком (из API), с проверкой правил позиции.

        Переданная кастомизация заменяет вариант по умолчанию, пустой список
        снимает выбор. Любое нарушение правил позиции даёт PricingError.
        """

        builder = cls(menu_item, max_addons=max_addons)
        for custom_id, option_ids in (mapping or {}).items():
            custom = menu_item.customization(custom_id)
            if custom is None:
                raise PricingError(f"Неизвестная кастомизация {custom_id!r} у {menu_item.id}")
            if isinstance(option_ids, str):
                option_ids = [option_ids]
            elif not isinstance(option_ids, (list, tuple, set, frozenset)):
                raise PricingError(f"Варианты {custom_id!r} должны быть списком")
            option_ids = list(dict.fromkeys(option_ids))
            if custom.type == "single" and len(option_ids) > 1:
                raise PricingError(f"В {custom_id!r} можно выбрать только один вариант")
            builder._selected[custom_id] = []
            for option_id in option_ids:
                if not builder.select(custom_id, option_id):
                    raise PricingError(f"Не больше {max_addons} добавок на позицию")
        return builder

    @property
    def addon_count(self) -> int:
        count = 0
        for custom in self.menu_item.customizations:
            if custom.type == "multiple":
                count += len(self._selected.get(custom.id, []))
        return count

    @property
    def remaining_addons(self) -> int:
        return max(0, self.max_addons - self.addon_count)

    def select(self, customization_id: str, option_id: str) -> bool:
        """Выбрать или переключить вариант. False, если выбор отклонён."""

        custom = self.menu_item.customization(customization_id)
        if custom is None or custom.option(option_id) is None:
            raise PricingError(f"Неизвестный вариант {customization_id}/{option_id} у {self.menu_item.id}")

        current = self._selected.setdefault(customization_id, [])
        if custom.type == "single":
            self._selected[customization_id] = [option_id]
            return True

        if option_id in current:
            current.remove(option_id)
            return True
        if self.addon_count >= self.max_addons:
            return False
        current.append(option_id)
        return True

    def selected(self, customization_id: str) -> list[str]:
        return list(self._selected.get(customization_id, []))

    def missing_required(self) -> list[str]:
        return [
            custom.id
            for custom in self.menu_item.customizations
            if custom.required and not self._selected.get(custom.id)
        ]

    def build(self) -> tuple[SelectedCustomization, ...]:
        """Собрать выбор для корзины: только кастомизации с выбранными вариантами."""

        missing = self.missing_required()
        if missing:
            raise PricingError(f"Не выбраны обязательные параметры: {', '.join(missing)}")
        return tuple(
            SelectedCustomization(customization_id=custom_id, option_ids=frozenset(option_ids))
            for custom_id, option_ids in self._selected.items()
            if option_ids
        )

    def preview_total(self, quantity: int = 1) -> int:
        return compute_line_total(
            self.menu_item,
            quantity,
            tuple(
                SelectedCustomization(customization_id=cid, option_ids=frozenset(ids))
                for cid, ids in self._selected.items()
                if ids
            ),
        )
