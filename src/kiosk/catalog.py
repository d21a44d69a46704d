"""Каталог меню: загружается один раз при старте и только читается."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from .models import Category, MenuItem


logger = logging.getLogger(__name__)


class Catalog:
    """Категории, позиции меню и допродажи."""

    def __init__(
        self,
        items: Iterable[MenuItem],
        categories: Iterable[Category] = (),
        upsell: Iterable[Tuple[str, str]] = (),
    ) -> None:
        self._items = {item.id: item for item in items}
        self.categories: List[Category] = list(categories)
        self._upsell = [(item_id, reason) for item_id, reason in upsell if item_id in self._items]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items.values())

    def get(self, item_id: str) -> Optional[MenuItem]:
        return self._items.get(item_id)

    def by_category(self, category_id: str) -> List[MenuItem]:
        if category_id == "popular":
            return [item for item in self._items.values() if item.is_popular]
        return [item for item in self._items.values() if item.category == category_id]

    def upsell_items(self, exclude: Iterable[str] = ()) -> List[Tuple[MenuItem, str]]:
        """Предложения перед оплатой, кроме позиций, уже лежащих в корзине."""

        skip = set(exclude)
        return [(self._items[item_id], reason) for item_id, reason in self._upsell if item_id not in skip]

    @classmethod
    def from_dict(cls, data: dict) -> "Catalog":
        categories = [
            Category(id=row["id"], name=row["name"], icon=row.get("icon") or "")
            for row in data.get("categories") or []
        ]
        items = [MenuItem.from_dict(row) for row in data.get("items") or []]
        upsell = [(row["itemId"], row.get("reason") or "") for row in data.get("upsell") or []]
        return cls(items, categories, upsell)


def load_catalog(path: Path) -> Catalog:
    """Загрузить каталог из JSON-файла."""

    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    catalog = Catalog.from_dict(data)
    logger.info("Каталог загружен: %s позиций, %s категорий", len(catalog), len(catalog.categories))
    return catalog
