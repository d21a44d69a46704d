#!/usr/bin/env python3
"""Вывести позиции каталога киоска с ценами и кастомизациями."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from kiosk import KioskSettings, load_catalog  # noqa: E402
from kiosk.models import MenuItem, format_money  # noqa: E402


def print_item(index: int, item: MenuItem) -> None:
    popular = " 🔥" if item.is_popular else ""
    print(f"\n[{index}] {item.name}: {format_money(item.price)}{popular} ({item.id})")
    if item.description:
        print(f"    Описание: {item.description}")
    if item.allergens:
        print(f"    Аллергены: {', '.join(item.allergens)}")
    for custom in item.customizations:
        mode = "один вариант" if custom.type == "single" else "несколько"
        required = ", обязательно" if custom.required else ""
        print(f"    {custom.name} ({mode}{required}):")
        for opt in custom.options:
            default = " [по умолчанию]" if opt.is_default else ""
            print(f"      - {opt.name}: +{format_money(opt.price)}{default}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Вывести позиции каталога киоска")
    parser.add_argument(
        "-c",
        "--category",
        help="Категория (popular, burgers, ...). Если не передано, выводим все позиции.",
    )
    parser.add_argument("--catalog", type=Path, help="Путь к JSON-каталогу (по умолчанию из .env)")
    args = parser.parse_args()

    load_dotenv(ROOT_DIR / ".env")
    path = args.catalog or KioskSettings.from_env().catalog_path
    try:
        catalog = load_catalog(path)
    except (OSError, ValueError, KeyError) as exc:
        print(f"Не удалось загрузить каталог {path}: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    if args.category:
        items = catalog.by_category(args.category)
        if not items:
            print(f"Категория '{args.category}' не найдена или пуста.", file=sys.stderr)
            print("\nДоступные категории:", file=sys.stderr)
            for category in catalog.categories:
                print(f"  - {category.id} ({category.name})", file=sys.stderr)
            raise SystemExit(1)
    else:
        items = list(catalog)

    for index, item in enumerate(items, start=1):
        print_item(index, item)


if __name__ == "__main__":
    main()
