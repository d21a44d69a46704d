"""Работа с базой данных SQLite."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import aiosqlite

from .models import OrderRecord, PendingAction


DB_PATH = Path(__file__).resolve().parents[2] / "data" / "kiosk.db"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def init_db(db_path: Path = DB_PATH) -> None:
    """Инициализировать базу данных."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    async with aiosqlite.connect(db_path) as db:
        # Снимки сессий (ключ-значение)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS snapshots (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        # Таблица заказов
        await db.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                order_number TEXT PRIMARY KEY,
                transaction_id TEXT NOT NULL,
                order_type TEXT,
                payment_method TEXT NOT NULL,
                items_json TEXT NOT NULL,
                subtotal INTEGER NOT NULL,
                tax INTEGER NOT NULL,
                total INTEGER NOT NULL,
                estimated_minutes INTEGER NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        # Действия после оплаты, ожидающие повтора
        await db.execute("""
            CREATE TABLE IF NOT EXISTS pending_actions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                order_number TEXT NOT NULL,
                step TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                created_at TEXT NOT NULL
            )
        """)

        await db.commit()


async def save_snapshot(key: str, value: str, db_path: Path = DB_PATH) -> None:
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            """INSERT OR REPLACE INTO snapshots (key, value, updated_at)
               VALUES (?, ?, ?)""",
            (key, value, _utc_now_iso()),
        )
        await db.commit()


async def load_snapshot(key: str, db_path: Path = DB_PATH) -> Optional[str]:
    async with aiosqlite.connect(db_path) as db:
        async with db.execute("SELECT value FROM snapshots WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
            return row[0] if row else None


async def delete_snapshot(key: str, db_path: Path = DB_PATH) -> None:
    async with aiosqlite.connect(db_path) as db:
        await db.execute("DELETE FROM snapshots WHERE key = ?", (key,))
        await db.commit()


async def save_order(order: OrderRecord, db_path: Path = DB_PATH) -> None:
    """Сохранить оформленный заказ."""
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            """INSERT OR REPLACE INTO orders
               (order_number, transaction_id, order_type, payment_method, items_json,
                subtotal, tax, total, estimated_minutes, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                order.order_number,
                order.transaction_id,
                order.order_type,
                order.payment_method,
                json.dumps(order.items, ensure_ascii=False),
                order.subtotal,
                order.tax,
                order.total,
                order.estimated_minutes,
                order.created_at,
            ),
        )
        await db.commit()


async def list_orders(limit: int = 50, db_path: Path = DB_PATH) -> List[OrderRecord]:
    """Последние заказы, новые первыми."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        async with db.execute(
            "SELECT * FROM orders ORDER BY created_at DESC LIMIT ?", (limit,)
        ) as cursor:
            rows = await cursor.fetchall()
            return [
                OrderRecord(
                    order_number=row["order_number"],
                    transaction_id=row["transaction_id"],
                    order_type=row["order_type"],
                    payment_method=row["payment_method"],
                    items=json.loads(row["items_json"]),
                    subtotal=row["subtotal"],
                    tax=row["tax"],
                    total=row["total"],
                    estimated_minutes=row["estimated_minutes"],
                    created_at=row["created_at"],
                )
                for row in rows
            ]


async def add_pending_action(action: PendingAction, db_path: Path = DB_PATH) -> PendingAction:
    """Поставить действие в очередь повтора."""
    async with aiosqlite.connect(db_path) as db:
        now = _utc_now_iso()
        cursor = await db.execute(
            """INSERT INTO pending_actions
               (order_number, step, payload_json, attempts, last_error, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                action.order_number,
                action.step,
                json.dumps(action.payload, ensure_ascii=False),
                action.attempts,
                action.last_error,
                now,
            ),
        )
        await db.commit()
        action.action_id = cursor.lastrowid
        action.created_at = now
        return action


async def update_pending_action(action: PendingAction, db_path: Path = DB_PATH) -> None:
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            "UPDATE pending_actions SET attempts = ?, last_error = ? WHERE id = ?",
            (action.attempts, action.last_error, action.action_id),
        )
        await db.commit()


async def delete_pending_action(action_id: int, db_path: Path = DB_PATH) -> None:
    async with aiosqlite.connect(db_path) as db:
        await db.execute("DELETE FROM pending_actions WHERE id = ?", (action_id,))
        await db.commit()


async def list_pending_actions(db_path: Path = DB_PATH) -> List[PendingAction]:
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        async with db.execute("SELECT * FROM pending_actions ORDER BY id") as cursor:
            rows = await cursor.fetchall()
            return [
                PendingAction(
                    step=row["step"],
                    order_number=row["order_number"],
                    payload=json.loads(row["payload_json"]),
                    attempts=row["attempts"],
                    last_error=row["last_error"],
                    action_id=row["id"],
                    created_at=row["created_at"],
                )
                for row in rows
            ]
