"""Очередь повтора для действий после оплаты (кухня, POS, чек, табло).

Неудавшееся действие не теряется: оно сохраняется в базе и повторяется
позже: вручную (администратор) или при следующем запуске киоска.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiosqlite

from database import db
from database.models import PendingAction
from gateway import ActionGateway

from .analytics import AnalyticsService
from .models import Order


logger = logging.getLogger(__name__)

POST_PAYMENT_STEPS = ("kds", "pos", "printer", "queue")

ResolvedListener = Callable[[PendingAction], None]


def order_payload(order: Order) -> dict:
    """Всё, что нужно для повторного выполнения любого шага по заказу."""

    return {
        "orderNumber": order.order_number,
        "orderType": order.order_type,
        "transactionId": order.transaction_id,
        "total": order.grand_total,
        "items": [line.to_dict() for line in order.lines],
    }


async def call_step(gateway: ActionGateway, step: str, payload: dict) -> Tuple[bool, Optional[str], Any]:
    """Выполнить один шаг через шлюз. Возвращает (успех, сообщение, значение).

    Исключения шлюза превращаются в неуспех с текстом ошибки.
    """

    if step not in POST_PAYMENT_STEPS:
        raise ValueError(f"Неизвестный шаг {step!r}")

    order_number = payload["orderNumber"]
    items = payload.get("items") or []
    try:
        if step == "kds":
            result = await gateway.publish_to_kds(order_number, payload.get("orderType"), items)
            return result.success, result.error_message, result.estimated_time
        if step == "pos":
            result = await gateway.update_cloud_pos(order_number, payload["transactionId"], items, payload["total"])
        elif step == "printer":
            result = await gateway.print_receipt(order_number, payload.get("orderType"), items, payload["total"])
        else:
            result = await gateway.publish_to_queue_screen(order_number)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Шаг %s для заказа %s завершился исключением: %s", step, order_number, exc)
        return False, str(exc), None
    return result.success, result.error_message, None


class RetryQueue:
    """Очередь неудавшихся действий после оплаты."""

    def __init__(
        self,
        gateway: ActionGateway,
        *,
        db_path: Optional[Path] = None,
        analytics: Optional[AnalyticsService] = None,
    ) -> None:
        self._gateway = gateway
        self._db_path = db_path
        self._analytics = analytics
        self._pending: List[PendingAction] = []
        self._listeners: List[ResolvedListener] = []
        self._in_flight: Dict[Tuple[str, str], "asyncio.Future[bool]"] = {}

    @property
    def pending(self) -> List[PendingAction]:
        return list(self._pending)

    def __len__(self) -> int:
        return len(self._pending)

    def subscribe(self, listener: ResolvedListener) -> None:
        self._listeners.append(listener)

    def find(self, order_number: str, step: str) -> Optional[PendingAction]:
        for action in self._pending:
            if action.order_number == order_number and action.step == step:
                return action
        return None

    async def load(self) -> List[PendingAction]:
        """Подхватить действия, оставшиеся с прошлого запуска."""

        if self._db_path is None:
            return self.pending
        try:
            self._pending = await db.list_pending_actions(self._db_path)
        except (aiosqlite.Error, OSError) as exc:
            logger.error("Не удалось загрузить очередь повтора: %s", exc)
        if self._pending:
            logger.info("В очереди повтора %s действий", len(self._pending))
        return self.pending

    async def enqueue(self, step: str, payload: dict, error_message: Optional[str] = None) -> PendingAction:
        existing = self.find(payload["orderNumber"], step)
        if existing is not None:
            existing.attempts += 1
            existing.last_error = error_message
            await self._store_update(existing)
            return existing

        action = PendingAction(
            step=step,
            order_number=payload["orderNumber"],
            payload=payload,
            attempts=1,
            last_error=error_message,
        )
        if self._db_path is not None:
            try:
                action = await db.add_pending_action(action, self._db_path)
            except (aiosqlite.Error, OSError) as exc:
                logger.error("Не удалось сохранить действие %s для %s: %s", step, action.order_number, exc)
        self._pending.append(action)
        logger.info("Действие %s для заказа %s поставлено в очередь повтора", step, action.order_number)
        if self._analytics is not None:
            self._analytics.track_event("action_queued", {"step": step, "order_number": action.order_number})
        return action

    async def retry(self, action: PendingAction) -> bool:
        """Повторить действие. Параллельный повтор того же действия ждёт уже идущий."""

        if action not in self._pending:
            return True
        key = (action.order_number, action.step)
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._attempt(action))
            self._in_flight[key] = task
            task.add_done_callback(lambda _: self._in_flight.pop(key, None))
        return await asyncio.shield(task)

    async def _attempt(self, action: PendingAction) -> bool:
        ok, message, _ = await call_step(self._gateway, action.step, action.payload)
        if ok:
            await self._resolve(action)
            return True
        action.attempts += 1
        action.last_error = message
        await self._store_update(action)
        return False

    async def retry_for(self, order_number: str, step: str) -> bool:
        action = self.find(order_number, step)
        if action is None:
            return True
        return await self.retry(action)

    async def retry_all(self) -> Tuple[int, int]:
        """Повторить всё. Возвращает (успешно, неуспешно)."""

        succeeded = failed = 0
        for action in self.pending:
            if await self.retry(action):
                succeeded += 1
            else:
                failed += 1
        if self._analytics is not None:
            self._analytics.track_event("admin_retry_pending", {"succeeded": succeeded, "failed": failed})
        return succeeded, failed

    async def _resolve(self, action: PendingAction) -> None:
        if action in self._pending:
            self._pending.remove(action)
        if self._db_path is not None and action.action_id is not None:
            try:
                await db.delete_pending_action(action.action_id, self._db_path)
            except (aiosqlite.Error, OSError) as exc:
                logger.error("Не удалось удалить действие %s: %s", action.action_id, exc)
        logger.info("Действие %s для заказа %s выполнено повторно", action.step, action.order_number)
        for listener in list(self._listeners):
            listener(action)

    async def _store_update(self, action: PendingAction) -> None:
        if self._db_path is None or action.action_id is None:
            return
        try:
            await db.update_pending_action(action, self._db_path)
        except (aiosqlite.Error, OSError) as exc:
            logger.error("Не удалось обновить действие %s: %s", action.action_id, exc)
