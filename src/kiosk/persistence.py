"""Сохранение корзины: локальный снимок сразу, синхронизация с сервером с задержкой.

Локальная запись выполняется на каждое изменение корзины. Отправка на
сервер откладывается на ``debounce`` секунд; новое состояние отменяет
ожидающую или выполняющуюся отправку (побеждает последняя запись).
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional

import aiosqlite

from database import db
from database.models import SCHEMA_VERSION, PersistedSession
from gateway import ActionGateway

from .analytics import AnalyticsService
from .catalog import Catalog
from .models import CartLine, ErrorKind, PipelineError, SelectedCustomization


logger = logging.getLogger(__name__)

SESSION_KEY = "kiosk_session"

SAVED_LOCALLY_MESSAGE = "Changes saved locally. Will sync when online."
OFFLINE_MESSAGE = "You're offline. Changes saved locally."


@dataclass(frozen=True)
class RestoreOffer:
    """Недавняя сессия, которую можно предложить восстановить."""

    session_id: str
    lines: tuple[CartLine, ...]
    order_type: Optional[str]
    age: float


def lines_from_snapshot(rows: Iterable[dict], catalog: Catalog) -> List[CartLine]:
    """Восстановить строки корзины. Позиции, которых нет в каталоге, пропускаются."""

    lines: List[CartLine] = []
    for row in rows:
        item = catalog.get(row.get("menuItemId", ""))
        quantity = row.get("quantity")
        if item is None or not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            logger.info("Строка %s пропущена при восстановлении", row.get("lineId"))
            continue
        lines.append(
            CartLine(
                line_id=row["lineId"],
                menu_item=item,
                quantity=quantity,
                selections=tuple(SelectedCustomization.from_dict(sel) for sel in row.get("customizations") or []),
            )
        )
    return lines


class CartPersistence:
    """Адаптер сохранения и синхронизации состояния сессии."""

    def __init__(
        self,
        gateway: ActionGateway,
        *,
        db_path: Path,
        clock: Callable[[], float] = time.time,
        debounce: float = 3.0,
        ttl: float = 5 * 60.0,
        max_backoff: float = 60.0,
        on_error: Optional[Callable[[PipelineError], None]] = None,
        on_synced: Optional[Callable[[], None]] = None,
        analytics: Optional[AnalyticsService] = None,
    ) -> None:
        self._gateway = gateway
        self._db_path = db_path
        self._clock = clock
        self.debounce = debounce
        self.ttl = ttl
        self.max_backoff = max_backoff
        self._on_error = on_error
        self._on_synced = on_synced
        self._analytics = analytics

        self._latest: Optional[PersistedSession] = None
        self._revision = 0
        self._synced_revision = 0
        self._failures = 0
        self._sync_task: Optional[asyncio.Task] = None
        self.online = True

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def synced_revision(self) -> int:
        return self._synced_revision

    @property
    def is_synced(self) -> bool:
        return self._latest is None or self._synced_revision == self._revision

    @property
    def latest(self) -> Optional[PersistedSession]:
        return self._latest

    async def record(
        self,
        session_id: str,
        lines: Iterable[CartLine],
        order_type: Optional[str],
    ) -> PersistedSession:
        """Записать снимок локально и запланировать отправку на сервер."""

        snapshot = PersistedSession(
            session_id=session_id,
            cart=[line.to_dict() for line in lines],
            order_type=order_type,
            timestamp=self._clock(),
        )
        self._revision += 1
        self._latest = snapshot
        try:
            await db.save_snapshot(SESSION_KEY, snapshot.to_json(), self._db_path)
        except (aiosqlite.Error, OSError) as exc:
            logger.error("[PERSISTENCE] Не удалось сохранить снимок локально: %s", exc)
        self._schedule_sync(self.debounce)
        return snapshot

    def _schedule_sync(self, delay: float) -> None:
        self._cancel_sync()
        self._sync_task = asyncio.get_running_loop().create_task(self._sync_after(delay, self._revision))

    def _cancel_sync(self) -> None:
        task, self._sync_task = self._sync_task, None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    async def _sync_after(self, delay: float, revision: int) -> None:
        await asyncio.sleep(delay)
        await self._push(revision)

    async def _push(self, revision: int) -> bool:
        snapshot = self._latest
        if snapshot is None or revision != self._revision:
            return False
        if not self.online:
            if self._analytics is not None:
                self._analytics.track_event("offline_mode_entered", {"sessionId": snapshot.session_id})
            return False

        try:
            result = await self._gateway.sync_session(snapshot.session_id, snapshot.cart, snapshot.timestamp)
            ok, message = result.success, result.error_message
        except Exception as exc:  # noqa: BLE001
            ok, message = False, str(exc)

        if revision != self._revision:
            # Пока шла отправка, появилось более новое состояние.
            return False

        if ok:
            self._synced_revision = revision
            self._failures = 0
            logger.debug("[SYSTEM ACTION] sync.push() ревизия %s отправлена", revision)
            if self._on_synced is not None:
                self._on_synced()
            return True

        self._failures += 1
        backoff = min(self.max_backoff, self.debounce * 2 ** (self._failures - 1))
        logger.warning("[PERSISTENCE] Синхронизация не удалась (%s), повтор через %.1f с", message, backoff)
        if self._on_error is not None:
            self._on_error(
                PipelineError(ErrorKind.NETWORK, SAVED_LOCALLY_MESSAGE, step="sync", retry_action=self.force_sync)
            )
        self._schedule_sync(backoff)
        return False

    async def force_sync(self) -> bool:
        """Отправить последнее состояние немедленно."""

        self._cancel_sync()
        if self._latest is None or self.is_synced:
            return True
        return await self._push(self._revision)

    async def flush(self) -> None:
        """Дождаться запланированной отправки (тесты, остановка)."""

        task = self._sync_task
        if task is not None and not task.done():
            try:
                await task
            except asyncio.CancelledError:
                pass

    def set_online(self, online: bool) -> None:
        """Сигнал о смене состояния сети."""

        if online == self.online:
            return
        self.online = online
        session_id = self._latest.session_id if self._latest else None
        if online:
            if self._analytics is not None:
                self._analytics.track_event("connection_restored", {"sessionId": session_id})
            if self._latest is not None and not self.is_synced:
                self._schedule_sync(0)
        else:
            if self._analytics is not None:
                self._analytics.track_event("offline_mode_entered", {"sessionId": session_id})
            if self._on_error is not None:
                self._on_error(PipelineError(ErrorKind.NETWORK, OFFLINE_MESSAGE, step="sync"))

    async def load(self, catalog: Catalog) -> Optional[RestoreOffer]:
        """Найти сохранённую сессию, которую можно восстановить.

        Снимки старше ``ttl`` или другой версии схемы удаляются и не
        восстанавливаются.
        """

        try:
            raw = await db.load_snapshot(SESSION_KEY, self._db_path)
        except (aiosqlite.Error, OSError) as exc:
            logger.error("[PERSISTENCE] Не удалось прочитать снимок: %s", exc)
            return None
        if raw is None:
            return None

        try:
            snapshot = PersistedSession.from_json(raw)
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("[PERSISTENCE] Повреждённый снимок удалён: %s", exc)
            await self.clear()
            return None

        age = self._clock() - snapshot.timestamp
        if snapshot.schema_version != SCHEMA_VERSION or age < 0 or age >= self.ttl:
            logger.info("[PERSISTENCE] Устаревший снимок %s (возраст %.0f с) удалён", snapshot.session_id, age)
            await self.clear()
            return None

        lines = lines_from_snapshot(snapshot.cart, catalog)
        if not lines:
            return None
        return RestoreOffer(
            session_id=snapshot.session_id,
            lines=tuple(lines),
            order_type=snapshot.order_type,
            age=age,
        )

    async def clear(self) -> None:
        """Удалить снимок (сброс сессии, оформленный заказ)."""

        self._cancel_sync()
        self._latest = None
        self._synced_revision = self._revision
        self._failures = 0
        try:
            await db.delete_snapshot(SESSION_KEY, self._db_path)
        except (aiosqlite.Error, OSError) as exc:
            logger.error("[PERSISTENCE] Не удалось удалить снимок: %s", exc)

    def close(self) -> None:
        self._cancel_sync()
