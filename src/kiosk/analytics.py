"""Аналитика: события отправляются во внешний приёмник без ожидания."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)

AnalyticsSink = Callable[["AnalyticsEvent"], Any]


@dataclass(frozen=True)
class AnalyticsEvent:
    name: str
    properties: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0
    session_id: Optional[str] = None


class AnalyticsService:
    """Сбор событий. Ошибки приёмника логируются и не пробрасываются."""

    def __init__(self, sink: Optional[AnalyticsSink] = None, *, buffer_size: int = 500) -> None:
        self._sink = sink
        self._events: List[AnalyticsEvent] = []
        self._buffer_size = buffer_size
        self._pending: set[asyncio.Task] = set()
        self.enabled = True
        self.session_id: Optional[str] = None

    def track_event(self, name: str, properties: Optional[Dict[str, Any]] = None) -> None:
        if not self.enabled:
            return

        event = AnalyticsEvent(
            name=name,
            properties=dict(properties or {}),
            timestamp=time.time(),
            session_id=self.session_id,
        )
        self._events.append(event)
        if len(self._events) > self._buffer_size:
            del self._events[: len(self._events) - self._buffer_size]

        logger.debug("[ANALYTICS] %s %s", name, event.properties)
        if self._sink is None:
            return

        try:
            result = self._sink(event)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_sent)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Не удалось отправить событие %s: %s", name, exc)

    def _on_sent(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Не удалось отправить событие аналитики: %s", exc)

    def track_screen_view(self, screen_name: str, **props: Any) -> None:
        self.track_event("screen_view", {"screen_name": screen_name, **props})

    def track_cart_action(self, action: str, item: str, quantity: int, value: int) -> None:
        self.track_event(f"cart_{action}", {"item_name": item, "quantity": quantity, "value": value})

    def track_payment(self, status: str, method: str, amount: int) -> None:
        self.track_event(f"payment_{status}", {"payment_method": method, "amount": amount})

    def track_error(self, error_type: str, error_message: str, **context: Any) -> None:
        self.track_event("error", {"error_type": error_type, "error_message": error_message, **context})

    def events(self) -> List[AnalyticsEvent]:
        return list(self._events)

    def clear_events(self) -> None:
        self._events = []
