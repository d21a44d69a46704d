"""Монитор бездействия: предупреждение и сброс киоска на idle.

Оставшееся время всегда считается от абсолютной метки последней
активности: ``timeout - (now - last_activity)``. Поэтому монитор корректно
ведёт себя после приостановки процесса, пропущенные тики не важны.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from .analytics import AnalyticsService
from .models import Screen
from .navigator import ScreenNavigator
from .session import SessionStore


logger = logging.getLogger(__name__)


class MonitorState(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    WARNING = "warning"
    EXPIRING = "expiring"


@dataclass(frozen=True)
class MonitorStatus:
    state: MonitorState
    remaining: float = 0.0

    @property
    def countdown(self) -> int:
        """Секунды до сброса для показа на экране."""

        return max(0, math.ceil(self.remaining))


UNMONITORED_SCREENS = frozenset({Screen.IDLE})


class InactivityMonitor:
    """Периодическая задача, живущая ровно столько, сколько одна сессия."""

    def __init__(
        self,
        sessions: SessionStore,
        navigator: ScreenNavigator,
        on_expire: Callable[[], Awaitable[None]],
        *,
        timeout: float = 60.0,
        confirmation_timeout: float = 30.0,
        warning_threshold: float = 15.0,
        poll_interval: float = 1.0,
        analytics: Optional[AnalyticsService] = None,
    ) -> None:
        self._sessions = sessions
        self._navigator = navigator
        self._on_expire = on_expire
        self.timeout = timeout
        self.confirmation_timeout = confirmation_timeout
        self.warning_threshold = warning_threshold
        self.poll_interval = poll_interval
        self._analytics = analytics

        self._status = MonitorStatus(MonitorState.INACTIVE)
        self._bound_session_id: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def status(self) -> MonitorStatus:
        return self._status

    @property
    def state(self) -> MonitorState:
        return self._status.state

    @property
    def is_running(self) -> bool:
        return self._running

    def timeout_for(self, screen: Screen) -> Optional[float]:
        if screen in UNMONITORED_SCREENS:
            return None
        if screen is Screen.CONFIRMATION:
            return self.confirmation_timeout
        return self.timeout

    def evaluate(self, now: Optional[float] = None) -> MonitorStatus:
        """Состояние по текущему времени, без побочных эффектов."""

        session = self._sessions.session
        if session is None:
            return MonitorStatus(MonitorState.INACTIVE)
        timeout = self.timeout_for(self._navigator.current)
        if timeout is None:
            return MonitorStatus(MonitorState.INACTIVE)

        now = self._sessions.now() if now is None else now
        remaining = max(0.0, timeout - (now - session.last_activity_at))
        if remaining <= 0:
            return MonitorStatus(MonitorState.EXPIRING, 0.0)
        if remaining <= self.warning_threshold:
            return MonitorStatus(MonitorState.WARNING, remaining)
        return MonitorStatus(MonitorState.ACTIVE, remaining)

    def refresh(self) -> MonitorStatus:
        """Пересчитать состояние после активности (warning -> active)."""

        status = self.evaluate()
        if status.state is not MonitorState.EXPIRING:
            self._set_status(status)
        return self._status

    def _set_status(self, status: MonitorStatus) -> None:
        previous = self._status.state
        self._status = status
        if status.state is MonitorState.WARNING and previous is not MonitorState.WARNING:
            logger.info("Предупреждение о бездействии: осталось %s с", status.countdown)
            if self._analytics is not None:
                self._analytics.track_event(
                    "inactivity_warning",
                    {"screen": self._navigator.current.value, "countdown": status.countdown},
                )

    async def tick(self) -> MonitorStatus:
        """Один шаг опроса. При истечении времени сбрасывает сессию."""

        if self._bound_session_id is not None and self._sessions.session_id != self._bound_session_id:
            # Сессия уже сменилась: этот монитор устарел.
            self.stop()
            return self._status

        status = self.evaluate()
        self._set_status(status)
        if status.state is MonitorState.EXPIRING:
            logger.info(
                "Тайм-аут бездействия на экране %s, сброс сессии %s",
                self._navigator.current.value,
                self._sessions.session_id,
            )
            if self._analytics is not None:
                self._analytics.track_event(
                    "session_timeout",
                    {"screen": self._navigator.current.value, "previous_screen": getattr(self._navigator.previous, "value", None)},
                )
            self._running = False
            await self._on_expire()
            self._status = MonitorStatus(MonitorState.INACTIVE)
        return self._status

    async def run(self) -> None:
        while self._running:
            await asyncio.sleep(self.poll_interval)
            if not self._running:
                break
            await self.tick()

    def start(self) -> None:
        """Запустить опрос для текущей сессии."""

        self.stop()
        self._bound_session_id = self._sessions.session_id
        self._running = True
        self._status = self.evaluate()
        self._task = asyncio.get_running_loop().create_task(self.run())

    def stop(self) -> None:
        self._running = False
        task, self._task = self._task, None
        self._bound_session_id = None
        self._status = MonitorStatus(MonitorState.INACTIVE)
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # Сброс может прийти из самой задачи опроса: её цикл завершится сам.
        if task is not current:
            task.cancel()
