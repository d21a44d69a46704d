"""Навигация по экранам киоска."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from .analytics import AnalyticsService
from .models import Screen


logger = logging.getLogger(__name__)

NavigationListener = Callable[[Screen, Screen], None]


class ScreenNavigator:
    """Конечный автомат экранов.

    Переходы задаёт вызывающий код, навигатор их не отклоняет. Его задача:
    помнить предыдущий экран и сообщать о каждом переходе (без склейки
    быстрых последовательных переходов).
    """

    def __init__(self, analytics: Optional[AnalyticsService] = None) -> None:
        self._analytics = analytics
        self._current = Screen.IDLE
        self._previous: Optional[Screen] = None
        self._listeners: List[NavigationListener] = []

    @property
    def current(self) -> Screen:
        return self._current

    @property
    def previous(self) -> Optional[Screen]:
        return self._previous

    def subscribe(self, listener: NavigationListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def navigate(self, screen: Screen | str) -> Screen:
        target = Screen(screen)
        source = self._current
        self._previous = source
        self._current = target
        logger.debug("Переход %s -> %s", source.value, target.value)

        if self._analytics is not None:
            self._analytics.track_screen_view(target.value, previous_screen=source.value)
        for listener in list(self._listeners):
            listener(source, target)
        return target

    def back(self) -> Screen:
        """Вернуться на предыдущий экран (или остаться, если его нет)."""

        return self.navigate(self._previous or self._current)

    def reset(self) -> None:
        """Принудительно на idle (сброс сессии)."""

        if self._current is not Screen.IDLE:
            self.navigate(Screen.IDLE)
