"""Сессия покупателя и ошибки, показываемые в UI."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, replace
from typing import Callable, List, Optional

from .models import Order, PipelineError


logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class Session:
    """Снимок сессии. Время в секундах по часам киоска (time.time)."""

    session_id: str
    started_at: float
    last_activity_at: float
    order_type: Optional[str] = None
    order: Optional[Order] = None

    @property
    def is_completed(self) -> bool:
        return self.order is not None


class SessionStore:
    """Единственный владелец состояния сессии и ошибок для UI."""

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._session: Optional[Session] = None
        self._errors: List[PipelineError] = []

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def is_active(self) -> bool:
        return self._session is not None

    @property
    def session_id(self) -> Optional[str]:
        return self._session.session_id if self._session else None

    def now(self) -> float:
        return self._clock()

    def start(self) -> Session:
        """Создать сессию (выход с экрана idle). Повторный вызов возвращает текущую."""

        if self._session is not None:
            return self._session
        now = self._clock()
        self._session = Session(
            session_id=f"sess-{uuid.uuid4().hex[:12]}",
            started_at=now,
            last_activity_at=now,
        )
        logger.info("Сессия %s начата", self._session.session_id)
        return self._session

    def resume(self, session_id: str, order_type: Optional[str]) -> Session:
        now = self._clock()
        self._session = Session(
            session_id=session_id,
            started_at=now,
            last_activity_at=now,
            order_type=order_type,
        )
        return self._session

    def record_activity(self) -> None:
        if self._session is None:
            return
        self._session = replace(self._session, last_activity_at=self._clock())

    def set_order_type(self, order_type: str) -> None:
        if self._session is None:
            raise RuntimeError("Нет активной сессии")
        self._session = replace(self._session, order_type=order_type)

    def complete_order(self, order: Order) -> None:
        """Перевести сессию в состояние «заказ оформлен»."""

        if self._session is None:
            raise RuntimeError("Нет активной сессии")
        self._session = replace(self._session, order=order, last_activity_at=self._clock())

    def destroy(self) -> Optional[Session]:
        ended, self._session = self._session, None
        self._errors = []
        if ended is not None:
            logger.info("Сессия %s завершена", ended.session_id)
        return ended

    # Ошибки

    @property
    def error(self) -> Optional[PipelineError]:
        """Последняя ошибка, та, что показывается в модальном окне."""

        return self._errors[-1] if self._errors else None

    @property
    def errors(self) -> List[PipelineError]:
        return list(self._errors)

    def set_error(self, error: PipelineError) -> None:
        self._errors.append(error)

    def clear_error(self, error: Optional[PipelineError] = None) -> None:
        if error is None:
            if self._errors:
                self._errors.pop()
            return
        self._errors = [e for e in self._errors if e is not error]

    def clear_errors(self, step: Optional[str] = None) -> None:
        if step is None:
            self._errors = []
        else:
            self._errors = [e for e in self._errors if e.step != step]
