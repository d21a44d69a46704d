"""Конвейер оформления оплаченного заказа.

Шаги строго по порядку:

1. авторизация платежа (card | contactless), единственный шаг, от
   которого зависит, списаны ли деньги; при отказе конвейер
   останавливается, корзина и сессия не меняются;
2. отправка на кухонный экран (KDS): ждём ради времени готовности, но
   сбой только ставит отправку в очередь повтора;
3. обновление POS, затем 4. печать чека в фоне, одна за другой;
5. номер на табло очереди в фоне, параллельно с 3 и 4;
6. завершение: сессия получает заказ, экран подтверждения.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import secrets
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from gateway import ActionGateway

from .analytics import AnalyticsService
from .cart import CartStore
from .models import PAYMENT_METHODS, CartLine, CartTotals, ErrorKind, Order, PipelineError, Screen
from .navigator import ScreenNavigator
from .retry import RetryQueue, call_step, order_payload
from .session import SessionStore


logger = logging.getLogger(__name__)


class CheckoutStatus(str, Enum):
    COMPLETED = "completed"
    PAYMENT_FAILED = "payment_failed"
    PARTIAL_AUTHORIZATION = "partial_authorization"
    EMPTY_CART = "empty_cart"
    NO_SESSION = "no_session"
    BUSY = "busy"


@dataclass(frozen=True)
class StepResult:
    """Результат одного шага: тип ошибки не теряется по пути в UI."""

    step: str
    ok: bool
    error: Optional[PipelineError] = None
    value: Any = None


@dataclass(frozen=True)
class CheckoutOutcome:
    status: CheckoutStatus
    order: Optional[Order] = None
    errors: tuple[PipelineError, ...] = ()
    steps: tuple[StepResult, ...] = ()

    @property
    def completed(self) -> bool:
        return self.status is CheckoutStatus.COMPLETED


# Тексты для покупателя
PAYMENT_DECLINED_MESSAGE = "Payment was declined. Please try again or use a different card."
PAYMENT_PARTIAL_MESSAGE = "Your payment was only partially authorized. Try again or choose another payment method."
PAYMENT_NETWORK_MESSAGE = "We couldn't reach the payment service. Please try again."

STEP_ERRORS = {
    "kds": (ErrorKind.KDS, "Your order is paid. We're still sending it to the kitchen."),
    "pos": (ErrorKind.NETWORK, "Your order is paid. The register will be updated shortly."),
    "printer": (ErrorKind.PRINTER, "Printer error. Receipt will be available at counter."),
    "queue": (ErrorKind.NETWORK, "Your order number will appear on the queue screen shortly."),
}


class OrderNumberGenerator:
    """Номера вида ``K1-0042-3F9A``: киоск, порядковый номер за день, случайный хвост."""

    def __init__(self, kiosk_id: str, clock: Callable[[], float] = time.time) -> None:
        self.kiosk_id = kiosk_id
        self._clock = clock
        self._day: Optional[str] = None
        self._sequence = 0

    def next(self) -> str:
        day = datetime.fromtimestamp(self._clock(), tz=timezone.utc).strftime("%Y%m%d")
        if day != self._day:
            self._day = day
            self._sequence = 0
        self._sequence += 1
        return f"{self.kiosk_id}-{self._sequence:04d}-{secrets.token_hex(2).upper()}"


class CheckoutPipeline:
    """Оркестратор шагов оформления заказа."""

    def __init__(
        self,
        cart: CartStore,
        sessions: SessionStore,
        navigator: ScreenNavigator,
        gateway: ActionGateway,
        retry_queue: RetryQueue,
        *,
        order_numbers: OrderNumberGenerator,
        analytics: Optional[AnalyticsService] = None,
        default_estimate_minutes: int = 10,
        on_completed: Optional[Callable[[Order], Awaitable[None]]] = None,
    ) -> None:
        self._cart = cart
        self._sessions = sessions
        self._navigator = navigator
        self._gateway = gateway
        self._retry_queue = retry_queue
        self._order_numbers = order_numbers
        self._analytics = analytics
        self.default_estimate_minutes = default_estimate_minutes
        self._on_completed = on_completed
        self._in_flight = False
        self._background: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def run(self, method: str) -> CheckoutOutcome:
        """Оформить заказ текущей корзины выбранным способом оплаты."""

        if method not in PAYMENT_METHODS:
            raise ValueError(f"Неизвестный способ оплаты {method!r}")
        if self._in_flight:
            return CheckoutOutcome(CheckoutStatus.BUSY)

        session = self._sessions.session
        if session is None:
            return CheckoutOutcome(CheckoutStatus.NO_SESSION)
        if session.order is not None:
            # Уже оплачено в этой сессии: повторно не списываем.
            return CheckoutOutcome(CheckoutStatus.COMPLETED, order=session.order)
        if self._cart.is_empty:
            return CheckoutOutcome(CheckoutStatus.EMPTY_CART)

        self._in_flight = True
        try:
            return await self._run(method, session.session_id, session.order_type)
        finally:
            self._in_flight = False

    async def _run(self, method: str, session_id: str, order_type: Optional[str]) -> CheckoutOutcome:
        self._sessions.clear_errors(step="payment")
        self._sessions.record_activity()
        lines = self._cart.lines
        totals = self._cart.totals()

        payment = await self._authorize(method, lines, totals)
        if not payment.ok:
            self._sessions.set_error(payment.error)
            self._sessions.record_activity()
            return CheckoutOutcome(payment.value, errors=(payment.error,), steps=(payment,))

        transaction_id = payment.value
        order_number = self._order_numbers.next()
        logger.info("Платёж %s одобрен, заказ %s", transaction_id, order_number)

        kitchen = await self._publish_kitchen(order_number, order_type, lines)
        estimate = kitchen.value if kitchen.ok and kitchen.value else self.default_estimate_minutes

        order = Order(
            order_number=order_number,
            transaction_id=transaction_id,
            order_type=order_type,
            payment_method=method,
            lines=tuple(replace(line) for line in lines),
            totals=totals,
            estimated_minutes=int(estimate),
            created_at=datetime.now(timezone.utc),
        )
        payload = order_payload(order)

        errors: list[PipelineError] = []
        steps = [payment, kitchen]
        if not kitchen.ok:
            error = await self._queue_failure("kds", payload, kitchen.error.message if kitchen.error else None)
            kitchen = replace(kitchen, error=error)
            steps[1] = kitchen
            errors.append(error)

        self._dispatch_background(payload)

        if self._sessions.session_id == session_id:
            self._sessions.complete_order(order)
            for error in errors:
                self._sessions.set_error(error)
            self._navigator.navigate(Screen.CONFIRMATION)
        else:
            logger.warning("Сессия %s сброшена во время оформления заказа %s", session_id, order_number)

        if self._analytics is not None:
            self._analytics.track_event(
                "order_completed",
                {
                    "order_number": order_number,
                    "total": order.grand_total,
                    "item_count": sum(line.quantity for line in order.lines),
                    "order_type": order_type,
                    "kds_ok": kitchen.ok,
                },
            )
        if self._on_completed is not None:
            await self._on_completed(order)
        return CheckoutOutcome(CheckoutStatus.COMPLETED, order=order, errors=tuple(errors), steps=tuple(steps))

    # Шаг 1

    async def _authorize(self, method: str, lines: tuple[CartLine, ...], totals: CartTotals) -> StepResult:
        amount = totals.grand_total
        retry = functools.partial(self.run, method)
        if self._analytics is not None:
            self._analytics.track_payment("initiated", method, amount)

        try:
            result = await self._gateway.process_payment(method, amount, [line.to_dict() for line in lines])
        except Exception as exc:  # noqa: BLE001
            logger.warning("Сбой связи при оплате: %s", exc)
            error = PipelineError(ErrorKind.NETWORK, PAYMENT_NETWORK_MESSAGE, step="payment", retry_action=retry)
            self._track_payment_failure(method, amount, error, "NETWORK")
            return StepResult("payment", False, error, CheckoutStatus.PAYMENT_FAILED)

        if result.success and result.transaction_id:
            if self._analytics is not None:
                self._analytics.track_payment("success", method, amount)
            return StepResult("payment", True, value=result.transaction_id)

        if result.is_partial:
            error = PipelineError(
                ErrorKind.PAYMENT,
                result.error_message or PAYMENT_PARTIAL_MESSAGE,
                step="payment",
                retry_action=retry,
                fallback_action=self.choose_other_method,
            )
            self._track_payment_failure(method, amount, error, result.error_code)
            return StepResult("payment", False, error, CheckoutStatus.PARTIAL_AUTHORIZATION)

        error = PipelineError(
            ErrorKind.PAYMENT,
            result.error_message or PAYMENT_DECLINED_MESSAGE,
            step="payment",
            retry_action=retry,
        )
        self._track_payment_failure(method, amount, error, result.error_code or "PAYMENT_DECLINED")
        return StepResult("payment", False, error, CheckoutStatus.PAYMENT_FAILED)

    def _track_payment_failure(self, method: str, amount: int, error: PipelineError, code: Optional[str]) -> None:
        logger.info("Платёж отклонён (%s): %s", code, error.message)
        if self._analytics is not None:
            self._analytics.track_payment("failed", method, amount)
            self._analytics.track_error(error.kind.value, error.message, error_code=code, step="payment")

    async def choose_other_method(self) -> None:
        """Отказаться от повтора и вернуться к выбору способа оплаты."""

        self._sessions.clear_errors(step="payment")
        self._navigator.navigate(Screen.PAYMENT)

    # Шаг 2

    async def _publish_kitchen(
        self, order_number: str, order_type: Optional[str], lines: tuple[CartLine, ...]
    ) -> StepResult:
        payload = {"orderNumber": order_number, "orderType": order_type, "items": [line.to_dict() for line in lines]}
        ok, message, estimate = await call_step(self._gateway, "kds", payload)
        if ok:
            return StepResult("kds", True, value=estimate)
        kind, default_message = STEP_ERRORS["kds"]
        return StepResult("kds", False, PipelineError(kind, message or default_message, step="kds"))

    # Шаги 3–5

    def _dispatch_background(self, payload: dict) -> None:
        self._spawn(self._pos_then_print(payload))
        self._spawn(self._best_effort("queue", payload))

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _pos_then_print(self, payload: dict) -> None:
        # Чек печатается после попытки POS, чтобы транзакция уже была учтена.
        await self._best_effort("pos", payload)
        await self._best_effort("printer", payload)

    async def _best_effort(self, step: str, payload: dict) -> StepResult:
        ok, message, _ = await call_step(self._gateway, step, payload)
        if ok:
            return StepResult(step, True)
        error = await self._queue_failure(step, payload, message)
        session = self._sessions.session
        if session is not None and session.order is not None and session.order.order_number == payload["orderNumber"]:
            self._sessions.set_error(error)
        return StepResult(step, False, error)

    async def _queue_failure(self, step: str, payload: dict, message: Optional[str]) -> PipelineError:
        await self._retry_queue.enqueue(step, payload, message)
        kind, default_message = STEP_ERRORS[step]
        error = PipelineError(
            kind,
            default_message,
            step=step,
            retry_action=functools.partial(self._retry_queue.retry_for, payload["orderNumber"], step),
        )
        logger.warning("Шаг %s для заказа %s не выполнен: %s", step, payload["orderNumber"], message)
        if self._analytics is not None:
            self._analytics.track_error(kind.value, message or default_message, step=step, order_number=payload["orderNumber"])
        return error

    async def drain(self) -> None:
        """Дождаться фоновых шагов (завершение работы, тесты)."""

        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
