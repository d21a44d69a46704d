"""Киоск целиком: корзина, сессия, навигация, монитор бездействия, оформление.

Каждое состояние имеет одного владельца (CartStore, SessionStore,
ScreenNavigator). Остальные компоненты получают ссылки на владельцев и
вызывают их операции; UI получает только снимок через ``state()``.
"""

from __future__ import annotations

import logging
import time
from typing import Iterable, List, Mapping, Optional, Tuple, Union

import aiosqlite

from database import db
from database.models import OrderRecord
from gateway import ActionGateway

from .analytics import AnalyticsService
from .cart import CartError, CartStore
from .catalog import Catalog
from .checkout import CheckoutOutcome, CheckoutPipeline, OrderNumberGenerator
from .config import KioskSettings
from .inactivity import InactivityMonitor, MonitorState
from .models import ORDER_TYPES, CartLine, Order, PipelineError, Screen, SelectedCustomization
from .navigator import ScreenNavigator
from .persistence import CartPersistence, RestoreOffer
from .pricing import SelectionBuilder
from .retry import RetryQueue
from .session import Session, SessionStore


logger = logging.getLogger(__name__)

# Экраны, на которых касания не продлевают сессию
ACTIVITY_IGNORED_SCREENS = frozenset({Screen.IDLE, Screen.CONFIRMATION})

Selections = Union[Mapping[str, Iterable[str]], Iterable[SelectedCustomization], None]


class SessionError(RuntimeError):
    """Операция требует активной сессии."""


class KioskService:
    """Точка входа для слоя представления."""

    def __init__(
        self,
        catalog: Catalog,
        gateway: ActionGateway,
        settings: Optional[KioskSettings] = None,
        *,
        clock=time.time,
        analytics: Optional[AnalyticsService] = None,
    ) -> None:
        self.settings = settings or KioskSettings()
        self.catalog = catalog
        self.gateway = gateway
        self.analytics = analytics or AnalyticsService()

        self.cart = CartStore(max_quantity=self.settings.max_quantity, tax_rate=self.settings.tax_rate)
        self.sessions = SessionStore(clock)
        self.navigator = ScreenNavigator(self.analytics)
        self.retry_queue = RetryQueue(gateway, db_path=self.settings.db_path, analytics=self.analytics)
        self.persistence = CartPersistence(
            gateway,
            db_path=self.settings.db_path,
            clock=clock,
            debounce=self.settings.sync_debounce,
            ttl=self.settings.snapshot_ttl,
            on_error=self._on_sync_error,
            on_synced=lambda: self.sessions.clear_errors(step="sync"),
            analytics=self.analytics,
        )
        self.monitor = InactivityMonitor(
            self.sessions,
            self.navigator,
            self._expire,
            timeout=self.settings.inactivity_timeout,
            confirmation_timeout=self.settings.confirmation_timeout,
            warning_threshold=self.settings.warning_threshold,
            poll_interval=self.settings.poll_interval,
            analytics=self.analytics,
        )
        self.checkout_pipeline = CheckoutPipeline(
            self.cart,
            self.sessions,
            self.navigator,
            gateway,
            self.retry_queue,
            order_numbers=OrderNumberGenerator(self.settings.kiosk_id, clock),
            analytics=self.analytics,
            default_estimate_minutes=self.settings.default_estimate_minutes,
            on_completed=self._order_completed,
        )
        self.navigator.subscribe(self._on_navigate)
        self.retry_queue.subscribe(lambda action: self.sessions.clear_errors(step=action.step))

    async def startup(self) -> None:
        await db.init_db(self.settings.db_path)
        await self.retry_queue.load()

    async def shutdown(self) -> None:
        self.monitor.stop()
        self.persistence.close()
        await self.checkout_pipeline.drain()

    # Сессия и навигация

    def _on_navigate(self, source: Screen, target: Screen) -> None:
        if target is Screen.IDLE:
            return
        if self.sessions.session is None:
            session = self.sessions.start()
            self.analytics.session_id = session.session_id
            self.analytics.track_event("session_started", {"session_id": session.session_id})
        self.sessions.record_activity()
        if not self.monitor.is_running:
            self.monitor.start()
        else:
            self.monitor.refresh()

    async def start_session(self) -> Session:
        """Покупатель коснулся экрана ожидания."""

        self.navigator.navigate(Screen.ORDER_TYPE)
        return self.sessions.session

    async def navigate(self, screen: Union[Screen, str]) -> Screen:
        target = Screen(screen)
        if target is Screen.IDLE:
            await self.cancel()
            return self.navigator.current
        return self.navigator.navigate(target)

    async def back(self) -> Screen:
        if self.navigator.previous in (None, Screen.IDLE):
            await self.cancel()
            return self.navigator.current
        return self.navigator.back()

    async def select_order_type(self, order_type: str) -> None:
        if order_type not in ORDER_TYPES:
            raise ValueError(f"Неизвестный тип заказа {order_type!r}")
        self._require_session()
        self.sessions.set_order_type(order_type)
        self.analytics.track_event("order_type_selected", {"order_type": order_type})
        self.navigator.navigate(Screen.MENU)
        await self._persist()

    async def record_activity(self) -> None:
        """Касание, нажатие клавиши и т. п."""

        if self.navigator.current in ACTIVITY_IGNORED_SCREENS:
            return
        self.sessions.record_activity()
        self.monitor.refresh()

    async def cancel(self) -> None:
        await self.reset("cancel")

    async def reset(self, reason: str) -> None:
        """Сбросить киоск на idle: корзина очищается, сессия уничтожается."""

        self.monitor.stop()
        last_screen = self.navigator.current
        self.cart.clear()
        ended = self.sessions.destroy()
        self.navigator.reset()
        if ended is not None:
            self.analytics.track_event(
                "session_reset",
                {"reason": reason, "session_id": ended.session_id, "last_screen": last_screen.value},
            )
        self.analytics.session_id = None
        await self.persistence.clear()

    async def _expire(self) -> None:
        await self.reset("timeout")

    def _require_session(self) -> Session:
        session = self.sessions.session
        if session is None:
            raise SessionError("Нет активной сессии")
        return session

    # Корзина

    async def add_to_cart(self, item_id: str, quantity: int = 1, selections: Selections = None) -> CartLine:
        self._require_session()
        item = self.catalog.get(item_id)
        if item is None:
            raise CartError(f"Позиция {item_id!r} не найдена в каталоге")

        if selections is not None and not isinstance(selections, Mapping):
            selections = {s.customization_id: sorted(s.option_ids) for s in selections}
        chosen = SelectionBuilder.from_mapping(item, selections, max_addons=self.settings.max_addons).build()
        line = self.cart.add_line(item, quantity, chosen)
        self.analytics.track_cart_action("add", item.name, line.quantity, line.total_price)
        await self._after_cart_change()
        return line

    async def update_quantity(self, line_id: str, quantity: int) -> Optional[CartLine]:
        self._require_session()
        before = self.cart.get(line_id)
        line = self.cart.update_quantity(line_id, quantity)
        if before is not None:
            if line is None:
                self.analytics.track_cart_action("remove", before.menu_item.name, before.quantity, before.total_price)
            else:
                self.analytics.track_cart_action("update", line.menu_item.name, line.quantity, line.total_price)
            await self._after_cart_change()
        return line

    async def remove_line(self, line_id: str) -> bool:
        self._require_session()
        before = self.cart.get(line_id)
        removed = self.cart.remove_line(line_id)
        if removed and before is not None:
            self.analytics.track_cart_action("remove", before.menu_item.name, before.quantity, before.total_price)
            await self._after_cart_change()
        return removed

    async def clear_cart(self) -> None:
        self._require_session()
        self.cart.clear()
        await self._after_cart_change()

    async def _after_cart_change(self) -> None:
        await self.record_activity()
        await self._persist()

    async def _persist(self) -> None:
        session = self.sessions.session
        if session is None or session.order is not None:
            return
        await self.persistence.record(session.session_id, self.cart.lines, session.order_type)

    # Восстановление

    async def restore_offer(self) -> Optional[RestoreOffer]:
        """Сохранённая недавняя сессия, если есть. Только на экране ожидания."""

        if self.sessions.session is not None:
            return None
        return await self.persistence.load(self.catalog)

    async def accept_restore(self, offer: RestoreOffer) -> Session:
        """Продолжить сохранённую сессию. Только с экрана ожидания."""

        if self.sessions.session is not None:
            raise SessionError("Восстановление возможно только без активной сессии")
        session = self.sessions.resume(offer.session_id, offer.order_type)
        self.analytics.session_id = session.session_id
        self.cart.restore(offer.lines)
        self.monitor.start()
        self.analytics.track_event(
            "session_restored",
            {"sessionId": session.session_id, "cartItemCount": len(offer.lines)},
        )
        self.navigator.navigate(Screen.MENU if offer.order_type else Screen.ORDER_TYPE)
        await self._persist()
        return session

    async def decline_restore(self) -> None:
        await self.persistence.clear()

    # Оформление и ошибки

    async def checkout(self, method: str) -> CheckoutOutcome:
        self._require_session()
        return await self.checkout_pipeline.run(method)

    async def retry_error(self) -> bool:
        """Выполнить действие повтора для показанной ошибки."""

        error = self.sessions.error
        if error is None or error.retry_action is None:
            return False
        self.sessions.clear_error(error)
        await error.retry_action()
        return True

    async def choose_other_method(self) -> bool:
        error = self.sessions.error
        if error is None or error.fallback_action is None:
            return False
        await error.fallback_action()
        return True

    def dismiss_error(self) -> Optional[PipelineError]:
        error = self.sessions.error
        if error is not None:
            self.sessions.clear_error(error)
        return error

    def _on_sync_error(self, error: PipelineError) -> None:
        if self.sessions.session is None:
            return
        self.sessions.clear_errors(step="sync")
        self.sessions.set_error(error)

    async def _order_completed(self, order: Order) -> None:
        record = OrderRecord(
            order_number=order.order_number,
            transaction_id=order.transaction_id,
            order_type=order.order_type,
            payment_method=order.payment_method,
            items=[line.to_dict() for line in order.lines],
            subtotal=order.totals.subtotal,
            tax=order.totals.tax,
            total=order.totals.grand_total,
            estimated_minutes=order.estimated_minutes,
            created_at=order.created_at.isoformat(),
        )
        try:
            await db.save_order(record, self.settings.db_path)
        except (aiosqlite.Error, OSError) as exc:
            logger.error("Не удалось сохранить заказ %s: %s", order.order_number, exc)
        # Оплаченная корзина не должна предлагаться к восстановлению.
        await self.persistence.clear()

    # Администрирование

    async def retry_pending(self) -> Tuple[int, int]:
        return await self.retry_queue.retry_all()

    async def recent_orders(self, limit: int = 50) -> List[OrderRecord]:
        return await db.list_orders(limit, self.settings.db_path)

    # Снимок для UI

    def state(self) -> dict:
        session = self.sessions.session
        status = self.monitor.evaluate()
        error = self.sessions.error
        return {
            "screen": self.navigator.current.value,
            "previousScreen": self.navigator.previous.value if self.navigator.previous else None,
            "session": None
            if session is None
            else {
                "sessionId": session.session_id,
                "orderType": session.order_type,
                "startedAt": session.started_at,
                "lastActivityAt": session.last_activity_at,
            },
            "cart": {
                "items": [line.to_dict() for line in self.cart.lines],
                "itemCount": self.cart.item_count,
                **self.cart.totals().to_dict(),
            },
            "inactivity": {
                "state": status.state.value,
                "countdown": status.countdown,
                "showWarning": status.state is MonitorState.WARNING
                and self.navigator.current is not Screen.CONFIRMATION,
            },
            "error": error.to_dict() if error else None,
            "order": session.order.to_dict() if session is not None and session.order is not None else None,
            "checkoutInFlight": self.checkout_pipeline.in_flight,
            "sync": {"online": self.persistence.online, "synced": self.persistence.is_synced},
            "pendingActions": len(self.retry_queue),
        }
