"""Имитация внешних систем для демонстрационного режима без шлюза."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Optional, Sequence

from .api_client import ActionResult, KitchenResult, PaymentResult


logger = logging.getLogger(__name__)


class SimulatedGateway:
    """Шлюз со случайными задержками и сбоями.

    Доли сбоев по умолчанию: оплата 5%, кухня 2%, принтер 1%.
    ``failures=False`` отключает сбои полностью.
    """

    def __init__(
        self,
        *,
        failures: bool = True,
        payment_failure_rate: float = 0.05,
        kds_failure_rate: float = 0.02,
        printer_failure_rate: float = 0.01,
        delay_scale: float = 1.0,
        seed: Optional[int] = None,
    ) -> None:
        self._failures = failures
        self.payment_failure_rate = payment_failure_rate
        self.kds_failure_rate = kds_failure_rate
        self.printer_failure_rate = printer_failure_rate
        self.delay_scale = delay_scale
        self._random = random.Random(seed)

    async def _delay(self, min_ms: int, max_ms: int) -> None:
        if self.delay_scale <= 0:
            return
        delay = min_ms + self._random.random() * (max_ms - min_ms)
        await asyncio.sleep(delay / 1000 * self.delay_scale)

    def _fails(self, rate: float) -> bool:
        return self._failures and self._random.random() < rate

    async def process_payment(self, method: str, amount: int, cart: Sequence) -> PaymentResult:
        logger.info("[SYSTEM ACTION] payment.process() метод=%s сумма=%s", method, amount)
        await self._delay(1500, 2500)
        if self._fails(self.payment_failure_rate):
            return PaymentResult(
                success=False,
                error_code="PAYMENT_DECLINED",
                error_message="Payment was declined. Please try again or use a different card.",
            )
        suffix = "".join(self._random.choice("abcdefghijklmnopqrstuvwxyz0123456789") for _ in range(9))
        return PaymentResult(success=True, transaction_id=f"txn_{int(time.time() * 1000)}_{suffix}")

    async def publish_to_kds(self, order_number: str, order_type: Optional[str], cart: Sequence) -> KitchenResult:
        logger.info("[SYSTEM ACTION] kds.publish() заказ=%s", order_number)
        await self._delay(500, 1000)
        if self._fails(self.kds_failure_rate):
            return KitchenResult(success=False, error_message="Failed to send order to kitchen. Please try again.")
        return KitchenResult(success=True, order_number=order_number, estimated_time=5 + self._random.randrange(10))

    async def update_cloud_pos(self, order_number: str, transaction_id: str, cart: Sequence, total: int) -> ActionResult:
        logger.info("[SYSTEM ACTION] pos.update() заказ=%s", order_number)
        await self._delay(300, 500)
        return ActionResult(success=True)

    async def print_receipt(self, order_number: str, order_type: Optional[str], cart: Sequence, total: int) -> ActionResult:
        logger.info("[SYSTEM ACTION] printer.print() заказ=%s", order_number)
        await self._delay(1000, 2000)
        if self._fails(self.printer_failure_rate):
            return ActionResult(success=False, error_message="Printer error. Receipt will be available at counter.")
        return ActionResult(success=True)

    async def publish_to_queue_screen(self, order_number: str) -> ActionResult:
        logger.info("[SYSTEM ACTION] queue.publish() заказ=%s", order_number)
        await self._delay(200, 400)
        return ActionResult(success=True)

    async def sync_session(self, session_id: str, cart: list[dict], timestamp: float) -> ActionResult:
        logger.info("[SYSTEM ACTION] sync.push() сессия=%s позиций=%s", session_id, len(cart))
        return ActionResult(success=True)

    async def aclose(self) -> None:
        return None
