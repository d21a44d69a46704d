"""Общие заготовки для тестов: каталог, часы, управляемый шлюз."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

from gateway import ActionGatewayError, ActionResult, KitchenResult, PaymentResult
from kiosk import Catalog, Customization, CustomizationOption, KioskService, KioskSettings, MenuItem


START = 1_700_000_000.0


class FakeClock:
    """Часы, которые двигаются только вручную."""

    def __init__(self, now: float = START) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedGateway:
    """Шлюз с заранее заданными ответами. По умолчанию всё успешно.

    В очереди ответа может лежать результат или исключение.
    """

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.payment_results: list = []
        self.kds_results: list = []
        self.pos_results: list = []
        self.print_results: list = []
        self.queue_results: list = []
        self.sync_results: list = []
        self._txn = 0

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    @staticmethod
    def _next(queue: list, default):
        result = queue.pop(0) if queue else default
        if isinstance(result, Exception):
            raise result
        return result

    async def process_payment(self, method, amount, cart):
        self.calls.append(("payment", method, amount))
        self._txn += 1
        return self._next(self.payment_results, PaymentResult(success=True, transaction_id=f"txn_{self._txn}"))

    async def publish_to_kds(self, order_number, order_type, cart):
        self.calls.append(("kds", order_number, order_type))
        return self._next(self.kds_results, KitchenResult(success=True, order_number=order_number, estimated_time=7))

    async def update_cloud_pos(self, order_number, transaction_id, cart, total):
        self.calls.append(("pos", order_number, transaction_id, total))
        return self._next(self.pos_results, ActionResult(success=True))

    async def print_receipt(self, order_number, order_type, cart, total):
        self.calls.append(("printer", order_number))
        return self._next(self.print_results, ActionResult(success=True))

    async def publish_to_queue_screen(self, order_number):
        self.calls.append(("queue", order_number))
        return self._next(self.queue_results, ActionResult(success=True))

    async def sync_session(self, session_id, cart, timestamp):
        self.calls.append(("sync", session_id, len(cart), timestamp))
        return self._next(self.sync_results, ActionResult(success=True))

    async def aclose(self):
        return None


def declined(message: str = "Card declined") -> PaymentResult:
    return PaymentResult(success=False, error_code="PAYMENT_DECLINED", error_message=message)


def network_down() -> ActionGatewayError:
    return ActionGatewayError("Ошибка сети: connection refused")


@pytest.fixture
def burger() -> MenuItem:
    return MenuItem(
        id="big-mac",
        name="Big Mac",
        price=599,
        category="burgers",
        is_popular=True,
        customizations=(
            Customization(
                id="size",
                name="Make it a Meal",
                type="single",
                options=(
                    CustomizationOption("sandwich-only", "Sandwich Only", 0, is_default=True),
                    CustomizationOption("medium-meal", "Medium Meal", 300),
                    CustomizationOption("large-meal", "Large Meal", 400),
                ),
            ),
            Customization(
                id="extras",
                name="Extra Toppings",
                type="multiple",
                options=(
                    CustomizationOption("extra-cheese", "Extra Cheese", 50),
                    CustomizationOption("extra-bacon", "Add Bacon", 150),
                    CustomizationOption("extra-patty", "Extra Patty", 200),
                ),
            ),
        ),
    )


@pytest.fixture
def nuggets() -> MenuItem:
    return MenuItem(
        id="nuggets-10",
        name="10pc Chicken McNuggets",
        price=549,
        category="chicken",
        customizations=(
            Customization(
                id="sauce",
                name="Choose Sauce",
                type="single",
                required=True,
                options=(
                    CustomizationOption("bbq", "BBQ Sauce", 0),
                    CustomizationOption("ranch", "Ranch", 0),
                ),
            ),
        ),
    )


@pytest.fixture
def fries() -> MenuItem:
    return MenuItem(id="fries-medium", name="Medium Fries", price=279, category="sides")


@pytest.fixture
def catalog(burger, nuggets, fries) -> Catalog:
    return Catalog([burger, nuggets, fries], upsell=[("fries-medium", "Goes great with your order!")])


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def settings(tmp_path: Path) -> KioskSettings:
    return KioskSettings(
        kiosk_id="T1",
        db_path=tmp_path / "kiosk.db",
        tax_rate=Decimal("0.08"),
        poll_interval=3600.0,
        sync_debounce=3600.0,
    )


@pytest.fixture
def make_kiosk(catalog, gateway, settings, clock):
    """Фабрика KioskService; вызывать внутри работающего event loop."""

    async def factory(**overrides) -> KioskService:
        kiosk = KioskService(
            overrides.get("catalog", catalog),
            overrides.get("gateway", gateway),
            overrides.get("settings", settings),
            clock=overrides.get("clock", clock),
        )
        await kiosk.startup()
        return kiosk

    return factory
