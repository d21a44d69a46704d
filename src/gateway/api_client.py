"""Клиент внешних действий киоска: оплата, кухня (KDS), POS, принтер, табло очереди."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

import httpx


PARTIAL_AUTHORIZATION = "PARTIAL_AUTHORIZATION"


class ActionGatewayError(Exception):
    """Базовое исключение для ошибок при обращении к внешним системам."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class PaymentResult:
    """Результат авторизации платежа."""

    success: bool
    transaction_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    authorized_amount: Optional[int] = None

    @property
    def is_partial(self) -> bool:
        return not self.success and self.error_code == PARTIAL_AUTHORIZATION

    @classmethod
    def from_dict(cls, data: dict) -> "PaymentResult":
        return cls(
            success=bool(data.get("success", False)),
            transaction_id=data.get("transactionId"),
            error_code=data.get("errorCode"),
            error_message=data.get("errorMessage") or data.get("message"),
            authorized_amount=data.get("authorizedAmount"),
        )


@dataclass(frozen=True)
class KitchenResult:
    """Результат отправки заказа на кухонный экран."""

    success: bool
    order_number: Optional[str] = None
    estimated_time: Optional[int] = None
    error_message: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "KitchenResult":
        return cls(
            success=bool(data.get("success", False)),
            order_number=data.get("orderNumber"),
            estimated_time=data.get("estimatedTime"),
            error_message=data.get("errorMessage") or data.get("message"),
        )


@dataclass(frozen=True)
class ActionResult:
    """Результат действия без полезной нагрузки (POS, чек, табло, синхронизация)."""

    success: bool
    error_message: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ActionResult":
        return cls(
            success=bool(data.get("success", False)),
            error_message=data.get("errorMessage") or data.get("message"),
        )


class ActionGateway(Protocol):
    """Операции, которые вызывает конвейер оформления заказа."""

    async def process_payment(self, method: str, amount: int, cart: Sequence[dict]) -> PaymentResult: ...

    async def publish_to_kds(self, order_number: str, order_type: Optional[str], cart: Sequence[dict]) -> KitchenResult: ...

    async def update_cloud_pos(
        self, order_number: str, transaction_id: str, cart: Sequence[dict], total: int
    ) -> ActionResult: ...

    async def print_receipt(
        self, order_number: str, order_type: Optional[str], cart: Sequence[dict], total: int
    ) -> ActionResult: ...

    async def publish_to_queue_screen(self, order_number: str) -> ActionResult: ...

    async def sync_session(self, session_id: str, cart: list[dict], timestamp: float) -> ActionResult: ...


def _cart_payload(cart: Sequence[Any]) -> list[dict]:
    return [line.to_dict() if hasattr(line, "to_dict") else dict(line) for line in cart]


class ActionGatewayClient:
    """HTTP-клиент шлюза внешних действий."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        """Базовый метод выполнения HTTP-запроса к шлюзу."""

        url = f"{self._base_url}{path}"
        headers = {
            "Accept": "application/json;charset=UTF-8",
            "Content-Type": "application/json;charset=UTF-8",
        }
        if self._api_key:
            headers["Authorization"] = self._api_key

        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise ActionGatewayError(f"Ошибка сети при запросе {url}: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            raise ActionGatewayError(
                f"Ошибка ответа шлюза {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ActionGatewayError(f"Некорректный JSON в ответе {url}") from exc

    @classmethod
    def from_settings(cls, settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> "ActionGatewayClient":
        """Создать клиента по KioskSettings (KIOSK_GATEWAY_URL, KIOSK_GATEWAY_KEY)."""

        if not settings.gateway_url:
            raise ActionGatewayError(
                "Не задан адрес шлюза. "
                "Создайте файл .env (пример в example.env) и задайте KIOSK_GATEWAY_URL."
            )
        return cls(
            settings.gateway_url,
            settings.gateway_key,
            timeout=settings.gateway_timeout,
            transport=transport,
        )

    async def process_payment(self, method: str, amount: int, cart: Sequence[dict]) -> PaymentResult:
        """Авторизовать платёж (card, contactless). Сумма в центах."""

        payload = await self._request(
            "POST",
            "/payment/process",
            json={"method": method, "amount": amount, "items": _cart_payload(cart)},
        )
        return PaymentResult.from_dict(payload)

    async def publish_to_kds(self, order_number: str, order_type: Optional[str], cart: Sequence[dict]) -> KitchenResult:
        payload = await self._request(
            "POST",
            "/kds/publish",
            json={"orderNumber": order_number, "orderType": order_type, "items": _cart_payload(cart)},
        )
        return KitchenResult.from_dict(payload)

    async def update_cloud_pos(
        self, order_number: str, transaction_id: str, cart: Sequence[dict], total: int
    ) -> ActionResult:
        payload = await self._request(
            "POST",
            "/pos/update",
            json={
                "orderNumber": order_number,
                "transactionId": transaction_id,
                "items": _cart_payload(cart),
                "total": total,
            },
        )
        return ActionResult.from_dict(payload)

    async def print_receipt(
        self, order_number: str, order_type: Optional[str], cart: Sequence[dict], total: int
    ) -> ActionResult:
        payload = await self._request(
            "POST",
            "/printer/print",
            json={
                "orderNumber": order_number,
                "orderType": order_type,
                "items": _cart_payload(cart),
                "total": total,
            },
        )
        return ActionResult.from_dict(payload)

    async def publish_to_queue_screen(self, order_number: str) -> ActionResult:
        payload = await self._request("POST", "/queue/publish", json={"orderNumber": order_number})
        return ActionResult.from_dict(payload)

    async def sync_session(self, session_id: str, cart: list[dict], timestamp: float) -> ActionResult:
        """Отправить состояние корзины на сервер синхронизации."""

        payload = await self._request(
            "POST",
            "/cart/sync",
            json={"sessionId": session_id, "cart": cart, "timestamp": timestamp},
        )
        return ActionResult.from_dict(payload)

    async def aclose(self) -> None:
        await self._client.aclose()
