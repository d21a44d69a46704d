"""Пакет интеграции с внешними системами киоска."""

from .api_client import (
    ActionGateway,
    ActionGatewayClient,
    ActionGatewayError,
    ActionResult,
    KitchenResult,
    PaymentResult,
)
from .simulated import SimulatedGateway

__all__ = [
    "ActionGateway",
    "ActionGatewayClient",
    "ActionGatewayError",
    "ActionResult",
    "KitchenResult",
    "PaymentResult",
    "SimulatedGateway",
]
