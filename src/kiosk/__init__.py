"""Ядро киоска самообслуживания: корзина, сессия и оформление заказа."""

from .cart import CartError, CartStore
from .catalog import Catalog, load_catalog
from .checkout import CheckoutOutcome, CheckoutPipeline, CheckoutStatus, OrderNumberGenerator
from .config import KioskSettings
from .inactivity import InactivityMonitor, MonitorState
from .models import (
    CartLine,
    CartTotals,
    Customization,
    CustomizationOption,
    ErrorKind,
    MenuItem,
    Order,
    PipelineError,
    Screen,
    SelectedCustomization,
)
from .navigator import ScreenNavigator
from .pricing import PricingError, SelectionBuilder, compute_cart_totals, compute_line_total
from .service import KioskService, SessionError

__all__ = [
    "CartError",
    "CartLine",
    "CartStore",
    "CartTotals",
    "Catalog",
    "CheckoutOutcome",
    "CheckoutPipeline",
    "CheckoutStatus",
    "Customization",
    "CustomizationOption",
    "ErrorKind",
    "InactivityMonitor",
    "KioskService",
    "KioskSettings",
    "MenuItem",
    "MonitorState",
    "Order",
    "OrderNumberGenerator",
    "PipelineError",
    "PricingError",
    "Screen",
    "ScreenNavigator",
    "SelectedCustomization",
    "SelectionBuilder",
    "SessionError",
    "compute_cart_totals",
    "compute_line_total",
    "load_catalog",
]
