"""FastAPI приложение киоска: операции и снимок состояния для экранов."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

# Добавляем src в путь
ROOT_DIR = Path(__file__).resolve().parents[2]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from gateway import ActionGatewayClient, SimulatedGateway
from kiosk import CartError, KioskService, KioskSettings, MenuItem, PricingError, SessionError, load_catalog
from kiosk.persistence import RestoreOffer

logger = logging.getLogger(__name__)

app = FastAPI(title="Киоск самообслуживания")

# Сервис киоска и шлюз внешних систем
kiosk: Optional[KioskService] = None
gateway = None
restore_offer: Optional[RestoreOffer] = None


def menu_item_to_dict(item: MenuItem) -> dict:
    return {
        "id": item.id,
        "name": item.name,
        "description": item.description,
        "price": item.price,
        "category": item.category,
        "isPopular": item.is_popular,
        "calories": item.calories,
        "allergens": list(item.allergens),
        "customizations": [
            {
                "id": custom.id,
                "name": custom.name,
                "type": custom.type,
                "required": custom.required,
                "options": [
                    {"id": opt.id, "name": opt.name, "price": opt.price, "isDefault": opt.is_default}
                    for opt in custom.options
                ],
            }
            for custom in item.customizations
        ],
    }


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _not_ready() -> JSONResponse:
    return _error("Киоск не инициализирован", 500)


def _state() -> JSONResponse:
    return JSONResponse({"success": True, "state": kiosk.state()})


@app.on_event("startup")
async def startup():
    """Инициализация при запуске."""
    global kiosk, gateway, restore_offer
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

    settings = KioskSettings.from_env()
    catalog = load_catalog(settings.catalog_path)
    if settings.gateway_url:
        gateway = ActionGatewayClient.from_settings(settings)
    else:
        logger.warning("KIOSK_GATEWAY_URL не задан, используется имитация внешних систем")
        gateway = SimulatedGateway(failures=settings.simulated_failures, delay_scale=settings.simulated_delay_scale)

    restore_offer = None
    kiosk = KioskService(catalog, gateway, settings)
    await kiosk.startup()


@app.on_event("shutdown")
async def shutdown():
    global kiosk, gateway
    if kiosk is not None:
        await kiosk.shutdown()
        kiosk = None
    if gateway is not None:
        await gateway.aclose()
        gateway = None


@app.get("/health")
async def health():
    return {"status": "ok" if kiosk is not None else "starting"}


@app.get("/api/menu")
async def get_menu():
    """Меню: категории и позиции (цены в центах)."""
    if not kiosk:
        return _not_ready()

    return JSONResponse({
        "success": True,
        "categories": [
            {"id": c.id, "name": c.name, "icon": c.icon} for c in kiosk.catalog.categories
        ],
        "items": [menu_item_to_dict(item) for item in kiosk.catalog],
    })


@app.get("/api/upsell")
async def get_upsell():
    """Предложения перед оплатой (без позиций, уже лежащих в корзине)."""
    if not kiosk:
        return _not_ready()

    in_cart = [line.menu_item.id for line in kiosk.cart.lines]
    return JSONResponse({
        "success": True,
        "items": [
            {"item": menu_item_to_dict(item), "reason": reason}
            for item, reason in kiosk.catalog.upsell_items(exclude=in_cart)
        ],
    })


@app.get("/api/state")
async def get_state():
    if not kiosk:
        return _not_ready()
    return _state()


@app.post("/api/session/start")
async def start_session():
    if not kiosk:
        return _not_ready()
    await kiosk.start_session()
    return _state()


@app.post("/api/session/cancel")
async def cancel_session():
    if not kiosk:
        return _not_ready()
    await kiosk.cancel()
    return _state()


@app.post("/api/activity")
async def record_activity():
    if not kiosk:
        return _not_ready()
    await kiosk.record_activity()
    return _state()


@app.post("/api/navigate")
async def navigate(request: Request):
    if not kiosk:
        return _not_ready()
    data = await request.json()
    try:
        await kiosk.navigate(data.get("screen"))
    except ValueError:
        return _error(f"Неизвестный экран {data.get('screen')!r}", 400)
    return _state()


@app.post("/api/back")
async def back():
    if not kiosk:
        return _not_ready()
    await kiosk.back()
    return _state()


@app.post("/api/order-type")
async def select_order_type(request: Request):
    if not kiosk:
        return _not_ready()
    data = await request.json()
    try:
        await kiosk.select_order_type(data.get("orderType"))
    except SessionError as e:
        return _error(str(e), 409)
    except ValueError as e:
        return _error(str(e), 400)
    return _state()


@app.post("/api/cart")
async def add_to_cart(request: Request):
    """Добавить позицию: {"itemId", "quantity", "customizations": {id: [optionId]}}."""
    if not kiosk:
        return _not_ready()
    data = await request.json()
    customizations = data.get("customizations") or None
    if customizations is not None and not isinstance(customizations, dict):
        return _error("customizations: ожидается объект {id: [optionId]}", 400)
    try:
        await kiosk.add_to_cart(data.get("itemId", ""), data.get("quantity", 1), customizations)
    except SessionError as e:
        return _error(str(e), 409)
    except (CartError, PricingError) as e:
        return _error(str(e), 400)
    return _state()


@app.patch("/api/cart/{line_id}")
async def update_quantity(line_id: str, request: Request):
    if not kiosk:
        return _not_ready()
    data = await request.json()
    try:
        await kiosk.update_quantity(line_id, data.get("quantity"))
    except SessionError as e:
        return _error(str(e), 409)
    except CartError as e:
        return _error(str(e), 400)
    return _state()


@app.delete("/api/cart/{line_id}")
async def remove_line(line_id: str):
    if not kiosk:
        return _not_ready()
    try:
        await kiosk.remove_line(line_id)
    except SessionError as e:
        return _error(str(e), 409)
    return _state()


@app.post("/api/checkout")
async def checkout(request: Request):
    """Оплатить и оформить заказ: {"method": "card" | "contactless"}."""
    if not kiosk:
        return _not_ready()
    data = await request.json()
    try:
        outcome = await kiosk.checkout(data.get("method", ""))
    except SessionError as e:
        return _error(str(e), 409)
    except ValueError as e:
        return _error(str(e), 400)

    return JSONResponse({
        "success": outcome.completed,
        "status": outcome.status.value,
        "order": outcome.order.to_dict() if outcome.order else None,
        "errors": [error.to_dict() for error in outcome.errors],
        "state": kiosk.state(),
    })


@app.post("/api/error/retry")
async def retry_error():
    if not kiosk:
        return _not_ready()
    retried = await kiosk.retry_error()
    return JSONResponse({"success": retried, "state": kiosk.state()})


@app.post("/api/error/other-method")
async def choose_other_method():
    if not kiosk:
        return _not_ready()
    switched = await kiosk.choose_other_method()
    return JSONResponse({"success": switched, "state": kiosk.state()})


@app.post("/api/error/dismiss")
async def dismiss_error():
    if not kiosk:
        return _not_ready()
    kiosk.dismiss_error()
    return _state()


@app.get("/api/restore")
async def get_restore_offer():
    """Недавняя незавершённая сессия, которую можно восстановить."""
    global restore_offer
    if not kiosk:
        return _not_ready()
    restore_offer = await kiosk.restore_offer()
    if restore_offer is None:
        return JSONResponse({"success": True, "offer": None})
    return JSONResponse({
        "success": True,
        "offer": {
            "sessionId": restore_offer.session_id,
            "orderType": restore_offer.order_type,
            "items": [line.to_dict() for line in restore_offer.lines],
            "age": round(restore_offer.age),
        },
    })


@app.post("/api/restore")
async def answer_restore_offer(request: Request):
    global restore_offer
    if not kiosk:
        return _not_ready()
    data = await request.json()
    if restore_offer is None:
        return _error("Нет сессии для восстановления", 404)

    offer, restore_offer = restore_offer, None
    if data.get("accept"):
        try:
            await kiosk.accept_restore(offer)
        except SessionError as e:
            return _error(str(e), 409)
    else:
        await kiosk.decline_restore()
    return _state()


@app.get("/api/admin/orders")
async def recent_orders(limit: int = 50):
    if not kiosk:
        return _not_ready()
    orders = await kiosk.recent_orders(limit)
    return JSONResponse({
        "success": True,
        "orders": [
            {
                "orderNumber": o.order_number,
                "orderType": o.order_type,
                "paymentMethod": o.payment_method,
                "total": o.total,
                "estimatedTime": o.estimated_minutes,
                "createdAt": o.created_at,
            }
            for o in orders
        ],
        "pendingActions": [
            {"orderNumber": a.order_number, "step": a.step, "attempts": a.attempts, "lastError": a.last_error}
            for a in kiosk.retry_queue.pending
        ],
    })


@app.post("/api/admin/retry-pending")
async def retry_pending():
    if not kiosk:
        return _not_ready()
    succeeded, failed = await kiosk.retry_pending()
    return JSONResponse({"success": failed == 0, "succeeded": succeeded, "failed": failed})
