"""Настройки киоска из .env / переменных окружения."""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


ROOT_DIR = Path(__file__).resolve().parents[2]

load_dotenv(ROOT_DIR / ".env")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Переменная {name} должна быть числом, получено {value!r}") from exc


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Переменная {name} должна быть целым числом, получено {value!r}") from exc


@dataclass(frozen=True)
class KioskSettings:
    """Параметры одного экземпляра киоска."""

    kiosk_id: str = "K1"
    db_path: Path = ROOT_DIR / "data" / "kiosk.db"
    catalog_path: Path = ROOT_DIR / "data" / "menu.json"
    tax_rate: Decimal = Decimal("0.08")

    # Таймеры, секунды
    inactivity_timeout: float = 60.0
    confirmation_timeout: float = 30.0
    warning_threshold: float = 15.0
    poll_interval: float = 1.0
    sync_debounce: float = 3.0
    snapshot_ttl: float = 5 * 60.0

    max_addons: int = 2
    max_quantity: int = 99
    default_estimate_minutes: int = 10

    gateway_url: Optional[str] = None
    gateway_key: Optional[str] = None
    gateway_timeout: float = 10.0
    simulated_failures: bool = True
    simulated_delay_scale: float = 1.0

    @classmethod
    def from_env(cls) -> "KioskSettings":
        """Собрать настройки, считав .env / переменные окружения."""

        return cls(
            kiosk_id=os.getenv("KIOSK_ID") or cls.kiosk_id,
            db_path=Path(os.getenv("KIOSK_DB_PATH") or cls.db_path),
            catalog_path=Path(os.getenv("KIOSK_CATALOG_PATH") or cls.catalog_path),
            tax_rate=Decimal(os.getenv("KIOSK_TAX_RATE") or str(cls.tax_rate)),
            inactivity_timeout=_env_float("KIOSK_INACTIVITY_TIMEOUT", cls.inactivity_timeout),
            confirmation_timeout=_env_float("KIOSK_CONFIRMATION_TIMEOUT", cls.confirmation_timeout),
            warning_threshold=_env_float("KIOSK_WARNING_THRESHOLD", cls.warning_threshold),
            poll_interval=_env_float("KIOSK_POLL_INTERVAL", cls.poll_interval),
            sync_debounce=_env_float("KIOSK_SYNC_DEBOUNCE", cls.sync_debounce),
            snapshot_ttl=_env_float("KIOSK_SNAPSHOT_TTL", cls.snapshot_ttl),
            max_addons=_env_int("KIOSK_MAX_ADDONS", cls.max_addons),
            max_quantity=_env_int("KIOSK_MAX_QUANTITY", cls.max_quantity),
            default_estimate_minutes=_env_int("KIOSK_DEFAULT_ESTIMATE", cls.default_estimate_minutes),
            gateway_url=os.getenv("KIOSK_GATEWAY_URL") or None,
            gateway_key=os.getenv("KIOSK_GATEWAY_KEY") or None,
            gateway_timeout=_env_float("KIOSK_GATEWAY_TIMEOUT", cls.gateway_timeout),
            simulated_failures=os.getenv("KIOSK_SIMULATED_FAILURES", "1") not in ("0", "false", "no"),
            simulated_delay_scale=_env_float("KIOSK_SIMULATED_DELAY_SCALE", cls.simulated_delay_scale),
        )
