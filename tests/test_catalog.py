from decimal import Decimal
from pathlib import Path

import pytest

from kiosk import KioskSettings, load_catalog
from kiosk.analytics import AnalyticsService
from kiosk.catalog import Catalog
from kiosk.models import ErrorKind, PipelineError, format_money


MENU = Path(__file__).resolve().parents[1] / "data" / "menu.json"


def test_bundled_menu_loads():
    catalog = load_catalog(MENU)

    assert len(catalog) == 12
    assert len(catalog.categories) == 6
    big_mac = catalog.get("big-mac")
    assert big_mac.price == 599
    assert big_mac.customization("extras").option("extra-bacon").price == 150
    assert {item.id for item in catalog.by_category("drinks")} == {"coca-cola-medium", "coffee-medium"}
    assert all(item.is_popular for item in catalog.by_category("popular"))


def test_unknown_item_is_none(catalog):
    assert catalog.get("mcrib") is None


def test_upsell_skips_missing_and_excluded(burger, fries):
    catalog = Catalog([burger, fries], upsell=[("fries-medium", "Fries?"), ("shake", "Shake?")])

    assert [(item.id, reason) for item, reason in catalog.upsell_items()] == [("fries-medium", "Fries?")]
    assert catalog.upsell_items(exclude=["fries-medium"]) == []


def test_bad_customization_type_is_rejected():
    data = {
        "items": [
            {
                "id": "x",
                "name": "X",
                "price": "1.00",
                "category": "misc",
                "customizations": [{"id": "c", "name": "C", "type": "slider", "options": []}],
            }
        ]
    }

    with pytest.raises(ValueError):
        Catalog.from_dict(data)


def test_format_money():
    assert format_money(1080) == "$10.80"
    assert format_money(5) == "$0.05"


def test_settings_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("KIOSK_ID", "K9")
    monkeypatch.setenv("KIOSK_DB_PATH", str(tmp_path / "k.db"))
    monkeypatch.setenv("KIOSK_TAX_RATE", "0.10")
    monkeypatch.setenv("KIOSK_INACTIVITY_TIMEOUT", "90")
    monkeypatch.setenv("KIOSK_SIMULATED_FAILURES", "0")

    settings = KioskSettings.from_env()

    assert settings.kiosk_id == "K9"
    assert settings.db_path == tmp_path / "k.db"
    assert settings.tax_rate == Decimal("0.10")
    assert settings.inactivity_timeout == 90.0
    assert settings.confirmation_timeout == 30.0
    assert not settings.simulated_failures


def test_settings_reject_garbage(monkeypatch):
    monkeypatch.setenv("KIOSK_MAX_QUANTITY", "lots")

    with pytest.raises(ValueError):
        KioskSettings.from_env()


def test_pipeline_error_payload():
    async def retry():
        return None

    error = PipelineError(ErrorKind.PRINTER, "Printer error.", step="printer", retry_action=retry)

    assert error.to_dict() == {
        "type": "printer",
        "message": "Printer error.",
        "step": "printer",
        "canRetry": True,
        "canChooseOtherMethod": False,
    }


def test_analytics_sink_errors_are_swallowed():
    def broken(event):
        raise RuntimeError("sink down")

    analytics = AnalyticsService(broken)
    analytics.track_cart_action("add", "Big Mac", 1, 599)

    assert [e.name for e in analytics.events()] == ["cart_add"]


def test_analytics_buffer_is_bounded():
    analytics = AnalyticsService(buffer_size=3)
    for index in range(5):
        analytics.track_event(f"e{index}")

    assert [e.name for e in analytics.events()] == ["e2", "e3", "e4"]
