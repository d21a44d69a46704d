import asyncio
from dataclasses import replace

import pytest

from conftest import ScriptedGateway, network_down
from database import SCHEMA_VERSION, PersistedSession, db
from kiosk import SessionError
from kiosk.models import CartLine
from kiosk.persistence import (
    OFFLINE_MESSAGE,
    SAVED_LOCALLY_MESSAGE,
    SESSION_KEY,
    CartPersistence,
    lines_from_snapshot,
)


class GatedSyncGateway(ScriptedGateway):
    def __init__(self):
        super().__init__()
        self.gate = None

    async def sync_session(self, session_id, cart, timestamp):
        self.calls.append(("sync", session_id, len(cart), timestamp))
        await self.gate.wait()
        return await super().sync_session(session_id, cart, timestamp)


async def fill_cart(kiosk):
    await kiosk.start_session()
    await kiosk.select_order_type("takeaway")
    await kiosk.add_to_cart("big-mac", 1, {"extras": ["extra-cheese"]})
    await kiosk.add_to_cart("fries-medium", 2)


def test_recent_session_is_offered(make_kiosk, clock):
    async def scenario():
        before = await make_kiosk()
        await fill_cart(before)
        session_id = before.sessions.session_id
        before.persistence.close()
        before.monitor.stop()

        clock.advance(4 * 60)
        after = await make_kiosk()
        offer = await after.restore_offer()
        await after.accept_restore(offer)
        state = after.state()
        await after.shutdown()
        return session_id, offer, state

    session_id, offer, state = asyncio.run(scenario())

    assert offer is not None
    assert offer.session_id == session_id
    assert offer.order_type == "takeaway"
    assert [line.menu_item.id for line in offer.lines] == ["big-mac", "fries-medium"]
    assert state["screen"] == "menu"
    assert state["session"]["sessionId"] == session_id
    assert state["cart"]["itemCount"] == 3
    assert state["cart"]["subtotal"] == 599 + 50 + 2 * 279


def test_stale_session_is_discarded(make_kiosk, clock, settings):
    async def scenario():
        before = await make_kiosk()
        await fill_cart(before)
        before.persistence.close()
        before.monitor.stop()

        clock.advance(6 * 60)
        after = await make_kiosk()
        offer = await after.restore_offer()
        raw = await db.load_snapshot(SESSION_KEY, settings.db_path)
        state = after.state()
        await after.shutdown()
        return offer, raw, state

    offer, raw, state = asyncio.run(scenario())

    assert offer is None
    assert raw is None
    assert state["cart"]["items"] == []
    assert state["screen"] == "idle"


def test_declined_offer_is_forgotten(make_kiosk, clock):
    async def scenario():
        before = await make_kiosk()
        await fill_cart(before)
        before.persistence.close()
        before.monitor.stop()

        after = await make_kiosk()
        assert await after.restore_offer() is not None
        await after.decline_restore()
        offer = await after.restore_offer()
        await after.shutdown()
        return offer

    assert asyncio.run(scenario()) is None


def test_no_offer_while_session_active(make_kiosk):
    async def scenario():
        kiosk = await make_kiosk()
        await fill_cart(kiosk)
        offer = await kiosk.restore_offer()
        await kiosk.shutdown()
        return offer

    assert asyncio.run(scenario()) is None


def test_cancel_clears_snapshot(make_kiosk, settings):
    async def scenario():
        kiosk = await make_kiosk()
        await fill_cart(kiosk)
        saved = await db.load_snapshot(SESSION_KEY, settings.db_path)
        await kiosk.cancel()
        cleared = await db.load_snapshot(SESSION_KEY, settings.db_path)
        await kiosk.shutdown()
        return saved, cleared

    saved, cleared = asyncio.run(scenario())

    assert PersistedSession.from_json(saved).cart[1]["quantity"] == 2
    assert cleared is None


def test_bad_snapshots_are_removed(tmp_path, catalog, clock, gateway):
    path = tmp_path / "kiosk.db"
    rows = [{"lineId": "line-1", "menuItemId": "fries-medium", "quantity": 1, "customizations": []}]
    snapshots = [
        "{not json",
        PersistedSession("sess-old", rows, None, clock(), schema_version=SCHEMA_VERSION + 1).to_json(),
        PersistedSession("sess-future", rows, None, clock() + 30).to_json(),
    ]

    async def scenario():
        await db.init_db(path)
        persistence = CartPersistence(gateway, db_path=path, clock=clock)
        results = []
        for raw in snapshots:
            await db.save_snapshot(SESSION_KEY, raw, path)
            results.append((await persistence.load(catalog), await db.load_snapshot(SESSION_KEY, path)))
        return results

    assert asyncio.run(scenario()) == [(None, None)] * 3


def test_unknown_items_are_skipped(catalog):
    rows = [
        {"lineId": "line-1", "menuItemId": "big-mac", "quantity": 2,
         "customizations": [{"customizationId": "size", "optionIds": ["large-meal"]}]},
        {"lineId": "line-2", "menuItemId": "mcrib", "quantity": 1},
        {"lineId": "line-3", "menuItemId": "fries-medium", "quantity": 0},
    ]

    lines = lines_from_snapshot(rows, catalog)

    assert [line.line_id for line in lines] == ["line-1"]
    assert lines[0].total_price == 2 * (599 + 400)


def test_debounce_sends_only_latest(tmp_path, burger, fries, clock, gateway):
    path = tmp_path / "kiosk.db"

    async def scenario():
        await db.init_db(path)
        persistence = CartPersistence(gateway, db_path=path, clock=clock, debounce=0.01)
        lines = []
        for index, item in enumerate((burger, fries, burger)):
            lines.append(CartLine(f"line-{index}", item, 1))
            await persistence.record("sess-1", lines, "dine-in")
        await persistence.flush()
        return persistence

    persistence = asyncio.run(scenario())

    assert [call for call in gateway.calls if call[0] == "sync"] == [("sync", "sess-1", 3, clock())]
    assert persistence.revision == 3
    assert persistence.is_synced


def test_newer_state_supersedes_inflight_sync(tmp_path, burger, clock):
    path = tmp_path / "kiosk.db"
    gated = GatedSyncGateway()

    async def scenario():
        gated.gate = asyncio.Event()
        await db.init_db(path)
        persistence = CartPersistence(gated, db_path=path, clock=clock, debounce=0.01)
        await persistence.record("sess-1", [CartLine("line-1", burger, 1)], None)
        await asyncio.sleep(0.05)
        in_flight = len(gated.calls)

        await persistence.record("sess-1", [CartLine("line-1", burger, 1), CartLine("line-2", burger, 4)], None)
        gated.gate.set()
        await persistence.flush()
        return persistence, in_flight

    persistence, in_flight = asyncio.run(scenario())

    assert in_flight == 1
    assert gated.calls[-1][2] == 2
    assert persistence.synced_revision == persistence.revision == 2


def test_failed_sync_reports_and_backs_off(tmp_path, burger, clock, gateway):
    path = tmp_path / "kiosk.db"
    gateway.sync_results.append(network_down())
    errors = []
    synced = []

    async def scenario():
        await db.init_db(path)
        persistence = CartPersistence(
            gateway,
            db_path=path,
            clock=clock,
            debounce=0.01,
            on_error=errors.append,
            on_synced=lambda: synced.append(True),
        )
        await persistence.record("sess-1", [CartLine("line-1", burger, 1)], None)
        await asyncio.sleep(0.1)
        persistence.close()
        return persistence

    persistence = asyncio.run(scenario())

    assert len(errors) == 1
    assert errors[0].message == SAVED_LOCALLY_MESSAGE
    assert errors[0].step == "sync"
    assert errors[0].can_retry
    assert gateway.count("sync") == 2
    assert synced == [True]
    assert persistence.is_synced


def test_offline_waits_for_connection(tmp_path, burger, clock, gateway):
    path = tmp_path / "kiosk.db"
    errors = []

    async def scenario():
        await db.init_db(path)
        persistence = CartPersistence(gateway, db_path=path, clock=clock, debounce=0.01, on_error=errors.append)
        persistence.set_online(False)
        await persistence.record("sess-1", [CartLine("line-1", burger, 1)], None)
        await asyncio.sleep(0.05)
        offline_calls = gateway.count("sync")

        persistence.set_online(True)
        await persistence.flush()
        return persistence, offline_calls

    persistence, offline_calls = asyncio.run(scenario())

    assert [e.message for e in errors] == [OFFLINE_MESSAGE]
    assert offline_calls == 0
    assert gateway.count("sync") == 1
    assert persistence.is_synced


def test_sync_error_is_shown_and_retryable(make_kiosk, gateway):
    gateway.sync_results.append(network_down())

    async def scenario():
        kiosk = await make_kiosk()
        await fill_cart(kiosk)
        await kiosk.persistence.force_sync()
        failed = kiosk.state()
        await kiosk.retry_error()
        after = kiosk.state()
        await kiosk.shutdown()
        return failed, after

    failed, after = asyncio.run(scenario())

    assert failed["error"]["type"] == "network"
    assert failed["error"]["message"] == SAVED_LOCALLY_MESSAGE
    assert failed["sync"] == {"online": True, "synced": False}
    assert after["error"] is None
    assert after["sync"]["synced"]
    assert after["cart"]["itemCount"] == 3


def test_paid_cart_is_not_saved_again(make_kiosk, settings, gateway):
    fast = replace(settings, sync_debounce=0.01)

    async def scenario():
        kiosk = await make_kiosk(settings=fast)
        await fill_cart(kiosk)
        await kiosk.checkout("card")
        await asyncio.sleep(0.05)
        raw = await db.load_snapshot(SESSION_KEY, fast.db_path)
        await kiosk.shutdown()
        return raw

    assert asyncio.run(scenario()) is None


def test_restore_is_refused_during_active_session(make_kiosk):
    async def scenario():
        before = await make_kiosk()
        await fill_cart(before)
        before.persistence.close()
        before.monitor.stop()

        after = await make_kiosk()
        offer = await after.restore_offer()
        current = await after.start_session()
        with pytest.raises(SessionError):
            await after.accept_restore(offer)
        state = after.state()
        running = after.monitor.is_running
        await after.shutdown()
        return offer, current, state, running

    offer, current, state, running = asyncio.run(scenario())

    assert offer is not None
    assert state["session"]["sessionId"] == current.session_id != offer.session_id
    assert state["cart"]["itemCount"] == 0
    assert running


def test_restored_session_still_times_out(make_kiosk, clock):
    async def scenario():
        before = await make_kiosk()
        await fill_cart(before)
        before.persistence.close()
        before.monitor.stop()

        after = await make_kiosk()
        offer = await after.restore_offer()
        await after.accept_restore(offer)
        await after.add_to_cart("fries-medium")
        running = after.monitor.is_running
        clock.advance(600)
        await after.monitor.tick()
        state = after.state()
        await after.shutdown()
        return running, state

    running, state = asyncio.run(scenario())

    assert running
    assert state["screen"] == "idle"
    assert state["session"] is None
    assert state["cart"]["itemCount"] == 0
