import asyncio

import pytest

from kiosk import InactivityMonitor, MonitorState, Screen, ScreenNavigator
from kiosk.analytics import AnalyticsService
from kiosk.session import SessionStore


@pytest.fixture
def setup(clock):
    sessions = SessionStore(clock)
    navigator = ScreenNavigator()
    analytics = AnalyticsService()
    expired = []

    async def on_expire():
        expired.append(sessions.session_id)
        sessions.destroy()
        navigator.reset()

    monitor = InactivityMonitor(sessions, navigator, on_expire, analytics=analytics)
    sessions.start()
    navigator.navigate(Screen.MENU)
    return monitor, sessions, navigator, analytics, expired


def test_warning_then_teardown(setup, clock):
    monitor, sessions, navigator, analytics, expired = setup

    clock.advance(44)
    assert asyncio.run(monitor.tick()).state is MonitorState.ACTIVE

    clock.advance(1)
    status = asyncio.run(monitor.tick())
    assert status.state is MonitorState.WARNING
    assert status.countdown == 15

    clock.advance(15)
    asyncio.run(monitor.tick())

    assert len(expired) == 1
    assert monitor.state is MonitorState.INACTIVE
    assert navigator.current is Screen.IDLE
    names = [e.name for e in analytics.events()]
    assert names.count("inactivity_warning") == 1
    assert names.count("session_timeout") == 1


def test_countdown_decreases(setup, clock):
    monitor, *_ = setup

    clock.advance(47.2)
    assert monitor.evaluate().countdown == 13
    clock.advance(1)
    assert monitor.evaluate().countdown == 12


def test_activity_resets_countdown(setup, clock):
    monitor, sessions, navigator, analytics, expired = setup

    clock.advance(50)
    assert asyncio.run(monitor.tick()).state is MonitorState.WARNING

    sessions.record_activity()
    assert monitor.refresh().state is MonitorState.ACTIVE

    clock.advance(59)
    asyncio.run(monitor.tick())
    assert expired == []


def test_confirmation_screen_uses_short_timeout(setup, clock):
    monitor, sessions, navigator, analytics, expired = setup
    navigator.navigate(Screen.CONFIRMATION)
    sessions.record_activity()

    clock.advance(29)
    asyncio.run(monitor.tick())
    assert expired == []

    clock.advance(1)
    asyncio.run(monitor.tick())
    assert len(expired) == 1


def test_idle_is_not_monitored(clock):
    sessions = SessionStore(clock)
    navigator = ScreenNavigator()
    monitor = InactivityMonitor(sessions, navigator, lambda: None)
    sessions.start()

    clock.advance(3600)

    assert monitor.evaluate().state is MonitorState.INACTIVE


def test_no_session_is_inactive(clock):
    navigator = ScreenNavigator()
    navigator.navigate(Screen.MENU)
    monitor = InactivityMonitor(SessionStore(clock), navigator, lambda: None)

    assert monitor.evaluate().state is MonitorState.INACTIVE


def test_clock_jump_expires_on_next_tick(setup, clock):
    monitor, sessions, navigator, analytics, expired = setup

    # Процесс был приостановлен: тиков не было десять минут.
    clock.advance(600)
    asyncio.run(monitor.tick())

    assert len(expired) == 1


def test_refresh_never_expires(setup, clock):
    monitor, sessions, navigator, analytics, expired = setup

    clock.advance(120)

    assert monitor.refresh().state is not MonitorState.EXPIRING
    assert expired == []


def test_kiosk_timeout_resets_everything(make_kiosk, clock):
    async def scenario():
        kiosk = await make_kiosk()
        await kiosk.start_session()
        await kiosk.select_order_type("takeaway")
        await kiosk.add_to_cart("fries-medium", 2)
        assert kiosk.monitor.is_running

        clock.advance(45)
        await kiosk.monitor.tick()
        warning = kiosk.state()["inactivity"]

        clock.advance(15)
        await kiosk.monitor.tick()
        state = kiosk.state()
        offer = await kiosk.restore_offer()
        await kiosk.shutdown()
        return warning, state, offer

    warning, state, offer = asyncio.run(scenario())

    assert warning == {"state": "warning", "countdown": 15, "showWarning": True}
    assert state["screen"] == "idle"
    assert state["session"] is None
    assert state["cart"]["items"] == []
    assert state["inactivity"]["state"] == "inactive"
    assert offer is None


def test_touch_on_confirmation_does_not_extend(make_kiosk, clock):
    async def scenario():
        kiosk = await make_kiosk()
        await kiosk.start_session()
        await kiosk.navigate("confirmation")

        clock.advance(20)
        await kiosk.record_activity()
        clock.advance(10)
        await kiosk.monitor.tick()
        screen = kiosk.navigator.current
        await kiosk.shutdown()
        return screen

    assert asyncio.run(scenario()) is Screen.IDLE


def test_cancel_stops_monitor_and_new_session_restarts_it(make_kiosk, clock):
    async def scenario():
        kiosk = await make_kiosk()
        await kiosk.start_session()
        first = kiosk.sessions.session_id
        await kiosk.cancel()
        stopped = (kiosk.monitor.is_running, kiosk.monitor.state)

        clock.advance(5)
        await kiosk.start_session()
        restarted = kiosk.monitor.is_running
        second = kiosk.sessions.session_id
        await kiosk.shutdown()
        return first, second, stopped, restarted

    first, second, stopped, restarted = asyncio.run(scenario())

    assert stopped == (False, MonitorState.INACTIVE)
    assert restarted
    assert first != second
