from kiosk import Screen, ScreenNavigator
from kiosk.analytics import AnalyticsService


def test_starts_on_idle():
    navigator = ScreenNavigator()

    assert navigator.current is Screen.IDLE
    assert navigator.previous is None


def test_previous_screen_tracks_rapid_transitions():
    analytics = AnalyticsService()
    navigator = ScreenNavigator(analytics)

    for screen in (Screen.ORDER_TYPE, Screen.MENU, Screen.ITEM_DETAIL, Screen.MENU, Screen.CART):
        navigator.navigate(screen)

    assert navigator.current is Screen.CART
    assert navigator.previous is Screen.MENU

    views = [e.properties for e in analytics.events() if e.name == "screen_view"]
    assert [(v["previous_screen"], v["screen_name"]) for v in views] == [
        ("idle", "order-type"),
        ("order-type", "menu"),
        ("menu", "item-detail"),
        ("item-detail", "menu"),
        ("menu", "cart"),
    ]


def test_accepts_screen_names():
    navigator = ScreenNavigator()

    assert navigator.navigate("payment") is Screen.PAYMENT


def test_listeners_get_source_and_target():
    navigator = ScreenNavigator()
    seen = []
    navigator.subscribe(lambda source, target: seen.append((source, target)))

    navigator.navigate(Screen.MENU)
    navigator.navigate(Screen.CART)
    navigator.back()

    assert seen == [
        (Screen.IDLE, Screen.MENU),
        (Screen.MENU, Screen.CART),
        (Screen.CART, Screen.MENU),
    ]


def test_reset_goes_to_idle_once():
    navigator = ScreenNavigator()
    seen = []
    navigator.subscribe(lambda source, target: seen.append(target))

    navigator.navigate(Screen.PAYMENT)
    navigator.reset()
    navigator.reset()

    assert navigator.current is Screen.IDLE
    assert seen == [Screen.PAYMENT, Screen.IDLE]
