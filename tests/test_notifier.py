import json

import httpx
import pytest

from alerthub.notifier import (
    ONESIGNAL_URL,
    NotificationDispatcher,
    SendResult,
    _OneSignalAdapter,
    build_filters,
    build_payload,
    channel_for,
    collapse_group,
    group_events,
)

NOTIFIER_CFG = {
    "notify_channels": ["onesignal"],
    "send_delay_ms": 0,
    "ttl_sec": 3600,
    "android_channels": {"game": "game-channel-id", "news": "news-channel-id"},
    "accent_color": "FFC83803",
    "ios_sound": "default",
    "retry": {"max_times": 1, "backoff_sec": 0},
}


# ---------- grouping ----------

@pytest.mark.asyncio
async def test_batch_collapses_to_highest_priority(make_alert, make_adapter):
    adapter = make_adapter()
    d = NotificationDispatcher(NOTIFIER_CFG, adapter=adapter)
    events = [
        make_alert(priority="normal", body="start", type_="GAME_START"),
        make_alert(priority="high", body="Packers 7, Bears 3 - 1st 2:00"),
        make_alert(priority="low", body="low one"),
    ]
    outcomes = await d.send(events)

    assert len(adapter.sent) == 1
    assert adapter.sent[0].body == "Packers 7, Bears 3 - 1st 2:00 (+2 more)"
    assert adapter.sent[0].type == "SCORE_CHANGE"
    assert len(outcomes) == 1
    assert outcomes[0].events == events


def test_singleton_group_untouched(make_alert):
    ev = make_alert(body="plain")
    assert collapse_group([ev]) is ev


def test_priority_tie_keeps_first(make_alert):
    a = make_alert(body="a")
    b = make_alert(body="b")
    assert collapse_group([a, b]).body == "a (+1 more)"


def test_group_events_by_dispatch_key(make_alert):
    evs = [
        make_alert(game_id="1"),
        make_alert(team="cubs", game_id=None),
        make_alert(game_id="1"),
        make_alert(team="cubs", game_id=None),
    ]
    groups = group_events(evs)
    assert list(groups) == ["bears-1", "cubs-news"]
    assert [len(g) for g in groups.values()] == [2, 2]


# ---------- payload ----------

def _tag_keys(filters):
    return [f["key"] for f in filters if "key" in f]


@pytest.mark.parametrize("type_,category,channel", [
    ("SCORE_CHANGE", "alert_scores", "game"),
    ("GAME_START", "alert_scores", "game"),
    ("GAME_END", "alert_scores", "game"),
    ("CLOSE_GAME", "alert_scores", "game"),
    ("OVERTIME", "alert_scores", "game"),
    ("INJURY", "alert_injuries", "news"),
    ("TRADE", "alert_trades", "news"),
    ("ROSTER_MOVE", "alert_trades", "news"),
    ("BREAKING_NEWS", "alert_breaking", "news"),
])
def test_audience_and_channel(make_alert, type_, category, channel):
    ev = make_alert(type_=type_)
    assert _tag_keys(build_filters(ev)) == ["notifications_enabled", "follows_bears", category]
    assert channel_for(type_) == channel


def test_filters_are_and_joined(make_alert):
    filters = build_filters(make_alert())
    assert [f.get("operator") for f in filters if "operator" in f] == ["AND", "AND"]


def test_city_wide_skips_follow_tag(make_alert):
    ev = make_alert(type_="BREAKING_NEWS", team="chicago", game_id=None)
    assert _tag_keys(build_filters(ev)) == ["notifications_enabled", "alert_breaking"]


def test_build_payload(make_alert):
    ev = make_alert(title="Bears TOUCHDOWN!", body="line", data={"gameId": "123", "pointsScored": 7})
    p = build_payload(ev, "app-1", NOTIFIER_CFG)
    assert p["app_id"] == "app-1"
    assert p["headings"] == {"en": "Bears TOUCHDOWN!"}
    assert p["contents"] == {"en": "line"}
    assert p["data"] == {"type": "SCORE_CHANGE", "team": "bears", "gameId": "123", "pointsScored": 7}
    assert p["priority"] == 10
    assert p["ttl"] == 3600
    assert p["android_channel_id"] == "game-channel-id"
    assert p["android_accent_color"] == "FFC83803"

    news = make_alert(type_="INJURY", game_id=None, priority="normal", data={"link": "https://x"})
    p = build_payload(news, "app-1", NOTIFIER_CFG)
    assert p["priority"] == 5
    assert "gameId" not in p["data"]
    assert p["android_channel_id"] == "news-channel-id"


# ---------- OneSignal adapter ----------

def onesignal_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_onesignal_success(make_alert):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "n-1", "recipients": 3})

    async with onesignal_client(handler) as client:
        adapter = _OneSignalAdapter("app-1", "secret", NOTIFIER_CFG, client=client)
        result = await adapter.send(make_alert())

    assert result.ok
    assert str(seen[0].url) == ONESIGNAL_URL
    assert seen[0].headers["Authorization"] == "Basic secret"
    body = json.loads(seen[0].content)
    assert body["app_id"] == "app-1"


@pytest.mark.asyncio
async def test_onesignal_error_list_is_failure(make_alert):
    def handler(request):
        return httpx.Response(200, json={"errors": ["All included players are not subscribed"]})

    async with onesignal_client(handler) as client:
        result = await _OneSignalAdapter("app-1", "k", NOTIFIER_CFG, client=client).send(make_alert())
    assert not result.ok
    assert "not subscribed" in result.error


@pytest.mark.asyncio
async def test_onesignal_http_error_is_failure(make_alert):
    def handler(request):
        return httpx.Response(400, text="bad request")

    async with onesignal_client(handler) as client:
        result = await _OneSignalAdapter("app-1", "k", NOTIFIER_CFG, client=client).send(make_alert())
    assert not result.ok
    assert result.error.startswith("http 400")


@pytest.mark.asyncio
async def test_onesignal_retries_server_errors(make_alert):
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"id": "n-2"})

    cfg = {**NOTIFIER_CFG, "retry": {"max_times": 2, "backoff_sec": 0}}
    async with onesignal_client(handler) as client:
        result = await _OneSignalAdapter("app-1", "k", cfg, client=client).send(make_alert())
    assert result.ok
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_onesignal_transport_error(make_alert):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    async with onesignal_client(handler) as client:
        result = await _OneSignalAdapter("app-1", "k", NOTIFIER_CFG, client=client).send(make_alert())
    assert not result.ok


# ---------- dispatcher ----------

@pytest.mark.asyncio
async def test_failed_send_does_not_abort_batch(make_alert, make_adapter):
    adapter = make_adapter(results=[SendResult(ok=False, error="boom"), SendResult(ok=True)])
    d = NotificationDispatcher(NOTIFIER_CFG, adapter=adapter)
    outcomes = await d.send([make_alert(game_id="1"), make_alert(game_id="2")])
    assert [o.result.ok for o in outcomes] == [False, True]
    assert len(adapter.sent) == 2


@pytest.mark.asyncio
async def test_raising_adapter_is_contained(make_alert):
    class Exploding:
        async def send(self, event):
            raise RuntimeError("provider sdk bug")

        async def close(self):
            pass

    d = NotificationDispatcher(NOTIFIER_CFG, adapter=Exploding())
    outcomes = await d.send([make_alert(game_id="1"), make_alert(game_id="2")])
    assert [o.result.ok for o in outcomes] == [False, False]


def test_falls_back_to_stdout_without_credentials(monkeypatch):
    monkeypatch.delenv("ONESIGNAL_APP_ID", raising=False)
    monkeypatch.delenv("ONESIGNAL_REST_API_KEY", raising=False)
    assert NotificationDispatcher({"notifier": NOTIFIER_CFG}).channel == "stdout"


def test_uses_onesignal_with_credentials(monkeypatch):
    monkeypatch.setenv("ONESIGNAL_APP_ID", "app-1")
    monkeypatch.setenv("ONESIGNAL_REST_API_KEY", "k")
    assert NotificationDispatcher(NOTIFIER_CFG).channel == "onesignal"


@pytest.mark.asyncio
async def test_stdout_adapter_reports_success(monkeypatch, make_alert):
    monkeypatch.delenv("ONESIGNAL_APP_ID", raising=False)
    d = NotificationDispatcher({**NOTIFIER_CFG, "notify_channels": []})
    outcomes = await d.send([make_alert()])
    assert outcomes[0].result.ok
    await d.close()
