from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, quote, urlsplit

import pytest

from pymixpanel.config import MixpanelConfig
from pymixpanel.context import RequestContext
from pymixpanel.exceptions import MixpanelConfigError, MixpanelTransportError
from pymixpanel.models import EventPayload
from pymixpanel.storage import MemoryStorage
from pymixpanel.tracker import MixpanelTracker

_CHROME = "Mozilla/5.0 (Windows NT 6.1; WOW64) AppleWebKit/537.17 Chrome/24.0.1312.60 Safari/537.17"
_GOOGLEBOT = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"


@dataclass
class FakeTransport:
    supported: bool = True
    result: bool = True
    error: Exception | None = None
    urls: list[str] = field(default_factory=list)

    def is_supported(self) -> bool:
        return self.supported

    async def request(self, url: str, want_response_body: bool = False) -> bool | str:
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return self.result


@dataclass
class FixedGenerator:
    distinct_id: str = "generated-id"
    calls: int = 0

    def generate(self, user_agent: str, client_ip: str) -> str:
        self.calls += 1
        return self.distinct_id


def _context(**overrides: Any) -> RequestContext:
    values: dict[str, Any] = {
        "remote_addr": "203.0.113.7",
        "headers": {"Host": "www.example.com", "User-Agent": _CHROME},
        "scheme": "https",
        "path": "/",
    }
    values.update(overrides)
    return RequestContext(**values)


def _tracker(
    *,
    token: str | None = "tok",
    context: RequestContext | None = None,
    transport: FakeTransport | None = None,
    **config: Any,
) -> tuple[MixpanelTracker, FakeTransport, MemoryStorage]:
    transport = transport or FakeTransport()
    storage = MemoryStorage()
    tracker = MixpanelTracker(
        MixpanelConfig(token=token, **config),
        context or _context(),
        storage=storage,
        generator=FixedGenerator(),
        transports=[transport],
    )
    return tracker, transport, storage


def _sent(url: str) -> EventPayload:
    query = parse_qs(urlsplit(url).query)
    return EventPayload.decode(query["data"][0])


# ------------------------------------------------------------------
# Gating
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_track_without_token_sends_nothing() -> None:
    tracker, transport, _storage = _tracker(token=None)

    assert await tracker.track("Signed up") is False
    assert transport.urls == []


@pytest.mark.asyncio
async def test_track_with_token_in_properties_is_allowed() -> None:
    tracker, transport, _storage = _tracker(token=None)

    assert await tracker.track("Signed up", {"token": "inline"}) is True
    assert _sent(transport.urls[0]).properties["token"] == "inline"


@pytest.mark.asyncio
async def test_crawler_hits_are_not_tracked() -> None:
    ctx = _context(headers={"Host": "www.example.com", "User-Agent": _GOOGLEBOT})
    tracker, transport, storage = _tracker(context=ctx)

    assert await tracker.track("Page") is False
    assert transport.urls == []
    assert storage.flush_count == 0


@pytest.mark.asyncio
async def test_empty_event_name_is_rejected() -> None:
    tracker, transport, _storage = _tracker()

    assert await tracker.track("") is False
    assert transport.urls == []


# ------------------------------------------------------------------
# Payload
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_track_sends_encoded_event() -> None:
    tracker, transport, _storage = _tracker()

    assert await tracker.track("Signed up", {"plan": "pro"}) is True

    assert len(transport.urls) == 1
    assert transport.urls[0].startswith("https://api.mixpanel.com/track/?data=")
    assert "test=1" not in transport.urls[0]
    payload = _sent(transport.urls[0])
    assert payload.event == "Signed up"
    props = payload.properties
    assert props["plan"] == "pro"
    assert props["token"] == "tok"
    assert props["distinct_id"] == "generated-id"
    assert props["ip"] == "203.0.113.7"
    assert props["mp_lib"] == "python"
    assert props["$os"] == "Windows"
    assert props["$browser"] == "Chrome"
    assert "$device" not in props


@pytest.mark.asyncio
async def test_test_mode_adds_flag() -> None:
    tracker, transport, _storage = _tracker(test=True)

    await tracker.track("Signed up")

    assert parse_qs(urlsplit(transport.urls[0]).query)["test"] == ["1"]


@pytest.mark.asyncio
async def test_loopback_ip_is_not_sent() -> None:
    tracker, transport, _storage = _tracker(context=_context(remote_addr="127.0.0.1"))

    await tracker.track("Signed up")

    assert "ip" not in _sent(transport.urls[0]).properties


@pytest.mark.asyncio
async def test_forwarded_ip_used_when_proxy_trusted() -> None:
    ctx = _context(
        remote_addr="10.0.0.1",
        headers={"Host": "www.example.com", "User-Agent": _CHROME, "X-Forwarded-For": "198.51.100.4, 10.0.0.1"},
    )
    tracker, transport, _storage = _tracker(context=ctx, trust_proxy=True)

    await tracker.track("Signed up")

    assert _sent(transport.urls[0]).properties["ip"] == "198.51.100.4"


@pytest.mark.asyncio
async def test_caller_ip_and_distinct_id_win() -> None:
    tracker, transport, _storage = _tracker()

    await tracker.track("Signed up", {"ip": "192.0.2.1", "distinct_id": "caller"})

    props = _sent(transport.urls[0]).properties
    assert props["ip"] == "192.0.2.1"
    assert props["distinct_id"] == "caller"


@pytest.mark.asyncio
async def test_property_precedence_and_empty_values() -> None:
    tracker, transport, _storage = _tracker()
    tracker.register({"plan": "free", "mp_lib": "override-me", "source": "ads"})

    await tracker.track(
        "Upgraded",
        {"plan": "pro", "note": "", "tags": [], "extra": None, "count": 0, "trial": False},
    )

    props = _sent(transport.urls[0]).properties
    assert props["plan"] == "pro"
    assert props["source"] == "ads"
    assert props["mp_lib"] == "python"
    assert props["count"] == 0
    assert props["trial"] is False
    for key in ("note", "tags", "extra"):
        assert key not in props


@pytest.mark.asyncio
async def test_reserved_keys_are_never_sent() -> None:
    tracker, transport, storage = _tracker()
    storage.set("__internal", "secret")

    await tracker.track("Signed up")

    assert "__internal" not in _sent(transport.urls[0]).properties


# ------------------------------------------------------------------
# Dispatch failures
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_transport_error_returns_false() -> None:
    transport = FakeTransport(error=MixpanelTransportError("boom"))
    tracker, _transport, _storage = _tracker(transport=transport)

    assert await tracker.track("Signed up") is False
    assert len(transport.urls) == 1


@pytest.mark.asyncio
async def test_unexpected_transport_error_returns_false() -> None:
    transport = FakeTransport(error=RuntimeError("boom"))
    tracker, _transport, _storage = _tracker(transport=transport)

    assert await tracker.track("Signed up") is False


@pytest.mark.asyncio
async def test_no_supported_transport_returns_false() -> None:
    transport = FakeTransport(supported=False)
    tracker, _transport, _storage = _tracker(transport=transport)

    assert await tracker.track("Signed up") is False
    assert transport.urls == []
    assert tracker.get_transport() is None


def test_set_transports_rejects_non_transports() -> None:
    tracker, _transport, _storage = _tracker()

    with pytest.raises(MixpanelConfigError):
        tracker.set_transports([FakeTransport(), object()])  # type: ignore[list-item]


def test_get_transport_picks_first_supported() -> None:
    tracker, _transport, _storage = _tracker()
    first = FakeTransport(supported=False)
    second = FakeTransport()

    tracker.set_transports([first, second])

    assert tracker.get_transport() is second


# ------------------------------------------------------------------
# Identity
# ------------------------------------------------------------------


def test_identify_wins_over_stored_id() -> None:
    tracker, _transport, storage = _tracker()
    storage.set("distinct_id", "stored")

    tracker.identify("U123")

    assert tracker.get_distinct_id() == "U123"
    assert storage.get("distinct_id") == "U123"


def test_stored_id_is_reused() -> None:
    tracker, _transport, storage = _tracker()
    storage.set("distinct_id", "stored")

    assert tracker.get_distinct_id() == "stored"
    assert tracker.generator.calls == 0  # type: ignore[attr-defined]


def test_generated_id_is_persisted() -> None:
    tracker, _transport, storage = _tracker()

    assert tracker.get_distinct_id() == "generated-id"
    assert storage.get("distinct_id") == "generated-id"
    assert tracker.get_distinct_id() == "generated-id"
    assert tracker.generator.calls == 1  # type: ignore[attr-defined]


def test_get_distinct_id_without_create() -> None:
    tracker, _transport, storage = _tracker()

    assert tracker.get_distinct_id(create_if_absent=False) is None
    assert storage.flush_count == 0


@pytest.mark.asyncio
async def test_alias_without_distinct_id_sends_nothing() -> None:
    tracker, transport, _storage = _tracker()

    assert await tracker.alias("X") is False
    assert transport.urls == []


@pytest.mark.asyncio
async def test_alias_after_identify_sends_create_alias() -> None:
    tracker, transport, storage = _tracker()
    tracker.identify("U123")

    assert await tracker.alias("X") is True

    assert len(transport.urls) == 1
    payload = _sent(transport.urls[0])
    assert payload.event == "$create_alias"
    assert payload.properties["alias"] == "X"
    assert payload.properties["distinct_id"] == "U123"
    assert storage.get("__alias") == "X"
    assert "__alias" not in payload.properties


@pytest.mark.asyncio
async def test_alias_matching_distinct_id_is_refused() -> None:
    tracker, transport, _storage = _tracker()
    tracker.identify("U123")

    assert await tracker.alias("U123") is False
    assert transport.urls == []


def test_identify_with_alias_keeps_original_distinct_id() -> None:
    tracker, _transport, storage = _tracker()
    tracker.identify("U123")
    storage.set("__alias", "X")

    tracker.identify("X")

    assert storage.get("distinct_id") == "U123"


# ------------------------------------------------------------------
# Super properties
# ------------------------------------------------------------------


def test_register_once_keeps_first_value() -> None:
    tracker, _transport, _storage = _tracker()

    tracker.register_once({"plan": "free"})
    tracker.register_once({"plan": "pro"})

    assert tracker.get_property("plan") == "free"


def test_register_once_replaces_default() -> None:
    tracker, _transport, _storage = _tracker()
    tracker.register({"plan": "None"})

    tracker.register_once({"plan": "pro"})

    assert tracker.get_property("plan") == "pro"


def test_unregister_and_name_tag() -> None:
    tracker, _transport, _storage = _tracker()
    tracker.register({"plan": "pro"})

    tracker.unregister("plan").name_tag("Ada")

    assert tracker.get_property("plan") is None
    assert tracker.get_property("mp_name_tag") == "Ada"


# ------------------------------------------------------------------
# Acquisition
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_search_referrer_registers_engine_and_keyword() -> None:
    ctx = _context(
        headers={
            "Host": "www.example.com",
            "User-Agent": _CHROME,
            "Referer": "https://www.google.com/search?q=server+analytics",
        }
    )
    tracker, transport, storage = _tracker(context=ctx)

    await tracker.track("Landing")

    assert storage.get("$search_engine") == "google"
    assert storage.get("mp_keyword") == "server analytics"
    props = _sent(transport.urls[0]).properties
    assert props["$search_engine"] == "google"
    assert props["$initial_referrer"] == "https://www.google.com/search?q=server+analytics"
    assert props["$initial_referring_domain"] == "www.google.com"


@pytest.mark.asyncio
async def test_direct_visit_records_direct_referrer() -> None:
    tracker, transport, _storage = _tracker()

    await tracker.track("Landing")

    props = _sent(transport.urls[0]).properties
    assert props["$initial_referrer"] == "$direct"
    assert props["$initial_referring_domain"] == "$direct"


@pytest.mark.asyncio
async def test_referrer_not_stored_when_disabled() -> None:
    tracker, transport, storage = _tracker(store_referrer=False)

    await tracker.track("Landing")

    assert storage.get("$initial_referrer") is None
    assert "$initial_referrer" not in _sent(transport.urls[0]).properties


@pytest.mark.asyncio
async def test_campaign_parameters_are_registered_once() -> None:
    tracker, transport, storage = _tracker(context=_context(path="/?utm_source=newsletter&utm_campaign=spring"))
    storage.set("utm_campaign", "winter")

    await tracker.track("Landing")

    assert storage.get("utm_source") == "newsletter"
    assert storage.get("utm_campaign") == "winter"
    assert _sent(transport.urls[0]).properties["utm_source"] == "newsletter"


@pytest.mark.asyncio
async def test_campaign_tracking_can_be_disabled() -> None:
    tracker, _transport, storage = _tracker(
        context=_context(path="/?utm_source=newsletter"),
        track_campaign=False,
    )

    await tracker.track("Landing")

    assert storage.get("utm_source") is None


# ------------------------------------------------------------------
# Page views
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_page_view_absolute_url_sent_verbatim() -> None:
    tracker, transport, _storage = _tracker()

    await tracker.track_page_view("http://other.example.org/a?b=c")

    payload = _sent(transport.urls[0])
    assert payload.event == "mp_page_view"
    assert payload.properties["mp_page"] == "http://other.example.org/a?b=c"


@pytest.mark.asyncio
async def test_page_view_relative_url_is_resolved() -> None:
    tracker, transport, _storage = _tracker()

    await tracker.track_page_view("/pricing?plan=pro")
    await tracker.track_page_view("//cdn.example.com/x")

    assert _sent(transport.urls[0]).properties["mp_page"] == "https://www.example.com/pricing?plan=pro"
    assert _sent(transport.urls[1]).properties["mp_page"] == "https://cdn.example.com/x"


@pytest.mark.asyncio
async def test_page_view_defaults_to_current_url() -> None:
    tracker, transport, _storage = _tracker(context=_context(path="/docs?page=2"))

    await tracker.track_page_view()

    assert _sent(transport.urls[0]).properties["mp_page"] == "https://www.example.com/docs?page=2"


# ------------------------------------------------------------------
# Default storage
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_default_storage_writes_state_cookie() -> None:
    transport = FakeTransport()
    tracker = MixpanelTracker(
        MixpanelConfig(token="tok"),
        _context(),
        generator=FixedGenerator(),
        transports=[transport],
    )

    await tracker.track("Signed up")

    cookies = [v for h, v in tracker.response_headers if h == "Set-Cookie"]
    assert len(cookies) == 1
    assert cookies[0].startswith("mp_tok_mixpanel=")
    assert "Domain=.example.com" in cookies[0]


def test_token_change_is_applied_to_storage() -> None:
    tracker, _transport, storage = _tracker()
    assert storage.project_token == "tok"

    tracker.token = "other"

    assert storage.project_token == "other"


# ------------------------------------------------------------------
# Dropped aliases and corrupt state
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_alias_from_crawler_leaves_no_alias_marker() -> None:
    ctx = _context(headers={"Host": "www.example.com", "User-Agent": _GOOGLEBOT})
    tracker, transport, storage = _tracker(context=ctx)
    tracker.identify("U1")

    assert await tracker.alias("X") is False

    assert transport.urls == []
    assert storage.get("__alias") is None
    tracker.identify("X")
    assert storage.get("distinct_id") == "X"


@pytest.mark.asyncio
async def test_alias_without_token_leaves_no_alias_marker() -> None:
    tracker, transport, storage = _tracker(token=None)
    tracker.identify("U1")

    assert await tracker.alias("X") is False

    assert transport.urls == []
    assert storage.get("__alias") is None


@pytest.mark.asyncio
async def test_alias_with_failed_dispatch_leaves_no_alias_marker() -> None:
    transport = FakeTransport(error=MixpanelTransportError("boom"))
    tracker, _transport, storage = _tracker(transport=transport)
    tracker.identify("U1")

    assert await tracker.alias("X") is False

    assert len(transport.urls) == 1
    assert storage.get("__alias") is None


@pytest.mark.asyncio
async def test_track_survives_deeply_nested_state_cookie() -> None:
    raw = quote("[" * 4000, safe="")
    ctx = _context(
        headers={"Host": "www.example.com", "User-Agent": _CHROME, "Cookie": f"mp_tok_mixpanel={raw}"},
    )
    transport = FakeTransport()
    tracker = MixpanelTracker(
        MixpanelConfig(token="tok"),
        ctx,
        generator=FixedGenerator(),
        transports=[transport],
    )

    assert await tracker.track("Signed up") is True
    assert _sent(transport.urls[0]).properties["distinct_id"] == "generated-id"
