"""Server-side event tracker."""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import urlencode, urlsplit

from pydantic import ValidationError

from pymixpanel import _referrer, _useragent
from pymixpanel._constants import (
    ALIAS_EVENT,
    ALIAS_KEY,
    DIRECT_REFERRER,
    DISTINCT_ID_KEY,
    LIB_NAME,
    NAME_TAG_KEY,
    PAGE_VIEW_EVENT,
    REGISTER_ONCE_DEFAULT,
)
from pymixpanel._redact import redact_for_log
from pymixpanel._transport import Transport, default_transports, select_transport
from pymixpanel.config import MixpanelConfig
from pymixpanel.context import RequestContext
from pymixpanel.exceptions import MixpanelConfigError, MixpanelTransportError
from pymixpanel.identity import DistinctIdGenerator, IdentityGenerator
from pymixpanel.models import EventPayload
from pymixpanel.storage.base import StateStorage
from pymixpanel.storage.cookie import CookieStorage

_logger = logging.getLogger(__name__)


def _is_meaningful(value: Any) -> bool:
    """Return True if the property should be sent.

    Only empty values are dropped; ``0`` and ``False`` are real values and kept.
    """
    if value is None:
        return False
    if value == "":
        return False
    if value == []:
        return False
    return bool(value != {})


def _is_routable(ip: str) -> bool:
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return not address.is_loopback


class MixpanelTracker:
    """Tracks events for one request on behalf of one visitor.

    Usage::

        tracker = MixpanelTracker(MixpanelConfig(token="..."), RequestContext.from_wsgi_environ(environ))
        await tracker.track("Signed up", {"plan": "pro"})
        start_response("200 OK", headers + tracker.response_headers)

    Per-visitor state (distinct ID, super properties) lives in a
    :class:`~pymixpanel.storage.StateStorage`. By default that is a
    :class:`~pymixpanel.storage.CookieStorage` writing ``Set-Cookie``
    entries to :attr:`response_headers`.
    """

    def __init__(
        self,
        config: MixpanelConfig | None = None,
        context: RequestContext | None = None,
        *,
        storage: StateStorage | None = None,
        generator: IdentityGenerator | None = None,
        transports: Sequence[Transport] | None = None,
        response_headers: list[tuple[str, str]] | None = None,
    ) -> None:
        self._config = config or MixpanelConfig()
        self._context = context or RequestContext()
        self._token = self._config.token
        self._trust_proxy = self._config.trust_proxy
        self._distinct_id: str | None = None
        self._client_ip: str | None = None
        self._client_user_agent: str | None = None
        self._response_headers: list[tuple[str, str]] = response_headers if response_headers is not None else []
        self._storage: StateStorage | None = None
        self._generator = generator
        self._transports: list[Transport] | None = None
        self._transport: Transport | None = None
        if storage is not None:
            self.set_storage(storage)
        if transports is not None:
            self.set_transports(transports)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def config(self) -> MixpanelConfig:
        return self._config

    @property
    def token(self) -> str | None:
        """Project token; required before anything is tracked."""
        return self._token

    @token.setter
    def token(self, token: str | None) -> None:
        self._token = token
        if self._storage is not None:
            self._storage.project_token = token

    @property
    def trust_proxy(self) -> bool:
        return self._trust_proxy

    @trust_proxy.setter
    def trust_proxy(self, value: bool) -> None:
        self._trust_proxy = bool(value)

    @property
    def client_ip(self) -> str:
        if self._client_ip is not None:
            return self._client_ip
        return self._context.client_ip(self._trust_proxy)

    @client_ip.setter
    def client_ip(self, ip: str | None) -> None:
        self._client_ip = ip

    @property
    def client_user_agent(self) -> str:
        if self._client_user_agent is not None:
            return self._client_user_agent
        return self._context.user_agent

    @client_user_agent.setter
    def client_user_agent(self, user_agent: str | None) -> None:
        self._client_user_agent = user_agent

    @property
    def response_headers(self) -> list[tuple[str, str]]:
        """Headers the default cookie store queued for the response."""
        return self._response_headers

    @property
    def storage(self) -> StateStorage:
        if self._storage is None:
            self._storage = CookieStorage(
                self._context,
                self._response_headers,
                project_token=self._token,
                cross_subdomain=self._config.cross_subdomain_cookie,
                cookie_domain=self._config.cookie_domain,
                cookie_path=self._config.cookie_path,
                lifetime=self._config.cookie_lifetime,
            )
        return self._storage

    def set_storage(self, storage: StateStorage) -> MixpanelTracker:
        if self._token is not None:
            storage.project_token = self._token
        self._storage = storage
        return self

    @property
    def generator(self) -> IdentityGenerator:
        if self._generator is None:
            self._generator = DistinctIdGenerator()
        return self._generator

    def set_generator(self, generator: IdentityGenerator) -> MixpanelTracker:
        self._generator = generator
        return self

    def set_transports(self, transports: Sequence[Transport]) -> MixpanelTracker:
        """Set the transports to try, in order of preference.

        Raises
        ------
        MixpanelConfigError
            If an entry does not provide ``is_supported`` and ``request``.
        """
        checked: list[Transport] = []
        for transport in transports:
            if not isinstance(transport, Transport):
                raise MixpanelConfigError(f"Not a transport: {transport!r}")
            checked.append(transport)
        self._transports = checked
        self._transport = None
        return self

    def get_transport(self) -> Transport | None:
        """First supported transport, or ``None`` when none can run here."""
        if self._transport is None:
            if self._transports is None:
                self._transports = default_transports(self._config.timeout)
            self._transport = select_transport(self._transports)
        return self._transport

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def identify(self, distinct_id: str) -> MixpanelTracker:
        """Use *distinct_id* for this visitor from now on."""
        self._distinct_id = distinct_id
        self.storage.set_user_key(distinct_id)
        return self

    def get_distinct_id(self, create_if_absent: bool = True) -> str | None:
        """Resolve the visitor's distinct ID.

        Explicit :meth:`identify` wins over the stored ID. When neither
        exists a new anonymous ID is generated and persisted, unless
        *create_if_absent* is false, in which case ``None`` is returned.
        """
        if self._distinct_id is not None:
            return self._distinct_id

        stored = self.storage.get(DISTINCT_ID_KEY)
        if stored:
            return str(stored)

        if not create_if_absent:
            return None

        distinct_id = self.generator.generate(self.client_user_agent, self.client_ip)
        _logger.debug("Generated distinct id %s", distinct_id)
        self.identify(distinct_id)
        return distinct_id

    async def alias(self, alias: str) -> bool:
        """Ask Mixpanel to treat *alias* as the current distinct ID.

        Only possible once the visitor already has a distinct ID; a new
        anonymous one is never created for this.
        """
        distinct_id = self.get_distinct_id(create_if_absent=False)
        if distinct_id is None:
            _logger.debug("Not aliasing %r: no distinct id to alias", alias)
            return False
        if alias == distinct_id:
            _logger.warning("Not aliasing %r: alias matches the current distinct id", alias)
            return False

        if not await self.track(ALIAS_EVENT, {"alias": alias, "distinct_id": distinct_id}):
            return False
        self.storage.set(ALIAS_KEY, alias)
        return True

    # ------------------------------------------------------------------
    # Super properties
    # ------------------------------------------------------------------

    def register(self, properties: Mapping[str, Any]) -> MixpanelTracker:
        """Persist *properties* and send them with every future event."""
        for key, value in properties.items():
            self.storage.set(key, value)
        return self

    def register_once(
        self,
        properties: Mapping[str, Any],
        default: Any = REGISTER_ONCE_DEFAULT,
    ) -> MixpanelTracker:
        """Like :meth:`register`, but never overwrites a value already set."""
        for key, value in properties.items():
            self.storage.add(key, value, default)
        return self

    def unregister(self, key: str) -> MixpanelTracker:
        self.storage.delete(key)
        return self

    def get_property(self, key: str, default: Any = None) -> Any:
        return self.storage.get(key, default)

    def name_tag(self, name: str) -> MixpanelTracker:
        """Attach a human-readable label to the visitor."""
        return self.register({NAME_TAG_KEY: name})

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    async def track(self, event: str, properties: Mapping[str, Any] | None = None) -> bool:
        """Send *event* with *properties*.

        Returns ``True`` once the request has been dispatched, ``False`` when
        the event was dropped (bot user agent, no token, no transport,
        network failure). Never raises for these conditions.
        """
        explicit = dict(properties or {})
        user_agent = self.client_user_agent

        if _useragent.is_blocked(user_agent):
            _logger.debug("Not tracking %r: blocked user agent", event)
            return False
        if not self._token and not explicit.get("token"):
            _logger.debug("Not tracking %r: no project token", event)
            return False

        try:
            self._update_acquisition()
        except Exception:
            _logger.debug("Updating acquisition properties failed", exc_info=True)

        props: dict[str, Any] = {
            **self.storage.get_state(),
            **self._default_properties(user_agent),
            **explicit,
        }

        if not props.get("token"):
            props["token"] = self._token

        if "ip" not in props:
            ip = self.client_ip
            if _is_routable(ip):
                props["ip"] = ip

        if "distinct_id" not in explicit:
            props["distinct_id"] = self.get_distinct_id()

        props = {key: value for key, value in props.items() if _is_meaningful(value)}

        try:
            payload = EventPayload(event=event, properties=props)
        except ValidationError as exc:
            _logger.warning("Not tracking %r: %s", event, exc)
            return False

        _logger.debug("Tracking %s %s", event, redact_for_log(props))
        return await self._dispatch(payload)

    async def track_page_view(self, page_url: str | None = None) -> bool:
        """Track a ``mp_page_view`` event for *page_url* (default: current URL)."""
        return await self.track(PAGE_VIEW_EVENT, {"mp_page": self._absolute_url(page_url)})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _absolute_url(self, page_url: str | None) -> str:
        if page_url:
            parts = urlsplit(page_url)
            if parts.scheme:
                return page_url
            if parts.netloc:
                return f"{self._context.scheme}:{page_url}"
        return self._context.current_url(page_url or None)

    def _default_properties(self, user_agent: str) -> dict[str, Any]:
        return {
            "$os": _useragent.operating_system(user_agent),
            "$browser": _useragent.browser(user_agent),
            "$device": _useragent.device(user_agent),
            "mp_lib": LIB_NAME,
        }

    def _update_acquisition(self) -> None:
        """Register search, campaign and referrer super properties for this request."""
        referrer = self._context.referrer

        search = _referrer.search_properties(referrer)
        if search:
            self.register(search)

        if self._config.track_campaign:
            campaign = _referrer.campaign_params(self._context.query)
            if campaign:
                self.register_once(campaign)

        if self._config.store_referrer:
            self.register_once(
                {
                    "$initial_referrer": referrer or DIRECT_REFERRER,
                    "$initial_referring_domain": _referrer.referring_domain(referrer) or DIRECT_REFERRER,
                },
                default="",
            )

    def _build_url(self, payload: EventPayload) -> str:
        params = {"data": payload.encode()}
        if self._config.test:
            params["test"] = "1"
        return f"{self._config.track_url}?{urlencode(params)}"

    async def _dispatch(self, payload: EventPayload) -> bool:
        transport = self.get_transport()
        if transport is None:
            _logger.warning("No supported transport, dropping %r", payload.event)
            return False

        url = self._build_url(payload)
        try:
            result = await transport.request(url)
        except MixpanelTransportError as exc:
            _logger.debug("Dispatch of %r failed: %s", payload.event, exc)
            return False
        except Exception:
            _logger.warning("Transport %r raised while dispatching %r", transport, payload.event, exc_info=True)
            return False
        return bool(result)
