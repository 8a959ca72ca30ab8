"""Cookie-backed state store.

State is read from the inbound request cookie and written back as a
``Set-Cookie`` entry on a response header list of ``(name, value)`` tuples
(the WSGI ``start_response`` shape). The cookie name matches the one the
Mixpanel browser client uses, so server and browser share the same state.
"""

from __future__ import annotations

import json
import logging
import re
from http.cookies import SimpleCookie
from typing import Any
from urllib.parse import quote, unquote

from pymixpanel._constants import DEFAULT_LIFETIME
from pymixpanel.context import RequestContext
from pymixpanel.storage.base import StorageBase

_logger = logging.getLogger(__name__)

# Same expression as the browser client. It yields ".tech.vg.no" rather than
# ".vg.no" for "tech.vg.no"; both sides must agree or visitors get two cookies.
_COOKIE_DOMAIN_RE = re.compile(r"[a-z0-9][a-z0-9\-]+\.[a-z\.]{2,6}$", re.IGNORECASE)

HeaderList = list[tuple[str, str]]


class CookieStorage(StorageBase):
    """State store persisted in a first-party cookie.

    Parameters
    ----------
    context : RequestContext
        Inbound request; supplies the cookie and the host name.
    response_headers : list of (str, str) or None
        Outbound headers to append ``Set-Cookie`` to. A private list is
        used when omitted; read it back through :attr:`response_headers`.
    project_token : str or None
        Project token; the cookie is named after it.
    cross_subdomain : bool
        Scope the cookie to the parent domain of the request host.
    cookie_domain : str or None
        Explicit cookie domain, overriding host-based detection.
    cookie_path : str
        Path the cookie is valid for.
    lifetime : int
        Seconds until the cookie expires.
    """

    def __init__(
        self,
        context: RequestContext,
        response_headers: HeaderList | None = None,
        *,
        project_token: str | None = None,
        cross_subdomain: bool = True,
        cookie_domain: str | None = None,
        cookie_path: str = "/",
        lifetime: int = DEFAULT_LIFETIME,
    ) -> None:
        super().__init__(project_token, lifetime=lifetime)
        self._context = context
        self._headers: HeaderList = response_headers if response_headers is not None else []
        self._cross_subdomain = cross_subdomain
        self._cookie_domain = cookie_domain
        self.cookie_path = cookie_path

    @property
    def response_headers(self) -> HeaderList:
        return self._headers

    @property
    def cross_subdomain(self) -> bool:
        return self._cross_subdomain

    @cross_subdomain.setter
    def cross_subdomain(self, value: bool) -> None:
        self._cross_subdomain = bool(value)

    @property
    def cookie_domain(self) -> str | None:
        """Domain the cookie is set for, or ``None`` for the current host only."""
        if self._cookie_domain is not None:
            return self._cookie_domain

        if not self._cross_subdomain:
            return None

        host = self._context.host
        if not host:
            return None
        host = host.rsplit(":", 1)[0] if not host.endswith("]") else host

        match = _COOKIE_DOMAIN_RE.search(host)
        if match:
            return f".{match.group(0)}"
        return None

    @cookie_domain.setter
    def cookie_domain(self, domain: str | None) -> None:
        self._cookie_domain = domain

    def generate_storage_key(self) -> str:
        return f"mp_{self.project_token or ''}_mixpanel"

    def _load_state(self) -> dict[str, Any]:
        raw = self._context.cookies.get(self.storage_key)
        if raw is None:
            return {}
        return self._decode_state(unquote(raw), source=f"cookie {self.storage_key!r}")

    def store_state(self) -> CookieStorage:
        name = self.storage_key
        self._remove_pending_cookie(name)

        cookie: SimpleCookie = SimpleCookie()
        cookie[name] = quote(json.dumps(self._raw_state(), separators=(",", ":")), safe="")
        morsel = cookie[name]
        morsel["expires"] = self.lifetime
        morsel["path"] = self.cookie_path
        domain = self.cookie_domain
        if domain is not None:
            morsel["domain"] = domain

        self._headers.append(("Set-Cookie", morsel.OutputString()))
        _logger.debug("Queued state cookie %s", name)
        return self

    def _remove_pending_cookie(self, name: str) -> None:
        """Drop queued ``Set-Cookie`` entries for *name*, keeping everything else in order."""
        prefix = f"{name}="
        self._headers[:] = [
            (header, value)
            for header, value in self._headers
            if header.lower() != "set-cookie" or not value.startswith(prefix)
        ]
