"""Explicit per-request context.

Everything the tracker needs from the inbound request (client address,
headers, cookies, query string, URL parts) is carried by a
:class:`RequestContext` value instead of being read from ambient globals.
"""

from __future__ import annotations

from collections.abc import Mapping
from http.cookies import CookieError, SimpleCookie
from typing import Any
from urllib.parse import parse_qsl, urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _parse_cookie_header(header: str) -> dict[str, str]:
    cookie: SimpleCookie = SimpleCookie()
    try:
        cookie.load(header)
    except CookieError:
        return {}
    return {key: morsel.value for key, morsel in cookie.items()}


class RequestContext(BaseModel):
    """Snapshot of the inbound request a tracker works on behalf of.

    Parameters
    ----------
    remote_addr : str
        Address of the directly connected peer.
    headers : dict
        Request headers. Names are stored lower-cased.
    cookies : dict
        Inbound cookies. Parsed from the ``Cookie`` header when omitted.
    query : dict
        Query-string parameters of the current request. Parsed from
        ``path`` when omitted.
    scheme : str
        ``"http"`` or ``"https"``.
    server_name : str or None
        Server name to fall back on when no ``Host`` header is present.
    server_port : int or None
        Server port, appended to rebuilt URLs when non-default.
    path : str
        Request URI (path plus query string).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    remote_addr: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    cookies: dict[str, str] = Field(default_factory=dict)
    query: dict[str, str] = Field(default_factory=dict)
    scheme: str = "http"
    server_name: str | None = None
    server_port: int | None = None
    path: str = "/"

    @field_validator("headers", mode="before")
    @classmethod
    def _lower_header_names(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return {str(k).lower(): v for k, v in value.items()}
        return value

    @model_validator(mode="before")
    @classmethod
    def _derive_cookies_and_query(cls, values: Any) -> Any:
        """Fill ``cookies`` and ``query`` from raw request data when omitted."""
        if not isinstance(values, dict):
            return values
        working = dict(values)
        if "cookies" not in working:
            headers = working.get("headers") or {}
            raw = next((v for k, v in headers.items() if str(k).lower() == "cookie"), None)
            if raw:
                working["cookies"] = _parse_cookie_header(raw)
        if "query" not in working and "path" in working:
            working["query"] = dict(parse_qsl(urlsplit(str(working["path"])).query))
        return working

    @classmethod
    def from_wsgi_environ(cls, environ: Mapping[str, Any]) -> RequestContext:
        """Build a context from a WSGI ``environ`` mapping."""
        headers: dict[str, str] = {}
        for key, value in environ.items():
            if key.startswith("HTTP_"):
                headers[key[5:].replace("_", "-").lower()] = str(value)
        for key in ("CONTENT_TYPE", "CONTENT_LENGTH"):
            if environ.get(key):
                headers[key.replace("_", "-").lower()] = str(environ[key])

        path = str(environ.get("PATH_INFO") or "/")
        query_string = str(environ.get("QUERY_STRING") or "")
        if query_string:
            path = f"{path}?{query_string}"

        port = environ.get("SERVER_PORT")
        return cls(
            remote_addr=str(environ.get("REMOTE_ADDR") or ""),
            headers=headers,
            scheme=str(environ.get("wsgi.url_scheme") or "http"),
            server_name=environ.get("SERVER_NAME"),
            server_port=int(port) if port else None,
            path=path,
        )

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    @property
    def user_agent(self) -> str:
        return self.header("user-agent") or ""

    @property
    def referrer(self) -> str:
        return self.header("referer") or ""

    @property
    def host(self) -> str | None:
        """``Host`` header, falling back to the server name."""
        return self.header("host") or self.server_name or None

    def client_ip(self, trust_proxy: bool = False) -> str:
        """Return the client IP, honouring ``X-Forwarded-For`` only when trusted."""
        if trust_proxy:
            forwarded = self.header("x-forwarded-for")
            if forwarded:
                first = forwarded.split(",")[0].strip()
                if first:
                    return first
        return self.remote_addr

    def current_url(self, path: str | None = None) -> str:
        """Absolute URL of ``path`` (default: the current request URI) on this host."""
        target = self.path if path is None else path
        if not target.startswith("/"):
            target = f"/{target}"

        host = self.header("host")
        if not host:
            host = self.server_name or "localhost"
            default_port = 443 if self.scheme == "https" else 80
            if self.server_port and self.server_port != default_port:
                host = f"{host}:{self.server_port}"
        return f"{self.scheme}://{host}{target}"
