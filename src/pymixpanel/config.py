"""Tracker configuration for pymixpanel."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pymixpanel._constants import API_HOST, API_SCHEME, DEFAULT_LIFETIME, DEFAULT_TIMEOUT, TRACK_PATH
from pymixpanel.exceptions import MixpanelConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, value: str, cast: type[int] | type[float]) -> int | float:
    try:
        return cast(value)
    except ValueError as exc:
        raise MixpanelConfigError(f"{env_key} must be a number, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class MixpanelConfig:
    """Tracker configuration.

    Parameters
    ----------
    token : str or None
        Project token. Events are not sent until a token is available,
        either here or through :attr:`MixpanelTracker.token`.
    api_host : str
        Host of the collection endpoint.
    api_scheme : str
        ``"https"`` or ``"http"``.
    trust_proxy : bool
        Read the client IP from ``X-Forwarded-For`` when present.
    track_campaign : bool
        Register-once any ``utm_*`` parameters found in the request query.
    store_referrer : bool
        Register-once the initial referrer and referring domain.
    test : bool
        Tag dispatched events with ``test=1``.
    timeout : float
        Connect/read timeout in seconds for a single dispatch.
    cookie_lifetime : int
        Seconds the persisted state remains valid.
    cross_subdomain_cookie : bool
        Scope the state cookie to the parent domain of the request host.
    cookie_domain : str or None
        Explicit cookie domain, overriding host-based detection.
    cookie_path : str
        Path the state cookie is valid for.
    """

    token: str | None = None
    api_host: str = API_HOST
    api_scheme: str = API_SCHEME
    trust_proxy: bool = False
    track_campaign: bool = True
    store_referrer: bool = True
    test: bool = False
    timeout: float = DEFAULT_TIMEOUT
    cookie_lifetime: int = DEFAULT_LIFETIME
    cross_subdomain_cookie: bool = True
    cookie_domain: str | None = None
    cookie_path: str = "/"

    @property
    def track_url(self) -> str:
        """Base URL of the track endpoint (without query string)."""
        return f"{self.api_scheme}://{self.api_host}{TRACK_PATH}"

    @classmethod
    def from_env(cls, **overrides: Any) -> MixpanelConfig:
        """Create configuration from environment variables.

        Reads ``MIXPANEL_TOKEN`` and optional ``MIXPANEL_*`` variables.
        Explicit keyword arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        MixpanelConfig
            Populated configuration.

        Raises
        ------
        MixpanelConfigError
            If a numeric variable cannot be parsed.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "MIXPANEL_TOKEN": "token",
            "MIXPANEL_API_HOST": "api_host",
            "MIXPANEL_API_SCHEME": "api_scheme",
            "MIXPANEL_COOKIE_DOMAIN": "cookie_domain",
            "MIXPANEL_COOKIE_PATH": "cookie_path",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_BOOL_MAP = {
            "MIXPANEL_TRUST_PROXY": ("trust_proxy", False),
            "MIXPANEL_TRACK_CAMPAIGN": ("track_campaign", True),
            "MIXPANEL_STORE_REFERRER": ("store_referrer", True),
            "MIXPANEL_TEST": ("test", False),
            "MIXPANEL_CROSS_SUBDOMAIN_COOKIE": ("cross_subdomain_cookie", True),
        }
        for env_key, (field_name, default) in _ENV_BOOL_MAP.items():
            if field_name not in overrides:
                config_kwargs[field_name] = _env_bool(env.get(env_key), default)

        # numeric values, handle separately
        timeout_env = env.get("MIXPANEL_TIMEOUT")
        if timeout_env is not None and "timeout" not in overrides:
            config_kwargs["timeout"] = _env_number("MIXPANEL_TIMEOUT", timeout_env, float)

        lifetime_env = env.get("MIXPANEL_COOKIE_LIFETIME")
        if lifetime_env is not None and "cookie_lifetime" not in overrides:
            config_kwargs["cookie_lifetime"] = _env_number("MIXPANEL_COOKIE_LIFETIME", lifetime_env, int)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
