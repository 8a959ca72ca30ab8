"""Custom exception hierarchy for pymixpanel.

Only misconfiguration is allowed to escape the public API. Transport
failures are raised inside transports and absorbed by the tracker.
"""

from __future__ import annotations


class MixpanelError(Exception):
    """Base exception for all pymixpanel errors."""


class MixpanelConfigError(MixpanelError):
    """Invalid or missing configuration (e.g. an unusable transport list)."""


class MixpanelTransportError(MixpanelError):
    """HTTP-level failure (network, timeout, non-2xx, missing binary)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str = "",
    ) -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(message)
