"""HTTP transports for dispatching tracking requests.

A transport only has to answer two questions: can it run here, and can it
GET a URL within a short timeout. The tracker walks an ordered list of
transports and uses the first supported one.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

import aiohttp

from pymixpanel._constants import DEFAULT_TIMEOUT
from pymixpanel.exceptions import MixpanelTransportError

_logger = logging.getLogger(__name__)


@runtime_checkable
class Transport(Protocol):
    """Structural transport interface used by the tracker.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementations concrete.
    """

    def is_supported(self) -> bool:
        ...

    async def request(self, url: str, want_response_body: bool = False) -> bool | str:
        ...


class AiohttpTransport:
    """Transport backed by :mod:`aiohttp`.

    Pass a long-lived ``aiohttp.ClientSession`` to reuse connections;
    otherwise a short-lived session is opened per request.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout, connect=timeout, sock_read=timeout)

    def is_supported(self) -> bool:
        return self._session is None or not self._session.closed

    async def request(self, url: str, want_response_body: bool = False) -> bool | str:
        _logger.debug("GET %s", url.split("?", 1)[0])
        try:
            if self._session is not None:
                return await self._get(self._session, url, want_response_body)
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                return await self._get(session, url, want_response_body)
        except MixpanelTransportError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise MixpanelTransportError(f"Request to {url.split('?', 1)[0]} failed: {exc!r}", url=url) from exc

    async def _get(self, session: aiohttp.ClientSession, url: str, want_response_body: bool) -> bool | str:
        async with session.get(url, timeout=self._timeout) as resp:
            text = await resp.text() if want_response_body else ""
            if resp.status >= 400:
                raise MixpanelTransportError(
                    f"HTTP {resp.status} from {url.split('?', 1)[0]}",
                    status_code=resp.status,
                    url=url,
                )
        return text if want_response_body else True


class CurlCliTransport:
    """Transport that shells out to the ``curl`` binary."""

    def __init__(self, *, timeout: float = DEFAULT_TIMEOUT, binary: str = "curl") -> None:
        self._timeout = timeout
        self._binary = binary

    def is_supported(self) -> bool:
        return shutil.which(self._binary) is not None

    async def request(self, url: str, want_response_body: bool = False) -> bool | str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self._binary,
                "--silent",
                "--max-time",
                str(self._timeout),
                url,
                stdout=asyncio.subprocess.PIPE if want_response_body else asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            raise MixpanelTransportError(f"Could not run {self._binary}: {exc}", url=url) from exc

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self._timeout + 1.0)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise MixpanelTransportError(f"{self._binary} timed out", url=url) from exc

        if proc.returncode != 0:
            raise MixpanelTransportError(f"{self._binary} exited with {proc.returncode}", url=url)
        if want_response_body:
            return (stdout or b"").decode("utf-8", errors="replace")
        return True


def default_transports(timeout: float = DEFAULT_TIMEOUT) -> list[Transport]:
    """Preferred transports, best first."""
    return [AiohttpTransport(timeout=timeout), CurlCliTransport(timeout=timeout)]


def select_transport(transports: Sequence[Transport]) -> Transport | None:
    """Return the first transport that reports itself supported."""
    for transport in transports:
        if transport.is_supported():
            return transport
    return None
