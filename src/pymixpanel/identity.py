"""Anonymous distinct-ID generation.

IDs are built from the same entropy sources the Mixpanel browser client
uses, with the client IP standing in for screen resolution:

    <ticks>-<random>-<user agent>-<ip>-<ticks>

The result is "practically unique per agent", not a standards-compliant
or cryptographically strong UUID. The segment encodings are kept
bit-compatible so IDs minted here look like the ones already stored in
visitors' cookies.
"""

from __future__ import annotations

import re
import secrets
import time
import zlib
from collections.abc import Callable
from typing import Protocol

#: Upper bound of the random segment.
_RANDOM_MAX = 2**31 - 1

_IP_SEPARATORS = re.compile(r"[:.]")


def _subsecond_ms() -> int:
    """Milliseconds elapsed within the current second, rounded (0 to 1000)."""
    return round((time.time_ns() % 1_000_000_000) / 1_000_000)


class IdentityGenerator(Protocol):
    """Structural interface for distinct-ID generators."""

    def generate(self, user_agent: str, client_ip: str) -> str:
        ...


class DistinctIdGenerator:
    """Default :class:`IdentityGenerator` implementation."""

    def __init__(self, *, clock: Callable[[], int] = _subsecond_ms) -> None:
        self._clock = clock

    def generate(self, user_agent: str, client_ip: str) -> str:
        return "-".join(
            (
                self.ticks_entropy(),
                self.random_entropy(),
                self.user_agent_entropy(user_agent or ""),
                self.ip_entropy(client_ip or ""),
                self.ticks_entropy(),
            )
        )

    def ticks_entropy(self) -> str:
        """Sub-second millisecond reading followed by how many loop ticks it lasted."""
        start = self._clock()
        ticks = 0
        while start == self._clock():
            ticks += 1
        return f"{start:x}{ticks:x}"

    @staticmethod
    def random_entropy() -> str:
        return f"{secrets.randbelow(_RANDOM_MAX + 1):x}"

    @staticmethod
    def user_agent_entropy(user_agent: str) -> str:
        """XOR-fold the user agent, four bytes at a time, into 32 bits.

        Each window is packed with its last byte in the lowest position,
        which is the big-endian reading of the window. A trailing partial
        window is folded the same way.
        """
        data = user_agent.encode("utf-8")
        result = 0
        for offset in range(0, len(data), 4):
            result ^= int.from_bytes(data[offset : offset + 4], "big")
        return f"{result:x}"

    @staticmethod
    def ip_entropy(client_ip: str) -> str:
        stripped = _IP_SEPARATORS.sub("", client_ip)
        return f"{zlib.crc32(stripped.encode('utf-8')) & 0xFFFFFFFF:x}"
