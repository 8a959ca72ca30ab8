from __future__ import annotations

import re
import zlib

import pytest

from pymixpanel import identity
from pymixpanel.identity import DistinctIdGenerator

_ID_RE = re.compile(r"^[0-9a-f]+(-[0-9a-f]+){4}$")


def test_generate_returns_different_result_every_time() -> None:
    generator = DistinctIdGenerator()
    seen: set[str] = set()
    for _ in range(100):
        distinct_id = generator.generate("user-agent", "127.0.0.1")
        assert distinct_id not in seen
        seen.add(distinct_id)


def test_generate_has_five_hex_segments() -> None:
    distinct_id = DistinctIdGenerator().generate("Mozilla/5.0", "203.0.113.7")
    assert _ID_RE.match(distinct_id)


def test_generate_tolerates_empty_inputs() -> None:
    distinct_id = DistinctIdGenerator().generate("", "")
    assert _ID_RE.match(distinct_id)


def test_ticks_entropy_counts_spins_within_one_millisecond() -> None:
    readings = iter([5, 5, 5, 6])
    generator = DistinctIdGenerator(clock=lambda: next(readings))
    # Started at 5, observed 5 twice more before the clock moved on.
    assert generator.ticks_entropy() == "52"


def test_user_agent_entropy_folds_four_byte_windows() -> None:
    assert DistinctIdGenerator.user_agent_entropy("abcd") == "61626364"
    # "user" ^ "-age" ^ "nt" (partial window read as 0x6e74)
    assert DistinctIdGenerator.user_agent_entropy("user-agent") == "58126c63"
    assert DistinctIdGenerator.user_agent_entropy("") == "0"


def test_ip_entropy_strips_separators_before_crc() -> None:
    assert DistinctIdGenerator.ip_entropy("127.0.0.1") == f"{zlib.crc32(b'127001'):x}"
    assert DistinctIdGenerator.ip_entropy("::1") == f"{zlib.crc32(b'1'):x}"
    assert DistinctIdGenerator.ip_entropy("10.0.0.1") == DistinctIdGenerator.ip_entropy("1000.1")


def test_subsecond_clock_reads_milliseconds_within_the_second(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(identity.time, "time_ns", lambda: 1_700_000_000_123_456_789)
    assert identity._subsecond_ms() == 123

    monkeypatch.setattr(identity.time, "time_ns", lambda: 1_700_000_000_999_600_000)
    assert identity._subsecond_ms() == 1000


def test_ticks_segment_starts_with_subsecond_value() -> None:
    readings = iter([999, 999, 0])
    generator = DistinctIdGenerator(clock=lambda: next(readings))
    assert generator.ticks_entropy() == "3e71"


def test_default_clock_stays_within_one_second() -> None:
    for _ in range(50):
        assert 0 <= identity._subsecond_ms() <= 1000
