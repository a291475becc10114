"""ULID-backed prefixed identifiers for issues, actions, plans and cycles."""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from typing import Final

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_RANDOM_BYTES: Final[int] = 10
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1
_PREFIX_SEPARATOR: Final[str] = "-"

ISSUE_ID_PREFIX: Final[str] = "iss"
ACTION_ID_PREFIX: Final[str] = "act"
PLAN_ID_PREFIX: Final[str] = "plan"
CYCLE_ID_PREFIX: Final[str] = "cyc"
RUN_ID_PREFIX: Final[str] = "run"

_DECODE_TABLE: Final[dict[str, int]] = {
    char: index for index, char in enumerate(CROCKFORD_BASE32_ALPHABET)
}

_RandBytes = Callable[[int], bytes]


def generate_ulid(
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate a ULID as a 26-character uppercase Crockford Base32 string."""
    ts_ms = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not 0 <= ts_ms <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(f"timestamp_ms out of range: expected 0..{ULID_MAX_TIMESTAMP_MS}")
    provider = secrets.token_bytes if randbytes is None else randbytes
    random_bytes = bytes(provider(ULID_RANDOM_BYTES))
    if len(random_bytes) != ULID_RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {ULID_RANDOM_BYTES} bytes")
    value = (ts_ms << 80) | int.from_bytes(random_bytes, "big")

    chars = ["0"] * ULID_LENGTH
    for index in range(ULID_LENGTH - 1, -1, -1):
        chars[index] = CROCKFORD_BASE32_ALPHABET[value & 0b11111]
        value >>= 5
    return "".join(chars)


def generate_prefixed_id(
    prefix: str,
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate an ID in the form ``<prefix>-<ulid>``."""
    if not prefix or _PREFIX_SEPARATOR in prefix:
        raise ValueError(f"prefix must be non-empty and must not contain '{_PREFIX_SEPARATOR}'")
    ulid = generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)
    return f"{prefix}{_PREFIX_SEPARATOR}{ulid}"


def validate_prefixed_id(id_str: str, expected_prefix: str) -> None:
    """Validate ``<prefix>-<ulid>`` format and enforce ``expected_prefix``."""
    expected_lead = f"{expected_prefix}{_PREFIX_SEPARATOR}"
    if not id_str.startswith(expected_lead):
        raise ValueError(f"expected prefix '{expected_lead}'")
    ulid_part = id_str[len(expected_lead) :]
    if len(ulid_part) != ULID_LENGTH:
        raise ValueError(f"ulid length must be {ULID_LENGTH}, got {len(ulid_part)}")
    for index, char in enumerate(ulid_part):
        if char.upper() not in _DECODE_TABLE:
            raise ValueError(f"invalid ULID character {char!r} at index {index}")


def issue_id() -> str:
    return generate_prefixed_id(ISSUE_ID_PREFIX)


def action_id() -> str:
    return generate_prefixed_id(ACTION_ID_PREFIX)


def plan_id() -> str:
    return generate_prefixed_id(PLAN_ID_PREFIX)


def cycle_id() -> str:
    return generate_prefixed_id(CYCLE_ID_PREFIX)


def run_id() -> str:
    return generate_prefixed_id(RUN_ID_PREFIX)


__all__ = [
    "ACTION_ID_PREFIX",
    "CYCLE_ID_PREFIX",
    "ISSUE_ID_PREFIX",
    "PLAN_ID_PREFIX",
    "RUN_ID_PREFIX",
    "ULID_LENGTH",
    "action_id",
    "cycle_id",
    "generate_prefixed_id",
    "generate_ulid",
    "issue_id",
    "plan_id",
    "run_id",
    "validate_prefixed_id",
]
