"""Unit tests for prefixed ULID identifiers."""

from __future__ import annotations

import pytest

from vigil.domain import ids


def test_generate_ulid_is_deterministic_with_injected_inputs() -> None:
    first = ids.generate_ulid(timestamp_ms=1_700_000_000_000, randbytes=lambda n: b"\x01" * n)
    second = ids.generate_ulid(timestamp_ms=1_700_000_000_000, randbytes=lambda n: b"\x01" * n)

    assert first == second
    assert len(first) == ids.ULID_LENGTH


def test_ulids_sort_by_timestamp() -> None:
    earlier = ids.generate_ulid(timestamp_ms=1_000, randbytes=lambda n: b"\xff" * n)
    later = ids.generate_ulid(timestamp_ms=2_000, randbytes=lambda n: b"\x00" * n)

    assert earlier < later


@pytest.mark.parametrize(
    ("factory", "prefix"),
    [
        (ids.issue_id, ids.ISSUE_ID_PREFIX),
        (ids.action_id, ids.ACTION_ID_PREFIX),
        (ids.plan_id, ids.PLAN_ID_PREFIX),
        (ids.cycle_id, ids.CYCLE_ID_PREFIX),
        (ids.run_id, ids.RUN_ID_PREFIX),
    ],
)
def test_prefixed_ids_validate(factory: object, prefix: str) -> None:
    value = factory()  # type: ignore[operator]
    ids.validate_prefixed_id(value, prefix)


def test_validate_rejects_wrong_prefix_and_length() -> None:
    with pytest.raises(ValueError, match="expected prefix"):
        ids.validate_prefixed_id(ids.issue_id(), ids.PLAN_ID_PREFIX)
    with pytest.raises(ValueError, match="ulid length"):
        ids.validate_prefixed_id("iss-ABC", ids.ISSUE_ID_PREFIX)


def test_prefix_must_not_contain_separator() -> None:
    with pytest.raises(ValueError):
        ids.generate_prefixed_id("a-b")


def test_generated_ids_are_unique() -> None:
    assert len({ids.issue_id() for _ in range(200)}) == 200
