"""Unit tests for the in-memory file provider and the package manifest."""

from __future__ import annotations

import pytest

from vigil.sensors.workspace import (
    FileProvider,
    InMemoryFileProvider,
    PackageManifest,
    SourceFile,
    language_for,
    normalize_path,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("src\\app.ts", "src/app.ts"), ("./app.ts", "app.ts"), ("a/../b/c.py", "b/c.py")],
)
def test_normalize_path(raw: str, expected: str) -> None:
    assert normalize_path(raw) == expected


def test_normalize_path_rejects_empty_locations() -> None:
    with pytest.raises(ValueError, match="invalid source path"):
        normalize_path("./")


def test_language_for_extensions() -> None:
    assert language_for("a.tsx") == "script"
    assert language_for("a.py") == "python"
    assert language_for("a.md") is None


def test_provider_snapshot_is_sorted_and_notifies_listeners() -> None:
    provider = InMemoryFileProvider({"b.ts": "", "a.ts": ""})
    changed: list[str] = []
    unsubscribe = provider.subscribe(changed.append)

    provider.put("./c.ts", "x")
    assert provider.remove("a.ts")
    assert not provider.remove("a.ts")
    unsubscribe()
    provider.put("d.ts", "")

    assert isinstance(provider, FileProvider)
    assert [source.path for source in provider.snapshot()] == ["b.ts", "c.ts", "d.ts"]
    assert changed == ["c.ts", "a.ts"]


def test_failing_listener_does_not_block_updates() -> None:
    provider = InMemoryFileProvider()

    def explode(path: str) -> None:
        raise RuntimeError(path)

    provider.subscribe(explode)
    provider.put("a.ts", "x")

    assert provider.get("a.ts") is not None


def test_active_mark_moves_and_survives_edits() -> None:
    provider = InMemoryFileProvider({"a.ts": "", "b.ts": ""})
    provider.set_active("a.ts")
    provider.put("a.ts", "edited")
    assert provider.get("a.ts").is_active  # type: ignore[union-attr]

    provider.set_active("b.ts")
    assert not provider.get("a.ts").is_active  # type: ignore[union-attr]
    assert provider.get("b.ts").is_active  # type: ignore[union-attr]

    provider.set_active(None)
    assert not any(source.is_active for source in provider.snapshot())


def test_source_digest_tracks_content() -> None:
    provider = InMemoryFileProvider()
    first = provider.put("a.ts", "one").digest
    second = provider.put("a.ts", "two").digest

    assert first != second


def test_manifest_from_mapping() -> None:
    manifest = PackageManifest.from_mapping(
        {
            "name": "app",
            "dependencies": {"react": "^18.0.0"},
            "devDependencies": {"vitest": "^1.0.0"},
            "peerDependencies": {"react-dom": "^18.0.0"},
        }
    )

    assert manifest.declares("vitest")
    assert manifest.declares("react-dom")
    assert not manifest.declares("lodash")
    assert manifest.all_names() == ("react", "react-dom", "vitest")


def test_manifest_rejects_non_object_sections() -> None:
    with pytest.raises(ValueError, match="devDependencies"):
        PackageManifest.from_mapping({"devDependencies": ["vitest"]})


def test_digest_accepts_lone_surrogates() -> None:
    source = SourceFile(path="a.ts", content="'\ud800'")

    assert source.digest == SourceFile(path="a.ts", content="'\ud800'").digest
    assert source.digest != SourceFile(path="a.ts", content="'\ud801'").digest
