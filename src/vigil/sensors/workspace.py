"""Workspace boundary: monitored source files, the package manifest and built-in modules."""

from __future__ import annotations

import hashlib
import posixpath
import sys
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Final, Protocol, runtime_checkable

import structlog

from vigil.domain.models import utc_now

SCRIPT_EXTENSIONS: Final[tuple[str, ...]] = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs")
PYTHON_EXTENSIONS: Final[tuple[str, ...]] = (".py",)

NODE_BUILTIN_MODULES: Final[frozenset[str]] = frozenset(
    {
        "fs",
        "path",
        "os",
        "crypto",
        "http",
        "https",
        "url",
        "util",
        "events",
        "stream",
        "buffer",
        "child_process",
        "cluster",
    }
)
PYTHON_BUILTIN_MODULES: Final[frozenset[str]] = frozenset(sys.stdlib_module_names)


def language_for(path: str) -> str | None:
    """Return ``"script"``, ``"python"`` or ``None`` for an unmonitored extension."""
    _, ext = posixpath.splitext(path)
    if ext in SCRIPT_EXTENSIONS:
        return "script"
    if ext in PYTHON_EXTENSIONS:
        return "python"
    return None


@dataclass(frozen=True, slots=True)
class SourceFile:
    path: str
    content: str
    modified_at: datetime = field(default_factory=utc_now)
    is_active: bool = False

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.content.encode("utf-8", "surrogatepass")).hexdigest()

    @property
    def language(self) -> str | None:
        return language_for(self.path)


ChangeListener = Callable[[str], None]


@runtime_checkable
class FileProvider(Protocol):
    """Source of ``(path, content)`` pairs with change notifications."""

    def snapshot(self) -> tuple[SourceFile, ...]: ...

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]: ...


class InMemoryFileProvider:
    """File provider fed by an editor integration or by tests."""

    def __init__(self, files: Mapping[str, str] | None = None) -> None:
        self._lock = threading.RLock()
        self._files: dict[str, SourceFile] = {}
        self._listeners: dict[int, ChangeListener] = {}
        self._next_token = 1
        self._logger = structlog.get_logger(__name__)
        for path, content in (files or {}).items():
            self.put(path, content)

    def put(
        self,
        path: str,
        content: str,
        *,
        modified_at: datetime | None = None,
        active: bool | None = None,
    ) -> SourceFile:
        normalized = normalize_path(path)
        with self._lock:
            previous = self._files.get(normalized)
            is_active = previous.is_active if (active is None and previous) else bool(active)
            source = SourceFile(
                path=normalized,
                content=content,
                modified_at=modified_at or utc_now(),
                is_active=is_active,
            )
            self._files[normalized] = source
        self._notify(normalized)
        return source

    def remove(self, path: str) -> bool:
        normalized = normalize_path(path)
        with self._lock:
            removed = self._files.pop(normalized, None) is not None
        if removed:
            self._notify(normalized)
        return removed

    def set_active(self, path: str | None) -> None:
        """Mark ``path`` as the file being edited; ``None`` clears the mark."""
        target = None if path is None else normalize_path(path)
        with self._lock:
            for name, source in list(self._files.items()):
                wanted = name == target
                if source.is_active != wanted:
                    self._files[name] = SourceFile(
                        path=source.path,
                        content=source.content,
                        modified_at=source.modified_at,
                        is_active=wanted,
                    )

    def get(self, path: str) -> SourceFile | None:
        with self._lock:
            return self._files.get(normalize_path(path))

    def snapshot(self) -> tuple[SourceFile, ...]:
        with self._lock:
            return tuple(self._files[name] for name in sorted(self._files))

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._listeners[token] = listener

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(token, None)

        return unsubscribe

    def _notify(self, path: str) -> None:
        with self._lock:
            listeners = tuple(self._listeners.values())
        for listener in listeners:
            try:
                listener(path)
            except Exception as exc:  # noqa: BLE001
                self._logger.warning("file_listener_failed", path=path, error=str(exc))


@dataclass(frozen=True, slots=True)
class PackageManifest:
    """Declared dependency names of the monitored project."""

    name: str = ""
    version: str = ""
    dependencies: Mapping[str, str] = field(default_factory=dict)
    dev_dependencies: Mapping[str, str] = field(default_factory=dict)
    peer_dependencies: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, object]) -> PackageManifest:
        """Build from a ``package.json``-shaped mapping."""

        def section(key: str) -> dict[str, str]:
            raw = payload.get(key) or {}
            if not isinstance(raw, Mapping):
                raise ValueError(f"manifest field {key!r} must be an object")
            return {str(name): str(version) for name, version in raw.items()}

        return cls(
            name=str(payload.get("name", "")),
            version=str(payload.get("version", "")),
            dependencies=section("dependencies"),
            dev_dependencies=section("devDependencies"),
            peer_dependencies=section("peerDependencies"),
        )

    @classmethod
    def from_names(cls, names: Iterable[str]) -> PackageManifest:
        return cls(dependencies={name: "*" for name in names})

    def declares(self, package: str) -> bool:
        return (
            package in self.dependencies
            or package in self.dev_dependencies
            or package in self.peer_dependencies
        )

    def all_names(self) -> tuple[str, ...]:
        names = {*self.dependencies, *self.dev_dependencies, *self.peer_dependencies}
        return tuple(sorted(names))


def normalize_path(path: str) -> str:
    normalized = posixpath.normpath(path.replace("\\", "/"))
    if normalized in ("", "."):
        raise ValueError(f"invalid source path {path!r}")
    return normalized


__all__ = [
    "NODE_BUILTIN_MODULES",
    "PYTHON_BUILTIN_MODULES",
    "PYTHON_EXTENSIONS",
    "SCRIPT_EXTENSIONS",
    "ChangeListener",
    "FileProvider",
    "InMemoryFileProvider",
    "PackageManifest",
    "SourceFile",
    "language_for",
    "normalize_path",
]
