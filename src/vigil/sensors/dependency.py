"""
Dependency sensor.

Purpose
- Extract import edges from every monitored file, resolve each against the
  workspace, the package manifest and the built-in module allowlists, and
  report what does not resolve.
- Rebuild the file graph (edge = importer -> imported file) from the provider
  snapshot on every inspection and report circular imports.

Resolution order
1) relative specifiers (``./x``, ``../x``, Python leading dots) are normalized
   against the importer's directory and probed for known files; they count as
   resolved even when no file matches, since a missing sibling is a different
   problem than a missing package
2) absolute paths
3) manifest entries by package root (``@scope/name`` or the first segment)
4) built-in modules (Node core, optionally ``node:``-prefixed; Python stdlib)
"""

from __future__ import annotations

import asyncio
import posixpath
import re
import time
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Final, Protocol

import structlog

from vigil.domain import ids
from vigil.domain.models import (
    Issue,
    IssueKind,
    IssueLocation,
    SensorKind,
    Severity,
    utc_now,
)
from vigil.sensors.base import Clock, Inspection
from vigil.sensors.workspace import (
    NODE_BUILTIN_MODULES,
    PYTHON_BUILTIN_MODULES,
    PYTHON_EXTENSIONS,
    SCRIPT_EXTENSIONS,
    FileProvider,
    PackageManifest,
    SourceFile,
)
from vigil.utils.graph import DirectedGraph

_MISSING_CONFIDENCE: Final[float] = 0.95
_CYCLE_CONFIDENCE: Final[float] = 0.9


class EdgeType(StrEnum):
    IMPORT = "import"
    TYPE_IMPORT = "type_import"
    EXPORT = "export"
    DYNAMIC_IMPORT = "dynamic_import"
    REQUIRE = "require"
    FROM_IMPORT = "from_import"


class ResolutionKind(StrEnum):
    RELATIVE = "relative"
    ABSOLUTE = "absolute"
    PACKAGE = "package"
    BUILTIN = "builtin"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True, slots=True)
class ImportEdge:
    specifier: str
    edge_type: EdgeType
    line: int
    column: int


@dataclass(frozen=True, slots=True)
class ResolvedEdge:
    importer: str
    edge: ImportEdge
    resolution: ResolutionKind
    target: str | None = None

    @property
    def is_local(self) -> bool:
        return self.resolution in (ResolutionKind.RELATIVE, ResolutionKind.ABSOLUTE)

    @property
    def is_external(self) -> bool:
        return self.resolution in (ResolutionKind.PACKAGE, ResolutionKind.BUILTIN)


class ImportAnalyzer(Protocol):
    language: str
    extensions: tuple[str, ...]

    def extract(self, source: SourceFile) -> tuple[ImportEdge, ...]: ...

    def resolve(
        self,
        importer: str,
        edge: ImportEdge,
        known_files: frozenset[str],
        manifest: PackageManifest,
    ) -> ResolvedEdge: ...


_QUOTED: Final[str] = r"""['"]([^'"]+)['"]"""
_SCRIPT_LINE_PATTERNS: Final[tuple[tuple[re.Pattern[str], EdgeType], ...]] = (
    (re.compile(rf"^\s*import\s+type\s+.+?\s+from\s+{_QUOTED}"), EdgeType.TYPE_IMPORT),
    (re.compile(rf"^\s*import\s+.+?\s+from\s+{_QUOTED}"), EdgeType.IMPORT),
    (re.compile(rf"^\s*import\s+{_QUOTED}"), EdgeType.IMPORT),
    (re.compile(rf"^\s*export\s+.+?\s+from\s+{_QUOTED}"), EdgeType.EXPORT),
    (re.compile(rf"^\s*\}}\s*from\s+{_QUOTED}"), EdgeType.IMPORT),
)
_SCRIPT_CALL_PATTERNS: Final[tuple[tuple[re.Pattern[str], EdgeType], ...]] = (
    (re.compile(rf"(?<![\w$.])import\s*\(\s*{_QUOTED}\s*\)"), EdgeType.DYNAMIC_IMPORT),
    (re.compile(rf"(?<![\w$.])require\s*\(\s*{_QUOTED}\s*\)"), EdgeType.REQUIRE),
)
_PY_IMPORT_RE: Final[re.Pattern[str]] = re.compile(
    r"^\s*import\s+([\w.]+(?:\s+as\s+\w+)?(?:\s*,\s*[\w.]+(?:\s+as\s+\w+)?)*)"
)
_PY_FROM_RE: Final[re.Pattern[str]] = re.compile(r"^\s*from\s+(\.*[\w.]*)\s+import\b")


class ScriptImportAnalyzer:
    """Static, type-only, re-export, dynamic and ``require`` edges in JS/TS files."""

    language = "script"
    extensions = SCRIPT_EXTENSIONS

    def extract(self, source: SourceFile) -> tuple[ImportEdge, ...]:
        edges: list[ImportEdge] = []
        for number, line in enumerate(source.content.splitlines(), start=1):
            stripped = line.lstrip()
            if stripped.startswith(("//", "*", "/*")):
                continue
            for pattern, edge_type in _SCRIPT_LINE_PATTERNS:
                match = pattern.match(line)
                if match is not None:
                    edges.append(ImportEdge(match.group(1), edge_type, number, match.start(1)))
                    break
            for pattern, edge_type in _SCRIPT_CALL_PATTERNS:
                for match in pattern.finditer(line):
                    edges.append(ImportEdge(match.group(1), edge_type, number, match.start(1)))
        return tuple(edges)

    def resolve(
        self,
        importer: str,
        edge: ImportEdge,
        known_files: frozenset[str],
        manifest: PackageManifest,
    ) -> ResolvedEdge:
        specifier = edge.specifier
        if specifier.startswith(("./", "../")) or specifier in (".", ".."):
            base = posixpath.normpath(posixpath.join(posixpath.dirname(importer), specifier))
            return ResolvedEdge(
                importer,
                edge,
                ResolutionKind.RELATIVE,
                _probe_script(base, known_files) or base,
            )
        if specifier.startswith("/"):
            base = posixpath.normpath(specifier)
            return ResolvedEdge(
                importer,
                edge,
                ResolutionKind.ABSOLUTE,
                _probe_script(base.lstrip("/"), known_files)
                or _probe_script(base, known_files)
                or base,
            )

        has_node_prefix = specifier.startswith("node:")
        root = package_root(specifier.removeprefix("node:"))
        if not has_node_prefix and manifest.declares(root):
            return ResolvedEdge(importer, edge, ResolutionKind.PACKAGE, root)
        if root in NODE_BUILTIN_MODULES:
            return ResolvedEdge(importer, edge, ResolutionKind.BUILTIN, root)
        return ResolvedEdge(importer, edge, ResolutionKind.UNRESOLVED)


class PythonImportAnalyzer:
    """``import x`` and ``from x import y`` edges; relative imports resolve by package."""

    language = "python"
    extensions = PYTHON_EXTENSIONS

    def extract(self, source: SourceFile) -> tuple[ImportEdge, ...]:
        edges: list[ImportEdge] = []
        for number, line in enumerate(source.content.splitlines(), start=1):
            from_match = _PY_FROM_RE.match(line)
            if from_match is not None:
                edges.append(
                    ImportEdge(
                        from_match.group(1), EdgeType.FROM_IMPORT, number, from_match.start(1)
                    )
                )
                continue
            import_match = _PY_IMPORT_RE.match(line)
            if import_match is None:
                continue
            offset = import_match.start(1)
            for part in import_match.group(1).split(","):
                name = part.strip().split()[0]
                edges.append(
                    ImportEdge(name, EdgeType.IMPORT, number, line.index(name, offset))
                )
        return tuple(edges)

    def resolve(
        self,
        importer: str,
        edge: ImportEdge,
        known_files: frozenset[str],
        manifest: PackageManifest,
    ) -> ResolvedEdge:
        specifier = edge.specifier
        if specifier.startswith("."):
            dots = len(specifier) - len(specifier.lstrip("."))
            package_dir = posixpath.dirname(importer)
            for _ in range(dots - 1):
                package_dir = posixpath.dirname(package_dir)
            remainder = specifier[dots:].replace(".", "/")
            base = posixpath.normpath(posixpath.join(package_dir or ".", remainder or "__init__"))
            return ResolvedEdge(
                importer,
                edge,
                ResolutionKind.RELATIVE,
                _probe_python(base, known_files) or base,
            )

        local = _probe_python_anywhere(specifier.replace(".", "/"), known_files)
        if local is not None:
            return ResolvedEdge(importer, edge, ResolutionKind.ABSOLUTE, local)

        top = specifier.split(".")[0]
        if manifest.declares(top) or manifest.declares(top.replace("_", "-")):
            return ResolvedEdge(importer, edge, ResolutionKind.PACKAGE, top)
        if top in PYTHON_BUILTIN_MODULES:
            return ResolvedEdge(importer, edge, ResolutionKind.BUILTIN, top)
        return ResolvedEdge(importer, edge, ResolutionKind.UNRESOLVED)


def package_root(specifier: str) -> str:
    """``@scope/name/sub`` -> ``@scope/name``; ``name/sub`` -> ``name``."""
    parts = specifier.split("/")
    if specifier.startswith("@") and len(parts) >= 2:
        return "/".join(parts[:2])
    return parts[0]


def _probe_script(base: str, known_files: frozenset[str]) -> str | None:
    candidates = [base]
    candidates.extend(base + ext for ext in SCRIPT_EXTENSIONS)
    candidates.extend(posixpath.join(base, "index" + ext) for ext in SCRIPT_EXTENSIONS)
    return next((candidate for candidate in candidates if candidate in known_files), None)


def _probe_python(base: str, known_files: frozenset[str]) -> str | None:
    for candidate in (base + ".py", posixpath.join(base, "__init__.py"), base):
        if candidate in known_files:
            return candidate
    return None


def _probe_python_anywhere(module_path: str, known_files: frozenset[str]) -> str | None:
    exact = _probe_python(module_path, known_files)
    if exact is not None:
        return exact
    suffixes = ("/" + module_path + ".py", "/" + module_path + "/__init__.py")
    matches = sorted(path for path in known_files if path.endswith(suffixes))
    return matches[0] if matches else None


class DependencySensor:
    """Builds the per-cycle file graph and reports missing and circular imports."""

    def __init__(
        self,
        files: FileProvider,
        manifest: PackageManifest | None = None,
        *,
        analyzers: Iterable[ImportAnalyzer] | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._files = files
        self._manifest = manifest if manifest is not None else PackageManifest()
        self._clock = clock
        self._analyzers: dict[str, ImportAnalyzer] = {}
        self._cache: dict[str, tuple[str, tuple[ImportEdge, ...]]] = {}
        self._graph = DirectedGraph()
        self._edges: tuple[ResolvedEdge, ...] = ()
        self._logger = structlog.get_logger(__name__)
        for analyzer in analyzers if analyzers is not None else default_analyzers():
            self.register_analyzer(analyzer)

    @property
    def kind(self) -> SensorKind:
        return SensorKind.DEPENDENCY

    @property
    def manifest(self) -> PackageManifest:
        return self._manifest

    @property
    def graph(self) -> DirectedGraph:
        """File graph built by the most recent inspection."""
        return self._graph

    @property
    def edges(self) -> tuple[ResolvedEdge, ...]:
        return self._edges

    def update_manifest(self, manifest: PackageManifest) -> None:
        self._manifest = manifest

    def register_analyzer(self, analyzer: ImportAnalyzer) -> None:
        for extension in analyzer.extensions:
            self._analyzers[extension] = analyzer

    def analyzer_for(self, path: str) -> ImportAnalyzer | None:
        _, ext = posixpath.splitext(path)
        return self._analyzers.get(ext)

    def dependencies_of(self, path: str) -> tuple[str, ...]:
        return self._graph.children(path) if path in self._graph else ()

    def dependents_of(self, path: str) -> tuple[str, ...]:
        return self._graph.parents(path) if path in self._graph else ()

    async def inspect(self) -> Inspection:
        started = time.perf_counter()
        snapshot = tuple(
            (source, analyzer)
            for source in self._files.snapshot()
            if (analyzer := self.analyzer_for(source.path)) is not None
        )
        known_files = frozenset(source.path for source, _ in snapshot)
        for stale in [path for path in self._cache if path not in known_files]:
            del self._cache[stale]

        graph = DirectedGraph(nodes=known_files)
        resolved: list[ResolvedEdge] = []
        issues: list[Issue] = []
        for source, analyzer in snapshot:
            for edge in self._edges_for(source, analyzer):
                outcome = analyzer.resolve(source.path, edge, known_files, self._manifest)
                resolved.append(outcome)
                if outcome.resolution is ResolutionKind.UNRESOLVED:
                    issues.append(self._missing_issue(source, analyzer.language, edge))
                elif outcome.is_local and outcome.target in known_files:
                    graph.add_edge(source.path, outcome.target)
            await asyncio.sleep(0)

        cycles = graph.detect_cycles()
        issues.extend(self._cycle_issues(cycles))
        self._graph = graph
        self._edges = tuple(resolved)

        missing = sum(1 for edge in resolved if edge.resolution is ResolutionKind.UNRESOLVED)
        if cycles:
            self._logger.info("dependency_cycles_detected", cycles=len(cycles))
        return Inspection(
            issues=tuple(issues),
            metrics={
                "total_files": float(len(snapshot)),
                "total_dependencies": float(len(resolved)),
                "external_dependencies": float(sum(1 for edge in resolved if edge.is_external)),
                "circular_dependencies": float(len(cycles)),
                "missing_dependencies": float(missing),
                "analysis_seconds": time.perf_counter() - started,
            },
        )

    async def reset(self) -> None:
        self._cache.clear()
        self._graph = DirectedGraph()
        self._edges = ()

    def edge_type_counts(self) -> dict[str, int]:
        return dict(Counter(edge.edge.edge_type.value for edge in self._edges))

    def _edges_for(self, source: SourceFile, analyzer: ImportAnalyzer) -> tuple[ImportEdge, ...]:
        digest = source.digest
        cached = self._cache.get(source.path)
        if cached is not None and cached[0] == digest:
            return cached[1]
        edges = analyzer.extract(source)
        self._cache[source.path] = (digest, edges)
        return edges

    def _missing_issue(self, source: SourceFile, language: str, edge: ImportEdge) -> Issue:
        if language == "python":
            root = edge.specifier.split(".")[0]
            suggestions = (
                f"Install the package: pip install {root}",
                f"Declare '{root}' in the project dependencies",
            )
        else:
            root = package_root(edge.specifier)
            suggestions = (
                f"Install the package: npm install {root}",
                f"Declare '{root}' in package.json dependencies",
                "Check the module specifier for typos",
            )
        return Issue(
            id=ids.issue_id(),
            kind=IssueKind.DEPENDENCY_MISSING,
            severity=Severity.HIGH,
            location=IssueLocation(file=source.path, line=edge.line, column=edge.column + 1),
            detected_by=SensorKind.DEPENDENCY,
            confidence=_MISSING_CONFIDENCE,
            message=f"Cannot resolve module '{edge.specifier}'",
            rule="unresolved-import",
            suggestions=suggestions,
            tags=("dependency", edge.specifier, edge.edge_type.value),
            detected_at=self._clock(),
        )

    def _cycle_issues(self, cycles: tuple[tuple[str, ...], ...]) -> list[Issue]:
        first_cycle: dict[str, tuple[str, ...]] = {}
        for cycle in cycles:
            for member in cycle[:-1]:
                first_cycle.setdefault(member, cycle)
        detected_at = self._clock()
        return [
            Issue(
                id=ids.issue_id(),
                kind=IssueKind.ARCHITECTURAL_INCONSISTENCY,
                severity=Severity.MEDIUM,
                location=IssueLocation(file=path, related_files=cycle[:-1]),
                detected_by=SensorKind.DEPENDENCY,
                confidence=_CYCLE_CONFIDENCE,
                message=f"Circular dependency: {' -> '.join(cycle)}",
                rule="circular-dependency",
                suggestions=(
                    "Extract the shared code into a module both files can import",
                    "Invert one of the imports through an interface or callback",
                ),
                tags=("dependency", "circular"),
                detected_at=detected_at,
            )
            for path, cycle in sorted(first_cycle.items())
        ]


def default_analyzers() -> tuple[ImportAnalyzer, ...]:
    return (ScriptImportAnalyzer(), PythonImportAnalyzer())


__all__ = [
    "DependencySensor",
    "EdgeType",
    "ImportAnalyzer",
    "ImportEdge",
    "PythonImportAnalyzer",
    "ResolutionKind",
    "ResolvedEdge",
    "ScriptImportAnalyzer",
    "default_analyzers",
    "package_root",
]
