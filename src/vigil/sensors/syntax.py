"""Syntax sensor: structural errors and lint-level findings in monitored source files."""

from __future__ import annotations

import ast
import asyncio
import re
import time
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
from vigil.sensors.workspace import PYTHON_EXTENSIONS, SCRIPT_EXTENSIONS, FileProvider, SourceFile


class DiagnosticLevel(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    HINT = "hint"


_LEVEL_SEVERITY: Final[dict[DiagnosticLevel, Severity]] = {
    DiagnosticLevel.ERROR: Severity.HIGH,
    DiagnosticLevel.WARNING: Severity.MEDIUM,
    DiagnosticLevel.HINT: Severity.LOW,
}
_LEVEL_CONFIDENCE: Final[dict[DiagnosticLevel, float]] = {
    DiagnosticLevel.ERROR: 0.95,
    DiagnosticLevel.WARNING: 0.8,
    DiagnosticLevel.HINT: 0.7,
}

_OPENERS: Final[dict[str, str]] = {"(": ")", "[": "]", "{": "}"}
_CLOSERS: Final[dict[str, str]] = {v: k for k, v in _OPENERS.items()}

_IDENT: Final[str] = r"[A-Za-z_$][\w$]*"
_FUNCTION_KEYWORD_RE: Final[re.Pattern[str]] = re.compile(r"(?<![\w$.])function(?![\w$])")
_FUNCTION_TAIL_RE: Final[re.Pattern[str]] = re.compile(
    rf"^\s*\*?\s*(?:{_IDENT})?\s*(?:<[^>]*>)?\s*\("
)
_DECLARATION_RE: Final[re.Pattern[str]] = re.compile(rf"(?<![\w$.])(let|const|var)\s+({_IDENT})")
_ASSIGNMENT_STATEMENT_RE: Final[re.Pattern[str]] = re.compile(
    rf"^(?:export\s+)?(?:let|const|var)\s+{_IDENT}\s*(?::[^=]+)?=\s*\S"
)
_CONTINUATION_SUFFIXES: Final[tuple[str, ...]] = (
    ";", "{", "(", "[", ",", "=", "+", "-", "*", "/", "|", "&", "?", ":", ".", "=>", "`",
)


@dataclass(frozen=True, slots=True)
class SyntaxDiagnostic:
    message: str
    line: int
    column: int
    level: DiagnosticLevel
    rule: str
    suggestion: str | None = None


class SyntaxParser(Protocol):
    language: str
    extensions: tuple[str, ...]

    def parse(self, source: SourceFile) -> tuple[SyntaxDiagnostic, ...]: ...


class ScriptSyntaxParser:
    """Heuristic checks for JavaScript and TypeScript sources."""

    language = "script"
    extensions = SCRIPT_EXTENSIONS

    def parse(self, source: SourceFile) -> tuple[SyntaxDiagnostic, ...]:
        code, diagnostics = _scan_delimiters(source.content)
        lines = code.split("\n")
        for number, line in enumerate(lines, start=1):
            diagnostics.extend(_check_function_declarations(line, number))
            diagnostic = _check_statement_terminator(line, number, lines)
            if diagnostic is not None:
                diagnostics.append(diagnostic)
        diagnostics.extend(_check_unused_bindings(code))
        return tuple(sorted(diagnostics, key=lambda d: (d.line, d.column, d.rule)))


class PythonSyntaxParser:
    """Python sources: compiler syntax errors plus imported-but-unused names."""

    language = "python"
    extensions = PYTHON_EXTENSIONS

    def parse(self, source: SourceFile) -> tuple[SyntaxDiagnostic, ...]:
        try:
            tree = ast.parse(source.content, filename=source.path)
        except SyntaxError as exc:
            return (
                SyntaxDiagnostic(
                    message=exc.msg,
                    line=max(1, exc.lineno or 1),
                    column=max(1, exc.offset or 1),
                    level=DiagnosticLevel.ERROR,
                    rule="python-syntax",
                ),
            )
        if source.path.endswith("__init__.py"):
            return ()
        return _unused_python_imports(tree)


class SyntaxSensor:
    """Parses every monitored file, the active file first, then most recently modified."""

    def __init__(
        self,
        files: FileProvider,
        *,
        parsers: Iterable[SyntaxParser] | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._files = files
        self._clock = clock
        self._parsers: dict[str, SyntaxParser] = {}
        self._cache: dict[str, tuple[str, tuple[SyntaxDiagnostic, ...]]] = {}
        self._logger = structlog.get_logger(__name__)
        for parser in parsers if parsers is not None else default_parsers():
            self.register_parser(parser)

    @property
    def kind(self) -> SensorKind:
        return SensorKind.SYNTAX

    def register_parser(self, parser: SyntaxParser) -> None:
        for extension in parser.extensions:
            self._parsers[extension] = parser

    def parser_for(self, path: str) -> SyntaxParser | None:
        for extension, parser in self._parsers.items():
            if path.endswith(extension):
                return parser
        return None

    async def inspect(self) -> Inspection:
        started = time.perf_counter()
        snapshot = self._files.snapshot()
        ordered = prioritize(snapshot)
        self._prune_cache({source.path for source in snapshot})

        issues: list[Issue] = []
        total_errors = 0
        total_warnings = 0
        for source in ordered:
            parser = self.parser_for(source.path)
            if parser is None:
                continue
            try:
                diagnostics = self._diagnostics_for(source, parser)
            except Exception as exc:  # noqa: BLE001
                self._logger.warning("syntax_parse_failed", path=source.path, error=str(exc))
                issues.append(self._monitoring_error(source, exc))
                continue
            for diagnostic in diagnostics:
                if diagnostic.level is DiagnosticLevel.ERROR:
                    total_errors += 1
                else:
                    total_warnings += 1
                issues.append(self._issue(source, parser.language, diagnostic))
            await asyncio.sleep(0)

        return Inspection(
            issues=tuple(issues),
            metrics={
                "total_files": float(len(snapshot)),
                "active_files": float(sum(1 for source in snapshot if source.is_active)),
                "total_errors": float(total_errors),
                "total_warnings": float(total_warnings),
                "parse_seconds": time.perf_counter() - started,
            },
        )

    async def reset(self) -> None:
        self._cache.clear()

    def _diagnostics_for(
        self, source: SourceFile, parser: SyntaxParser
    ) -> tuple[SyntaxDiagnostic, ...]:
        digest = source.digest
        cached = self._cache.get(source.path)
        if cached is not None and cached[0] == digest:
            return cached[1]
        diagnostics = parser.parse(source)
        self._cache[source.path] = (digest, diagnostics)
        return diagnostics

    def _prune_cache(self, live_paths: set[str]) -> None:
        for path in [path for path in self._cache if path not in live_paths]:
            del self._cache[path]

    def _issue(self, source: SourceFile, language: str, diagnostic: SyntaxDiagnostic) -> Issue:
        return Issue(
            id=ids.issue_id(),
            kind=IssueKind.SYNTAX_ERROR,
            severity=_LEVEL_SEVERITY[diagnostic.level],
            location=IssueLocation(
                file=source.path, line=diagnostic.line, column=diagnostic.column
            ),
            detected_by=SensorKind.SYNTAX,
            confidence=_LEVEL_CONFIDENCE[diagnostic.level],
            message=diagnostic.message,
            rule=diagnostic.rule,
            suggestions=() if diagnostic.suggestion is None else (diagnostic.suggestion,),
            tags=("syntax", language, diagnostic.level.value),
            detected_at=self._clock(),
        )

    def _monitoring_error(self, source: SourceFile, exc: Exception) -> Issue:
        return Issue(
            id=ids.issue_id(),
            kind=IssueKind.UNKNOWN,
            severity=Severity.MEDIUM,
            location=IssueLocation(file=source.path),
            detected_by=SensorKind.SYNTAX,
            confidence=0.5,
            message=f"syntax analysis failed: {exc}",
            rule="monitoring-error",
            tags=("syntax", "monitoring-error"),
            detected_at=self._clock(),
        )


def default_parsers() -> tuple[SyntaxParser, ...]:
    return (ScriptSyntaxParser(), PythonSyntaxParser())


def prioritize(files: Iterable[SourceFile]) -> tuple[SourceFile, ...]:
    """Active file first, then most recently modified, then by path."""
    return tuple(
        sorted(
            files,
            key=lambda source: (
                not source.is_active,
                -source.modified_at.timestamp(),
                source.path,
            ),
        )
    )


def _scan_delimiters(content: str) -> tuple[str, list[SyntaxDiagnostic]]:
    """Check bracket balance outside strings and comments.

    Returns the content with string literals and comments blanked out
    (line and column positions preserved) plus the balance diagnostics.
    """
    diagnostics: list[SyntaxDiagnostic] = []
    stack: list[tuple[str, int, int]] = []
    code: list[str] = []
    line, column = 1, 0
    mode = "code"
    quote = ""
    string_start = (1, 1)
    index = 0
    length = len(content)

    while index < length:
        char = content[index]
        nxt = content[index + 1] if index + 1 < length else ""
        column += 1

        if char == "\n":
            if mode == "string":
                diagnostics.append(
                    SyntaxDiagnostic(
                        message="Unterminated string literal",
                        line=string_start[0],
                        column=string_start[1],
                        level=DiagnosticLevel.ERROR,
                        rule="unterminated-string",
                    )
                )
                mode = "code"
            elif mode == "line_comment":
                mode = "code"
            code.append("\n")
            line, column = line + 1, 0
            index += 1
            continue

        if mode == "line_comment":
            code.append(" ")
        elif mode == "block_comment":
            if char == "*" and nxt == "/":
                code.append("  ")
                column += 1
                index += 1
                mode = "code"
            else:
                code.append(" ")
        elif mode in ("string", "template"):
            if char == "\\" and nxt and nxt != "\n":
                code.append("  ")
                column += 1
                index += 1
            elif char == quote:
                code.append(char)
                mode = "code"
            else:
                code.append(" ")
        elif char == "/" and nxt == "/":
            mode = "line_comment"
            code.append(" ")
        elif char == "/" and nxt == "*":
            mode = "block_comment"
            code.append("  ")
            column += 1
            index += 1
        elif char in ("'", '"', "`"):
            mode = "template" if char == "`" else "string"
            quote = char
            string_start = (line, column)
            code.append(char)
        else:
            code.append(char)
            if char in _OPENERS:
                stack.append((char, line, column))
            elif char in _CLOSERS:
                diagnostics.extend(_close(stack, char, line, column))
        index += 1

    for opener, open_line, open_column in stack:
        diagnostics.append(
            SyntaxDiagnostic(
                message=f"Unclosed '{opener}'",
                line=open_line,
                column=open_column,
                level=DiagnosticLevel.ERROR,
                rule="unmatched-delimiter",
                suggestion=f"Add a matching '{_OPENERS[opener]}'",
            )
        )
    return "".join(code), diagnostics


def _close(
    stack: list[tuple[str, int, int]], closer: str, line: int, column: int
) -> list[SyntaxDiagnostic]:
    opener = _CLOSERS[closer]
    if stack and stack[-1][0] == opener:
        stack.pop()
        return []
    depth = next((i for i in range(len(stack) - 1, -1, -1) if stack[i][0] == opener), None)
    if depth is None:
        return [
            SyntaxDiagnostic(
                message=f"Unexpected '{closer}'",
                line=line,
                column=column,
                level=DiagnosticLevel.ERROR,
                rule="unmatched-delimiter",
                suggestion=f"Remove '{closer}' or add a matching '{opener}'",
            )
        ]
    unclosed = stack[depth + 1 :]
    del stack[depth:]
    return [
        SyntaxDiagnostic(
            message=f"Unclosed '{inner}' before '{closer}'",
            line=inner_line,
            column=inner_column,
            level=DiagnosticLevel.ERROR,
            rule="unmatched-delimiter",
            suggestion=f"Add a matching '{_OPENERS[inner]}'",
        )
        for inner, inner_line, inner_column in unclosed
    ]


def _check_function_declarations(line: str, number: int) -> list[SyntaxDiagnostic]:
    found: list[SyntaxDiagnostic] = []
    for match in _FUNCTION_KEYWORD_RE.finditer(line):
        if _FUNCTION_TAIL_RE.match(line[match.end() :]) is None:
            found.append(
                SyntaxDiagnostic(
                    message="Malformed function declaration: expected '(' after function name",
                    line=number,
                    column=match.start() + 1,
                    level=DiagnosticLevel.ERROR,
                    rule="malformed-declaration",
                    suggestion="Add a parameter list, e.g. function name() { ... }",
                )
            )
    return found


def _check_statement_terminator(
    line: str, number: int, lines: list[str]
) -> SyntaxDiagnostic | None:
    stripped = line.strip()
    if not _ASSIGNMENT_STATEMENT_RE.match(stripped):
        return None
    if stripped.endswith(_CONTINUATION_SUFFIXES):
        return None
    if any(stripped.count(o) != stripped.count(c) for o, c in _OPENERS.items()):
        return None
    following = next((candidate.strip() for candidate in lines[number:] if candidate.strip()), "")
    if following.startswith((".", "?", ":", "+", "-", "*", "/", "|", "&", ")", "]")):
        return None
    return SyntaxDiagnostic(
        message="Missing semicolon",
        line=number,
        column=len(line.rstrip()) + 1,
        level=DiagnosticLevel.WARNING,
        rule="missing-semicolon",
        suggestion="Terminate the statement with ';'",
    )


def _check_unused_bindings(code: str) -> list[SyntaxDiagnostic]:
    found: list[SyntaxDiagnostic] = []
    line_starts = [0] + [i + 1 for i, char in enumerate(code) if char == "\n"]
    for match in _DECLARATION_RE.finditer(code):
        name = match.group(2)
        if name.startswith("_"):
            continue
        line_start = max(start for start in line_starts if start <= match.start())
        if code[line_start : match.start()].strip().startswith("export"):
            continue
        occurrences = re.findall(rf"(?<![\w$]){re.escape(name)}(?![\w$])", code)
        if len(occurrences) > 1:
            continue
        found.append(
            SyntaxDiagnostic(
                message=f"'{name}' is declared but never used",
                line=line_starts.index(line_start) + 1,
                column=match.start(2) - line_start + 1,
                level=DiagnosticLevel.HINT,
                rule="unused-binding",
                suggestion=f"Remove '{name}' or prefix it with '_'",
            )
        )
    return found


def _unused_python_imports(tree: ast.Module) -> tuple[SyntaxDiagnostic, ...]:
    imported: dict[str, ast.stmt] = {}
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                imported.setdefault(alias.asname or alias.name.split(".")[0], node)
        elif isinstance(node, ast.ImportFrom) and node.module != "__future__":
            for alias in node.names:
                if alias.name != "*":
                    imported.setdefault(alias.asname or alias.name, node)

    used = {node.id for node in ast.walk(tree) if isinstance(node, ast.Name)}
    exported = _dunder_all(tree)
    return tuple(
        SyntaxDiagnostic(
            message=f"'{name}' imported but unused",
            line=node.lineno,
            column=node.col_offset + 1,
            level=DiagnosticLevel.HINT,
            rule="unused-import",
            suggestion=f"Remove the import of '{name}'",
        )
        for name, node in sorted(imported.items(), key=lambda item: item[1].lineno)
        if name not in used and name not in exported
    )


def _dunder_all(tree: ast.Module) -> set[str]:
    for node in tree.body:
        if isinstance(node, ast.Assign) and any(
            isinstance(target, ast.Name) and target.id == "__all__" for target in node.targets
        ):
            if isinstance(node.value, (ast.List, ast.Tuple)):
                return {
                    element.value
                    for element in node.value.elts
                    if isinstance(element, ast.Constant) and isinstance(element.value, str)
                }
    return set()


__all__ = [
    "DiagnosticLevel",
    "PythonSyntaxParser",
    "ScriptSyntaxParser",
    "SyntaxDiagnostic",
    "SyntaxParser",
    "SyntaxSensor",
    "default_parsers",
    "prioritize",
]
