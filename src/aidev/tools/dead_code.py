"""Dead code discovery.

Each tracked source file gets two passes, files running in bounded batches:

1. a static pass of cheap regular expressions (commented-out blocks, empty
   exports, ...), always run;
2. a model pass that asks the provider for unused functions, unreachable code
   and dead branches, only when a provider is present.

Overlapping findings are collapsed, preferring model findings.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Iterable, Sequence

from ..core.errors import ToolCancelledError
from ..core.types import CodeLocation, Finding, ScanOptions, Severity, ToolId
from ..providers.base import ModelMessage
from ..services.settings import Settings
from ..vcs.git import GitRepository
from .base import BaseTool

__all__ = ["DeadCodeTool", "STATIC_PATTERNS", "run_static_patterns", "parse_model_response", "deduplicate_findings"]

LOGGER = logging.getLogger(__name__)

EXT_TO_LANGUAGE = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".py": "python",
}


@dataclass(slots=True, frozen=True)
class StaticPattern:
    name: str
    pattern: re.Pattern[str]
    languages: tuple[str, ...]
    description: str


_COMMENTED_CODE_DESCRIPTION = (
    "Block of commented-out code. Consider removing it; version control preserves history."
)

STATIC_PATTERNS: tuple[StaticPattern, ...] = (
    StaticPattern(
        name="Unused import",
        pattern=re.compile(
            r"""^import\s+(?:type\s+)?(?:\{[^}]*\}|\*\s+as\s+\w+|\w+)\s+from\s+['"][^'"]+['"];?[ \t]*$""",
            re.MULTILINE,
        ),
        languages=("typescript", "javascript"),
        description="Import may be unused. Verify with your bundler or linter.",
    ),
    StaticPattern(
        name="Empty export",
        pattern=re.compile(r"^export\s*\{\s*\};?[ \t]*$", re.MULTILINE),
        languages=("typescript", "javascript"),
        description="Empty export statement; serves no purpose unless converting to a module.",
    ),
    StaticPattern(
        name="Commented-out code block",
        pattern=re.compile(
            r"(?://[ \t]*(?:const|let|var|function|class|import|export|if|for|while|return|async)\s+.+\n?){3,}",
            re.MULTILINE,
        ),
        languages=("typescript", "javascript"),
        description=_COMMENTED_CODE_DESCRIPTION,
    ),
    StaticPattern(
        name="Commented-out code block (Python)",
        pattern=re.compile(
            r"(?:#[ \t]*(?:def|class|import|from|if|for|while|return|async)\s+.+\n?){3,}",
            re.MULTILINE,
        ),
        languages=("python",),
        description=_COMMENTED_CODE_DESCRIPTION,
    ),
    StaticPattern(
        name="Unused variable pattern",
        pattern=re.compile(r"^[ \t]*(?:const|let|var)\s+_\w+\s*=", re.MULTILINE),
        languages=("typescript", "javascript"),
        description="Variable prefixed with underscore suggests it is intentionally unused, but verify.",
    ),
)

MODEL_SYSTEM_PROMPT = """You are a dead code detector. Analyze the source file and identify:
1. Unused functions/methods that are never called within this file or exported
2. Unused variables or constants
3. Unreachable code (after return/throw/break statements)
4. Unused imports (if you can determine they're not used in the file)
5. Dead conditional branches (conditions that are always true/false)

For each finding, output one line in this exact format:
TYPE|LINE_START|LINE_END|DESCRIPTION

TYPE is one of: UNUSED_FUNCTION, UNUSED_VARIABLE, UNREACHABLE, UNUSED_IMPORT, DEAD_BRANCH
LINE_START and LINE_END are 1-based line numbers.

Only report findings you are confident about. Do NOT report:
- Exported functions (they may be used elsewhere)
- Framework lifecycle methods
- Decorator-annotated methods
- Test setup/teardown functions
If there are no findings, output: NONE"""

_TYPE_TO_TITLE = {
    "UNUSED_FUNCTION": "Unused function",
    "UNUSED_VARIABLE": "Unused variable",
    "UNREACHABLE": "Unreachable code",
    "UNUSED_IMPORT": "Unused import",
    "DEAD_BRANCH": "Dead conditional branch",
}


class DeadCodeTool(BaseTool):
    tool_id = ToolId.DEAD_CODE
    name = "Dead Code Discovery"
    description = "Find unused exports, unreachable code, unused files, and dead variables."

    async def run(self, options: ScanOptions) -> Sequence[Finding]:
        settings = self.deps.settings or Settings()
        repo = self.deps.vcs or GitRepository(self.deps.cwd)
        root = await repo.repo_root()

        files = await self._collect_files(repo, settings, options.paths)
        self.files_scanned = len(files)
        if not files:
            return [
                self.create_finding(
                    title="No files to scan",
                    description="No matching source files found for the configured languages.",
                    location=CodeLocation(file_path=str(root)),
                    severity=Severity.INFO,
                )
            ]

        # Each file is reported only once both passes over it have settled, so
        # a cancelled run holds complete per-file results.
        results = await self.process_in_batches(
            files,
            lambda file_path: self._scan_file(root, file_path, settings, options),
            concurrency=settings.batch_size,
            options=options,
        )
        findings: list[Finding] = []
        for value in results:
            if isinstance(value, Finding):
                findings.append(value)
            elif value:
                findings.extend(value)
        return deduplicate_findings(findings)

    async def _collect_files(
        self, repo: GitRepository, settings: Settings, paths: Sequence[str]
    ) -> list[str]:
        valid_exts = {ext for ext, language in EXT_TO_LANGUAGE.items() if language in settings.enabled_languages}
        listed = await repo.tracked_files(paths, include_untracked=True)
        files = [item for item in listed if PurePosixPath(item).suffix in valid_exts]
        return files[: max(0, settings.max_files_per_run)]

    async def _scan_file(
        self, root: Path, file_path: str, settings: Settings, options: ScanOptions
    ) -> list[Finding]:
        language = EXT_TO_LANGUAGE.get(PurePosixPath(file_path).suffix)
        if language is None:
            return []
        self.throw_if_cancelled(options)
        try:
            content = await asyncio.to_thread(_read_text, root / file_path)
        except OSError as exc:
            LOGGER.warning("Unable to read %s: %s", file_path, exc)
            return [self.create_error_finding(file_path, exc, "Read")]

        findings = [self.create_finding(**partial) for partial in run_static_patterns(content, file_path, language)]
        if self.provider is not None and content:
            try:
                findings.extend(await self._analyze_with_model(content, file_path, settings))
            except ToolCancelledError:
                raise
            except Exception as exc:
                LOGGER.warning("Model analysis failed for %s: %s", file_path, exc)
                findings.append(self.create_error_finding(file_path, exc, "Model analysis"))
        return deduplicate_findings(findings)

    async def _analyze_with_model(self, content: str, file_path: str, settings: Settings) -> list[Finding]:
        provider = self.provider
        if provider is None:
            return []
        truncated = content[: settings.max_file_content_length]
        messages = [
            ModelMessage.system(MODEL_SYSTEM_PROMPT),
            ModelMessage.user(f"File: {file_path}\n\n```\n{truncated}\n```"),
        ]
        response = await self.send_request_with_timeout(
            lambda token: provider.send_request(messages, role="tool", cancellation=token),
            timeout=settings.model_timeout,
        )
        return [self.create_finding(**partial) for partial in parse_model_response(response.content, file_path)]


def run_static_patterns(content: str, file_path: str, language: str) -> list[dict[str, Any]]:
    """Return finding fields for every static pattern match in ``content``."""

    partials: list[dict[str, Any]] = []
    for pattern in STATIC_PATTERNS:
        if language not in pattern.languages:
            continue
        for match in pattern.pattern.finditer(content):
            start_line = content.count("\n", 0, match.start()) + 1
            end_line = start_line + match.group(0).rstrip("\n").count("\n")
            partials.append(
                {
                    "title": pattern.name,
                    "description": pattern.description,
                    "location": CodeLocation(file_path=file_path, start_line=start_line, end_line=end_line),
                    "severity": Severity.WARNING,
                    "metadata": {"source": "static", "pattern": pattern.name},
                }
            )
    return partials


def parse_model_response(content: str, file_path: str) -> list[dict[str, Any]]:
    """Parse ``TYPE|LINE_START|LINE_END|DESCRIPTION`` lines; malformed lines are skipped."""

    if content.strip() == "NONE":
        return []
    partials: list[dict[str, Any]] = []
    for line in content.splitlines():
        parts = line.split("|")
        if len(parts) < 4:
            continue
        kind = parts[0].strip()
        title = _TYPE_TO_TITLE.get(kind)
        if title is None:
            continue
        try:
            start_line = int(parts[1].strip())
            end_line = int(parts[2].strip())
        except ValueError:
            continue
        partials.append(
            {
                "title": title,
                "description": "|".join(parts[3:]).strip(),
                "location": CodeLocation(file_path=file_path, start_line=start_line, end_line=end_line),
                "severity": Severity.WARNING,
                "metadata": {"source": "model", "type": kind},
            }
        )
    return partials


def deduplicate_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Collapse findings on the same file and line range; model findings win over static ones."""

    seen: dict[tuple[str, int, int], Finding] = {}
    for finding in findings:
        key = (finding.location.file_path, finding.location.start_line, finding.location.end_line)
        existing = seen.get(key)
        if existing is None:
            seen[key] = finding
        elif existing.metadata.get("source") == "static" and finding.metadata.get("source") == "model":
            seen[key] = finding
    return list(seen.values())


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")
