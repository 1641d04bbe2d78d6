"""Auto-commit: propose a commit message, commit only on explicit approval.

``args["action"]`` selects the step:

* ``propose`` (default): stage the working-tree changes, draft a message with
  the model and validate it against the commit constraints.  The proposal is
  returned in ``result.metadata["proposal"]``; nothing is committed.
* ``apply``: commit the index with ``args["message"]``.
"""

from __future__ import annotations

import logging
import re
from typing import Sequence

from ..core.errors import ConfigurationError
from ..core.types import CodeLocation, Finding, ScanOptions, Severity, ToolId
from ..providers.base import ModelMessage
from ..services.settings import Settings
from ..vcs.git import GitRepository
from .base import BaseTool

__all__ = ["CommitTool", "validate_commit_message"]

LOGGER = logging.getLogger(__name__)

_MAX_DIFF_CHARS = 12_000
_CONVENTIONAL_RE = re.compile(r"^(?P<type>[a-z]+)(?:\([^)]+\))?!?: \S")

COMMIT_SYSTEM_PROMPT = """You write git commit messages.
Summarize the staged diff in one imperative subject line, optionally followed
by a blank line and a short body. Output only the commit message."""


class CommitTool(BaseTool):
    tool_id = ToolId.COMMIT
    name = "Auto-Commit"
    description = "Stage changed files and generate a commit message for approval."
    requires_model = True
    mutating = True

    async def run(self, options: ScanOptions) -> Sequence[Finding]:
        settings = self.deps.settings or Settings()
        repo = self.deps.vcs or GitRepository(self.deps.cwd)
        action = str(options.args.get("action", "propose")).lower()
        if action == "apply":
            return await self._apply(repo, options)
        if action != "propose":
            raise ConfigurationError(context=self.tool_id.value, message=f"Unknown commit action '{action}'")
        return await self._propose(repo, settings, options)

    async def _propose(self, repo: GitRepository, settings: Settings, options: ScanOptions) -> list[Finding]:
        changed = await repo.changed_files()
        self.files_scanned = len(changed)
        if not changed:
            return [
                self.create_finding(
                    title="Nothing to commit",
                    description="The working tree has no changes.",
                    location=CodeLocation(file_path=str(repo.cwd)),
                    severity=Severity.INFO,
                )
            ]

        self.throw_if_cancelled(options)
        if not any(item.staged for item in changed):
            await repo.stage(list(options.paths))
        diff = await repo.diff(staged=True)
        self.throw_if_cancelled(options)

        message = await self._draft_message(diff, settings)
        files = [item.path for item in changed]
        self.result_metadata["proposal"] = {"message": message, "files": files}
        LOGGER.info("Prepared commit proposal for %d file(s)", len(files))

        findings = [
            self.create_finding(
                title=title,
                description=detail,
                location=CodeLocation(file_path="COMMIT_EDITMSG", start_line=1, end_line=1),
                severity=Severity.WARNING,
                metadata={"source": "constraint"},
            )
            for title, detail in validate_commit_message(message, settings)
        ]
        return findings

    async def _apply(self, repo: GitRepository, options: ScanOptions) -> list[Finding]:
        message = str(options.args.get("message") or "").strip()
        if not message:
            raise ConfigurationError(context=self.tool_id.value, message="A commit message is required to apply")
        self.throw_if_cancelled(options)
        sha = await repo.commit(message)
        self.result_metadata["commit"] = {"sha": sha, "message": message}
        return [
            self.create_finding(
                title="Committed",
                description=f"Created commit {sha[:12]}: {message.splitlines()[0]}",
                location=CodeLocation(file_path=str(repo.cwd)),
                severity=Severity.INFO,
                metadata={"sha": sha},
            )
        ]

    async def _draft_message(self, diff: str, settings: Settings) -> str:
        provider = self.provider
        if provider is None:
            raise ConfigurationError(context=self.tool_id.value, message="A model provider is required to draft commits")
        constraints = f"Keep the subject under {settings.commit_max_subject_length} characters."
        if settings.commit_conventional:
            constraints += " Use a conventional commit prefix: " + ", ".join(settings.commit_allowed_types) + "."
        messages = [
            ModelMessage.system(f"{COMMIT_SYSTEM_PROMPT}\n{constraints}"),
            ModelMessage.user(diff[:_MAX_DIFF_CHARS] or "(empty diff)"),
        ]
        response = await self.send_request_with_timeout(
            lambda token: provider.send_request(messages, role="commit", cancellation=token),
            timeout=settings.model_timeout,
        )
        return response.content.strip().strip("`").strip()


def validate_commit_message(message: str, settings: Settings) -> list[tuple[str, str]]:
    """Return ``(title, detail)`` pairs for every violated constraint."""

    violations: list[tuple[str, str]] = []
    subject = message.splitlines()[0] if message else ""
    if not subject:
        violations.append(("Empty commit message", "The model returned an empty message."))
        return violations
    limit = settings.commit_max_subject_length
    if len(subject) > limit:
        violations.append(("Subject too long", f"Subject is {len(subject)} characters; the limit is {limit}."))
    if settings.commit_conventional:
        match = _CONVENTIONAL_RE.match(subject)
        if match is None:
            violations.append(("Not a conventional commit", "Subject should look like 'type(scope): summary'."))
        elif match.group("type") not in settings.commit_allowed_types:
            violations.append(
                ("Disallowed commit type", f"Type '{match.group('type')}' is not in the allowed list.")
            )
    return violations
