"""Tests for the auto-commit tool."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

import pytest

from aidev.core.types import ScanOptions, ScanStatus, Severity
from aidev.services.settings import Settings
from aidev.tools.base import ToolDeps
from aidev.tools.commit import CommitTool, validate_commit_message
from aidev.vcs.git import ChangedFile


class FakeRepo:
    def __init__(self, cwd: Path, changed: Sequence[ChangedFile] = ()) -> None:
        self.cwd = cwd
        self.changed = list(changed)
        self.staged_paths: list[list[str]] = []
        self.commits: list[str] = []

    async def changed_files(self, *, staged_only: bool = False) -> list[ChangedFile]:
        return list(self.changed)

    async def stage(self, paths: Sequence[str] = ()) -> None:
        self.staged_paths.append(list(paths))

    async def diff(self, *, staged: bool = False, ref=None, paths=()) -> str:
        return "diff --git a/a.py b/a.py\n+print('hi')\n" if staged else ""

    async def commit(self, message: str) -> str:
        self.commits.append(message)
        return "0123456789abcdef0123"


def _tool(repo: FakeRepo, provider=None, settings: Settings | None = None) -> CommitTool:
    return CommitTool(ToolDeps(cwd=repo.cwd, provider=provider, settings=settings or Settings(), vcs=repo))


# ---------------------------------------------------------------------------
# Message validation
# ---------------------------------------------------------------------------


class TestValidateCommitMessage:
    def test_valid_conventional_message(self) -> None:
        assert validate_commit_message("feat(parser): support tabs\n\nBody text.", Settings()) == []

    def test_empty_message(self) -> None:
        assert [title for title, _ in validate_commit_message("", Settings())] == ["Empty commit message"]

    def test_long_non_conventional_subject(self) -> None:
        titles = [title for title, _ in validate_commit_message("Update " + "x" * 80, Settings())]
        assert titles == ["Subject too long", "Not a conventional commit"]

    def test_disallowed_type(self) -> None:
        titles = [title for title, _ in validate_commit_message("perf: faster loop", Settings())]
        assert titles == ["Disallowed commit type"]

    def test_conventional_check_can_be_disabled(self) -> None:
        assert validate_commit_message("Update readme", Settings(commit_conventional=False)) == []


# ---------------------------------------------------------------------------
# Tool actions
# ---------------------------------------------------------------------------


class TestCommitTool:
    @pytest.mark.asyncio
    async def test_nothing_to_commit(self, tmp_path: Path, fake_provider) -> None:
        result = await _tool(FakeRepo(tmp_path), fake_provider).execute()

        assert result.status is ScanStatus.COMPLETED
        assert [finding.title for finding in result.findings] == ["Nothing to commit"]
        assert result.findings[0].severity is Severity.INFO
        assert fake_provider.requests == []

    @pytest.mark.asyncio
    async def test_propose_stages_and_drafts_message(self, tmp_path: Path, fake_provider) -> None:
        repo = FakeRepo(tmp_path, [ChangedFile(status=" M", path="a.py"), ChangedFile(status="??", path="b.py")])
        fake_provider.replies = ["`feat: add greeting`"]

        result = await _tool(repo, fake_provider).execute(ScanOptions.create(["a.py"]))

        assert result.status is ScanStatus.COMPLETED
        assert result.findings == ()
        assert result.metadata["proposal"] == {"message": "feat: add greeting", "files": ["a.py", "b.py"]}
        assert repo.staged_paths == [["a.py"]]
        assert repo.commits == []
        assert fake_provider.requests[0]["role"] == "commit"
        assert "print('hi')" in fake_provider.requests[0]["messages"][1].content

    @pytest.mark.asyncio
    async def test_propose_keeps_existing_index(self, tmp_path: Path, fake_provider) -> None:
        repo = FakeRepo(tmp_path, [ChangedFile(status="M ", path="a.py")])
        fake_provider.replies = ["fix: handle empty input"]

        await _tool(repo, fake_provider).execute()

        assert repo.staged_paths == []

    @pytest.mark.asyncio
    async def test_constraint_violations_become_warnings(self, tmp_path: Path, fake_provider) -> None:
        repo = FakeRepo(tmp_path, [ChangedFile(status="M ", path="a.py")])
        fake_provider.replies = ["Updated some stuff"]

        result = await _tool(repo, fake_provider).execute()

        assert [finding.title for finding in result.findings] == ["Not a conventional commit"]
        assert result.findings[0].severity is Severity.WARNING
        assert result.findings[0].metadata["source"] == "constraint"

    @pytest.mark.asyncio
    async def test_propose_without_provider_fails(self, tmp_path: Path) -> None:
        repo = FakeRepo(tmp_path, [ChangedFile(status="M ", path="a.py")])

        result = await _tool(repo).execute()

        assert result.status is ScanStatus.FAILED
        assert result.error == "A model provider is required to draft commits"

    @pytest.mark.asyncio
    async def test_apply_commits_message(self, tmp_path: Path) -> None:
        repo = FakeRepo(tmp_path)

        result = await _tool(repo).execute(ScanOptions.create(args={"action": "apply", "message": " fix: x \n"}))

        assert repo.commits == ["fix: x"]
        assert result.metadata["commit"] == {"sha": "0123456789abcdef0123", "message": "fix: x"}
        assert result.findings[0].title == "Committed"
        assert result.findings[0].description == "Created commit 0123456789ab: fix: x"

    @pytest.mark.asyncio
    async def test_apply_requires_message(self, tmp_path: Path) -> None:
        repo = FakeRepo(tmp_path)

        result = await _tool(repo).execute(ScanOptions.create(args={"action": "apply"}))

        assert result.status is ScanStatus.FAILED
        assert repo.commits == []

    @pytest.mark.asyncio
    async def test_unknown_action(self, tmp_path: Path) -> None:
        result = await _tool(FakeRepo(tmp_path)).execute(ScanOptions.create(args={"action": "amend"}))

        assert result.status is ScanStatus.FAILED
        assert result.error == "Unknown commit action 'amend'"
