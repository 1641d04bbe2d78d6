"""Tests for the async git wrapper against a throwaway repository."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from aidev.core.errors import GitError
from aidev.vcs.git import ChangedFile, GitRepository, git_available

pytestmark = pytest.mark.skipif(not git_available(), reason="git executable not available")


def _git(cwd: Path, *args: str) -> None:
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True)


@pytest.fixture
def repo_dir(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    root.mkdir()
    _git(root, "init", "-q")
    _git(root, "symbolic-ref", "HEAD", "refs/heads/main")
    _git(root, "config", "user.name", "Test User")
    _git(root, "config", "user.email", "test@example.com")
    _git(root, "config", "commit.gpgsign", "false")
    (root / "a.py").write_text("x = 1\n", encoding="utf-8")
    _git(root, "add", "a.py")
    _git(root, "commit", "-q", "-m", "chore: initial")
    return root


class TestQueries:
    @pytest.mark.asyncio
    async def test_repo_detection(self, repo_dir: Path, tmp_path: Path) -> None:
        assert await GitRepository(repo_dir).is_repo() is True
        outside = tmp_path / "plain"
        outside.mkdir()
        assert await GitRepository(outside).is_repo() is False

    @pytest.mark.asyncio
    async def test_root_and_branch(self, repo_dir: Path) -> None:
        repo = GitRepository(repo_dir)
        assert (await repo.repo_root()).resolve() == repo_dir.resolve()
        assert await repo.current_branch() == "main"

    @pytest.mark.asyncio
    async def test_tracked_and_untracked_files(self, repo_dir: Path) -> None:
        (repo_dir / "b.py").write_text("y = 2\n", encoding="utf-8")
        repo = GitRepository(repo_dir)

        assert await repo.tracked_files() == ["a.py"]
        assert sorted(await repo.tracked_files(include_untracked=True)) == ["a.py", "b.py"]

    @pytest.mark.asyncio
    async def test_changed_files_and_diff(self, repo_dir: Path) -> None:
        (repo_dir / "a.py").write_text("x = 2\n", encoding="utf-8")
        (repo_dir / "b.py").write_text("y = 2\n", encoding="utf-8")
        repo = GitRepository(repo_dir)

        changed = await repo.changed_files()

        assert sorted(changed, key=lambda item: item.path) == [
            ChangedFile(status=" M", path="a.py"),
            ChangedFile(status="??", path="b.py"),
        ]
        assert not any(item.staged for item in changed)
        assert "+x = 2" in await repo.diff()
        assert await repo.diff(staged=True) == ""

    @pytest.mark.asyncio
    async def test_log(self, repo_dir: Path) -> None:
        commits = await GitRepository(repo_dir).log(5)

        assert len(commits) == 1
        assert commits[0].subject == "chore: initial"
        assert commits[0].author == "Test User"
        assert len(commits[0].sha) == 40


class TestMutations:
    @pytest.mark.asyncio
    async def test_stage_and_commit(self, repo_dir: Path) -> None:
        (repo_dir / "b.py").write_text("y = 2\n", encoding="utf-8")
        repo = GitRepository(repo_dir)

        await repo.stage()
        assert await repo.changed_files(staged_only=True) == [ChangedFile(status="A ", path="b.py")]

        sha = await repo.commit("feat: add b")

        assert (await repo.log(1))[0].sha == sha
        assert await repo.changed_files() == []

    @pytest.mark.asyncio
    async def test_empty_message_is_rejected(self, repo_dir: Path) -> None:
        with pytest.raises(GitError):
            await GitRepository(repo_dir).commit("   ")

    @pytest.mark.asyncio
    async def test_failures_raise_git_error(self, tmp_path: Path) -> None:
        with pytest.raises(GitError) as excinfo:
            await GitRepository(tmp_path).repo_root()
        assert excinfo.value.context == "rev-parse"
        assert excinfo.value.exit_code != 0
