"""Async access to a git working tree.

Every query shells out to the ``git`` executable through
``asyncio.create_subprocess_exec``; a non-zero exit becomes :class:`GitError`
carrying the exit code and stderr.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from ..core.errors import GitError

__all__ = ["GitRepository", "CommitInfo", "BlameLine", "ChangedFile", "git_available"]

LOGGER = logging.getLogger(__name__)

_LOG_SEPARATOR = "\x1f"
_RECORD_SEPARATOR = "\x1e"


def git_available() -> bool:
    return shutil.which("git") is not None


@dataclass(slots=True, frozen=True)
class CommitInfo:
    sha: str
    author: str
    date: str
    subject: str


@dataclass(slots=True, frozen=True)
class ChangedFile:
    status: str
    path: str

    @property
    def staged(self) -> bool:
        return self.status[:1] not in (" ", "?")


@dataclass(slots=True, frozen=True)
class BlameLine:
    line: int
    sha: str
    author: str
    content: str


class GitRepository:
    """Thin async wrapper over the ``git`` CLI for one working tree."""

    def __init__(self, cwd: Path | str, *, executable: str = "git", timeout: float = 30.0) -> None:
        self._cwd = Path(cwd)
        self._executable = executable
        self._timeout = timeout

    @property
    def cwd(self) -> Path:
        return self._cwd

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------

    async def is_repo(self) -> bool:
        try:
            output = await self._run("rev-parse", "--is-inside-work-tree")
        except GitError:
            return False
        return output.strip() == "true"

    async def repo_root(self) -> Path:
        output = await self._run("rev-parse", "--show-toplevel")
        return Path(output.strip())

    async def current_branch(self) -> str:
        output = await self._run("rev-parse", "--abbrev-ref", "HEAD")
        return output.strip()

    async def tracked_files(self, paths: Sequence[str] = (), *, include_untracked: bool = False) -> list[str]:
        args = ["ls-files", "-z", "--cached"]
        if include_untracked:
            args.extend(["--others", "--exclude-standard"])
        output = await self._run(*args, "--", *paths)
        return [item for item in output.split("\0") if item]

    async def changed_files(self, *, staged_only: bool = False) -> list[ChangedFile]:
        output = await self._run("status", "--porcelain=v1", "-z", "--untracked-files=all")
        entries: list[ChangedFile] = []
        records = iter(output.split("\0"))
        for record in records:
            if len(record) < 4:
                continue
            status, path = record[:2], record[3:]
            if status[0] in ("R", "C"):
                # Renames carry the original path as the next record.
                next(records, None)
            entry = ChangedFile(status=status, path=path)
            if staged_only and not entry.staged:
                continue
            entries.append(entry)
        return entries

    async def diff(self, *, staged: bool = False, ref: str | None = None, paths: Sequence[str] = ()) -> str:
        args = ["diff", "--no-color"]
        if staged:
            args.append("--cached")
        if ref:
            args.append(ref)
        args.append("--")
        args.extend(paths)
        return await self._run(*args)

    async def log(self, limit: int = 20, *, ref: str | None = None, paths: Sequence[str] = ()) -> list[CommitInfo]:
        fmt = _LOG_SEPARATOR.join(("%H", "%an", "%aI", "%s")) + _RECORD_SEPARATOR
        args = ["log", f"-n{max(1, int(limit))}", f"--format={fmt}"]
        if ref:
            args.append(ref)
        args.append("--")
        args.extend(paths)
        output = await self._run(*args)
        commits: list[CommitInfo] = []
        for record in output.split(_RECORD_SEPARATOR):
            fields = record.strip().split(_LOG_SEPARATOR)
            if len(fields) != 4:
                continue
            commits.append(CommitInfo(sha=fields[0], author=fields[1], date=fields[2], subject=fields[3]))
        return commits

    async def blame(self, path: str, start_line: int, end_line: int) -> list[BlameLine]:
        output = await self._run("blame", "--line-porcelain", "-L", f"{start_line},{end_line}", "--", path)
        lines: list[BlameLine] = []
        sha = author = ""
        line_number = 0
        for raw in output.splitlines():
            if raw.startswith("\t"):
                lines.append(BlameLine(line=line_number, sha=sha, author=author, content=raw[1:]))
                continue
            parts = raw.split(" ")
            if len(parts) >= 3 and len(parts[0]) == 40:
                sha = parts[0]
                line_number = int(parts[2])
            elif raw.startswith("author "):
                author = raw[len("author ") :]
        return lines

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def stage(self, paths: Sequence[str] = ()) -> None:
        if paths:
            await self._run("add", "--", *paths)
        else:
            await self._run("add", "--all")

    async def commit(self, message: str) -> str:
        """Create a commit from the index and return its sha."""

        if not message.strip():
            raise GitError(message="Commit message must not be empty")
        await self._run("commit", "-m", message)
        output = await self._run("rev-parse", "HEAD")
        return output.strip()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run(self, *args: str) -> str:
        command = (self._executable, *args)
        LOGGER.debug("Running %s in %s", " ".join(command), self._cwd)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(self._cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, NotADirectoryError) as exc:
            raise GitError(message=f"Unable to run git: {exc}", context=args[0] if args else None) from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise GitError(
                message=f"git {args[0] if args else ''} timed out after {self._timeout:g}s",
                context=args[0] if args else None,
            ) from exc

        if process.returncode != 0:
            error_text = stderr.decode("utf-8", errors="replace").strip()
            raise GitError(
                message=f"git {args[0] if args else ''} failed: {error_text or 'exit ' + str(process.returncode)}",
                context=args[0] if args else None,
                exit_code=process.returncode,
                stderr=error_text,
            )
        return stdout.decode("utf-8", errors="replace")
