"""Version-control access layer."""

from .git import BlameLine, ChangedFile, CommitInfo, GitRepository, git_available

__all__ = ["BlameLine", "ChangedFile", "CommitInfo", "GitRepository", "git_available"]
