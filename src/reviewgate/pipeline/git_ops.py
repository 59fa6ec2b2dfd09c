"""Commit-and-diff collaborator backed by GitPython.

The review orchestrator only needs one source-control operation: stage the
whole working tree, commit it, and hand back the commit identifier together
with the full diff that commit introduced.

Example usage:
    >>> provider = GitCommitProvider(GitConfig())
    >>> result = await provider.commit_and_diff("/workspace/repo", "feat: add X")
    >>> result.commit_sha, len(result.diff)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

import git
from git import Actor, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from reviewgate.config import GitConfig
from reviewgate.logging import get_logger
from reviewgate.review.errors import CommitError, NoChangesError

# Hash of git's empty tree; diffing against it yields a root commit's full patch.
EMPTY_TREE_SHA = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"


@dataclass(frozen=True)
class CommitResult:
    """Result of a commit-and-diff call.

    Attributes:
        commit_sha: Full SHA of the created commit.
        diff: Unified diff introduced by the commit.
    """

    commit_sha: str
    diff: str


@runtime_checkable
class CommitProvider(Protocol):
    """Atomic "commit the working tree and return hash + diff" operation."""

    async def commit_and_diff(self, workdir: str, message: str) -> CommitResult: ...


class GitCommitProvider:
    """CommitProvider implementation using GitPython.

    GitPython is blocking, so each call runs in a worker thread.

    Attributes:
        config: Git configuration (commit author identity).
        logger: Structured logger instance.
    """

    def __init__(self, config: GitConfig | None = None) -> None:
        self.config = config or GitConfig()
        self.logger = get_logger(__name__)

    async def commit_and_diff(self, workdir: str, message: str) -> CommitResult:
        """Stage all changes in ``workdir``, commit, and return hash + diff.

        Raises:
            NoChangesError: If the working tree has nothing to commit.
            CommitError: If the path is not a repository or git fails.
        """
        return await asyncio.to_thread(self._commit_and_diff, workdir, message)

    def _open_repo(self, workdir: str) -> git.Repo:
        path = Path(workdir)
        try:
            return git.Repo(path)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            self.logger.error("git_repo_invalid", workdir=workdir, error=str(e))
            raise CommitError(f"Not a git repository: {workdir}") from e

    def _has_staged_changes(self, repo: git.Repo) -> bool:
        if repo.head.is_valid():
            return bool(repo.index.diff("HEAD"))
        # No commits yet: anything in the index is new.
        return bool(repo.index.entries)

    def _author(self) -> Actor | None:
        if self.config.author_name and self.config.author_email:
            return Actor(self.config.author_name, self.config.author_email)
        return None

    def _landed_commit(self, repo: git.Repo, message: str) -> git.Commit | None:
        """Return HEAD if it is an earlier commit made with ``message``."""
        if not repo.head.is_valid():
            return None
        head = repo.head.commit
        if head.message.strip() != message.strip():
            return None
        return head

    def _diff(self, repo: git.Repo, commit: git.Commit, first: git.Commit | None = None) -> str:
        """Diff from the parent of ``first`` (default ``commit``) to ``commit``."""
        first = first or commit
        parent = first.parents[0].hexsha if first.parents else EMPTY_TREE_SHA
        return repo.git.diff(parent, commit.hexsha)

    def _commit_and_diff(self, workdir: str, message: str) -> CommitResult:
        repo = self._open_repo(workdir)
        try:
            repo.git.add(A=True)
            self.logger.debug("all_changes_staged", workdir=workdir)

            # A timed-out call may have committed after its caller gave up.
            landed = self._landed_commit(repo, message)
            if not self._has_staged_changes(repo):
                if landed is None:
                    self.logger.warning("nothing_to_commit", workdir=workdir, message=message)
                    raise NoChangesError(f"No changes to commit in {workdir}")
                self.logger.info(
                    "commit_already_landed",
                    commit_sha=landed.hexsha[:8],
                    full_sha=landed.hexsha,
                    message=message,
                )
                return CommitResult(commit_sha=landed.hexsha, diff=self._diff(repo, landed))

            author = self._author()
            commit = repo.index.commit(message, author=author, committer=author)
            diff = self._diff(repo, commit, first=landed)

            self.logger.info(
                "commit_created",
                commit_sha=commit.hexsha[:8],
                full_sha=commit.hexsha,
                message=message,
                diff_chars=len(diff),
            )
            return CommitResult(commit_sha=commit.hexsha, diff=diff)

        except GitCommandError as e:
            self.logger.error(
                "commit_failed",
                workdir=workdir,
                message=message,
                error=str(e),
            )
            raise CommitError(f"git commit failed in {workdir}: {e}") from e
        finally:
            repo.close()
