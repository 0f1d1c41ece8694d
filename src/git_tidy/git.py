"""Git repository operations."""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from git_tidy.exceptions import DeletionError, RepositoryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BranchRecord:
    """A local branch as seen at the start of a run."""

    name: str
    merged: bool
    last_commit: datetime
    is_current: bool


class GitRepo:
    """Git repository operations."""

    def __init__(self, path: Path) -> None:
        """Open the repository containing path.

        Raises:
            RepositoryError: If path is not inside a non-bare repository
        """
        try:
            self.repo: Repo = Repo(path, search_parent_directories=True)
        except (GitCommandError, ValueError, InvalidGitRepositoryError, NoSuchPathError) as err:
            raise RepositoryError(f"Failed to open repository: {err}") from err
        if self.repo.bare:
            raise RepositoryError("Cannot operate on bare repository")

    @property
    def working_dir(self) -> Path:
        return Path(self.repo.working_tree_dir)

    def get_current_branch_name(self) -> str:
        """Get current branch name, or an empty string on a detached HEAD."""
        try:
            try:
                return self.repo.active_branch.name
            except TypeError:
                # Detached HEAD
                return ""
        except (GitCommandError, ValueError) as err:
            raise RepositoryError(f"Failed to get current branch: {err}") from err

    def resolve_base_branch(self, configured: Optional[str] = None) -> str:
        """Pick the branch that merge status is measured against.

        Args:
            configured: Base branch from configuration; the current branch if not set

        Raises:
            RepositoryError: On a detached HEAD without a configured base, or a missing base
        """
        base = configured or self.get_current_branch_name()
        if not base:
            raise RepositoryError("HEAD is detached. Check out a branch or pass --base to choose a base branch")
        if base not in self.repo.heads:
            raise RepositoryError(f"Base branch '{base}' not found")
        return base

    def list_branches(self, base_branch: Optional[str] = None) -> list[BranchRecord]:
        """List local branches, most recent commit first.

        A branch is merged when its tip is an ancestor of the base branch tip.
        """
        base = self.resolve_base_branch(base_branch)
        current = self.get_current_branch_name()
        try:
            base_commit = self.repo.heads[base].commit
            branches = []
            for head in self.repo.heads:
                commit = head.commit
                branches.append(
                    BranchRecord(
                        name=head.name,
                        merged=self.repo.is_ancestor(commit, base_commit),
                        last_commit=commit.committed_datetime,
                        is_current=head.name == current,
                    )
                )
        except (GitCommandError, ValueError) as err:
            raise RepositoryError(f"Failed to list branches: {err}") from err

        logger.debug("Found %d local branches, merge base %s", len(branches), base)
        return sorted(branches, key=lambda branch: branch.last_commit, reverse=True)

    def delete_branch(self, branch_name: str) -> bool:
        """Delete a local branch.

        The branch is skipped when it has become the current branch since it was listed.

        Returns:
            True if deleted, False if skipped

        Raises:
            DeletionError: If git refuses to delete the branch
        """
        if branch_name == self.get_current_branch_name():
            logger.debug("Skipping %s: it is now the current branch", branch_name)
            return False

        try:
            # -D: merge status was already judged against the configured base branch
            self.repo.delete_head(branch_name, force=True)
        except GitCommandError as err:
            reason = str(err.stderr).strip().removeprefix("stderr: ").strip("'").strip() or str(err)
            raise DeletionError(branch_name, reason) from err

        logger.debug("Deleted %s", branch_name)
        return True
