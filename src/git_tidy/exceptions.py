"""Errors raised by git-tidy."""

from typing import Optional


class GitTidyError(Exception):
    """Base error for git-tidy."""


class ConfigError(GitTidyError):
    """Invalid configuration file, pattern or flag value."""

    def __init__(self, message: str, source: Optional[str] = None) -> None:
        """Initialize error.

        Args:
            message: What is wrong
            source: Where the bad value came from (CLI flag, project file, global file)
        """
        if source:
            message = f"{message} in {source}"
        super().__init__(message)
        self.source = source


class RepositoryError(GitTidyError):
    """Repository cannot be opened or is in an unusable state."""


class DeletionError(GitTidyError):
    """A single branch could not be deleted."""

    def __init__(self, branch: str, reason: str) -> None:
        super().__init__(f"Failed to delete {branch}: {reason}")
        self.branch = branch
        self.reason = reason
