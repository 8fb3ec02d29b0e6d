"""Shared exception types for repodeck."""

from __future__ import annotations

from pathlib import Path


class RepoDeckError(Exception):
    """Base exception for all repodeck errors."""

    kind = "error"


class ConfigError(RepoDeckError):
    """Configuration is invalid or missing."""

    kind = "config"


class UnknownRepositoryError(RepoDeckError):
    """No repository is registered under the given identity."""

    kind = "unknown_repository"

    def __init__(self, repository_id: str) -> None:
        super().__init__(f"Unknown repository: {repository_id}")
        self.repository_id = repository_id


class GitError(RepoDeckError):
    """A git invocation could not produce a usable result."""

    kind = "git_error"


class CommandTimeoutError(GitError):
    """The subprocess overran its deadline and was killed."""

    kind = "timeout"

    def __init__(self, command: str, deadline: float, cwd: Path | str) -> None:
        super().__init__(f"Command timed out after {deadline:g}s: {command} (in {cwd})")
        self.command = command
        self.deadline = deadline
        self.cwd = str(cwd)


class SpawnError(GitError):
    """The executable could not be started at all."""

    kind = "spawn_failure"

    def __init__(self, command: str, reason: str) -> None:
        super().__init__(f"Failed to start {command}: {reason}")
        self.command = command
        self.reason = reason


class GitCommandError(GitError):
    """git ran but exited non-zero; subclasses carry the classified cause."""

    kind = "command_failed"

    def __init__(self, message: str, *, stderr: str = "", exit_code: int = 1) -> None:
        super().__init__(message)
        self.stderr = stderr
        self.exit_code = exit_code


class NotARepositoryError(GitCommandError):
    kind = "not_a_repository"


class MergeConflictError(GitCommandError):
    kind = "merge_conflict"


class NetworkError(GitCommandError):
    kind = "network"


class CommandFailedError(GitCommandError):
    kind = "command_failed"


class RepositoryBusyError(GitError):
    """Another state-changing operation is already running for the repository."""

    kind = "busy"

    def __init__(self, repository_id: str) -> None:
        super().__init__(
            f"Repository {repository_id} is busy, retry when the current operation finishes"
        )
        self.repository_id = repository_id
