"""Best-effort classification of failed git invocations.

Matching is done on English substrings; the runner pins the subprocess
locale so these stay stable.
"""

from __future__ import annotations

from repodeck.exceptions import (
    CommandFailedError,
    GitCommandError,
    MergeConflictError,
    NetworkError,
    NotARepositoryError,
)
from repodeck.git.models import CommandResult

_NOT_A_REPOSITORY = ("not a git repository",)
_MERGE_CONFLICT = ("conflict", "merge")
_NETWORK = ("could not resolve host", "network")


def classify_failure(result: CommandResult) -> GitCommandError:
    """Map a non-zero ``CommandResult`` to the matching error (not raised)."""
    stderr = result.stderr.strip()
    stdout = result.stdout.strip()
    lowered = stderr.lower()

    if any(marker in lowered for marker in _NOT_A_REPOSITORY):
        return NotARepositoryError(
            "Not a git repository", stderr=stderr, exit_code=result.exit_code
        )
    if any(marker in lowered for marker in _MERGE_CONFLICT):
        return MergeConflictError(
            "Merge conflict, resolve it before continuing",
            stderr=stderr,
            exit_code=result.exit_code,
        )
    if any(marker in lowered for marker in _NETWORK):
        return NetworkError(
            f"Network error: {stderr}", stderr=stderr, exit_code=result.exit_code
        )
    return CommandFailedError(
        stderr or stdout or f"git exited with status {result.exit_code}",
        stderr=stderr,
        exit_code=result.exit_code,
    )
