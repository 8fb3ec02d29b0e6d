"""Data models for git invocations and parsed repository state."""

from __future__ import annotations

import posixpath
import uuid
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

FileKind = Literal[
    "modified",
    "added",
    "deleted",
    "renamed",
    "copied",
    "untracked",
    "ignored",
    "conflicted",
]


class CommandSpec(BaseModel):
    """One fully-resolved subprocess invocation."""

    model_config = ConfigDict(frozen=True)

    executable: str
    args: tuple[str, ...] = ()
    cwd: Path
    env: dict[str, str] | None = None
    deadline: float = Field(gt=0)


class CommandResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    stdout: str = ""
    stderr: str = ""
    exit_code: int

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class FileChange(BaseModel):
    """A single staged or unstaged change reported by git status."""

    model_config = ConfigDict(frozen=True)

    path: str
    kind: FileKind
    staged: bool = False
    prior_path: str | None = None

    @model_validator(mode="after")
    def _prior_path_only_for_renames(self) -> FileChange:
        if self.prior_path is not None and self.kind != "renamed":
            raise ValueError("prior_path is only valid for renamed entries")
        return self

    @property
    def file_name(self) -> str:
        return posixpath.basename(self.path.rstrip("/"))

    @property
    def directory(self) -> str:
        return posixpath.dirname(self.path.rstrip("/"))


def _unique_by_path(changes: list[FileChange]) -> list[FileChange]:
    seen: set[str] = set()
    unique: list[FileChange] = []
    for change in changes:
        if change.path in seen:
            continue
        seen.add(change.path)
        unique.append(change)
    return unique


class RepositoryStatus(BaseModel):
    """Parsed output of git status for one working tree."""

    model_config = ConfigDict(frozen=True)

    current_branch: str
    upstream: str | None = None
    ahead: int = 0
    behind: int = 0
    staged_files: list[FileChange] = []
    modified_files: list[FileChange] = []
    untracked_files: list[FileChange] = []
    conflicted_files: list[FileChange] = []

    @classmethod
    def from_changes(
        cls,
        changes: list[FileChange],
        *,
        current_branch: str,
        upstream: str | None = None,
        ahead: int = 0,
        behind: int = 0,
    ) -> RepositoryStatus:
        """Bucket flat change records into the four status lists."""
        return cls(
            current_branch=current_branch,
            upstream=upstream,
            ahead=ahead,
            behind=behind,
            staged_files=_unique_by_path([c for c in changes if c.staged]),
            modified_files=_unique_by_path(
                [c for c in changes if not c.staged and c.kind != "untracked"]
            ),
            untracked_files=_unique_by_path(
                [c for c in changes if c.kind == "untracked"]
            ),
            conflicted_files=_unique_by_path(
                [c for c in changes if c.kind == "conflicted"]
            ),
        )

    @property
    def total_changed_count(self) -> int:
        # Conflicted entries are already counted in one of the other lists.
        return (
            len(self.staged_files)
            + len(self.modified_files)
            + len(self.untracked_files)
        )

    @property
    def has_changes(self) -> bool:
        return self.total_changed_count > 0

    @property
    def has_unpushed_commits(self) -> bool:
        return self.ahead > 0


class PullSummary(BaseModel):
    """Facts extracted from the human-readable output of git pull.

    ``None`` means the fact was not present in the output, not zero.
    """

    model_config = ConfigDict(frozen=True)

    already_up_to_date: bool = False
    commit_range: str | None = None
    changed_files: int | None = None
    insertions: int | None = None
    deletions: int | None = None


class GitBranch(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    is_current: bool = False
    is_remote: bool = False
    upstream: str | None = None

    @property
    def display_name(self) -> str:
        if self.is_remote:
            return self.name.removeprefix("origin/")
        return self.name


class Repository(BaseModel):
    """A working tree handed over by the directory scanner."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    path: Path
    relative_path: str = ""

    @classmethod
    def from_path(cls, path: Path) -> Repository:
        return cls(name=path.name, path=path)


class RepositoryState(BaseModel):
    """What observers see for one repository; replaced wholesale on change."""

    model_config = ConfigDict(frozen=True)

    repository: Repository
    status: RepositoryStatus | None = None
    branches: list[GitBranch] = []
    is_loading: bool = False
    last_error: str | None = None


class RefreshOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    repository_id: str
    status: RepositoryStatus | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class OperationResult(BaseModel):
    """Result of a state-changing operation on one repository."""

    model_config = ConfigDict(frozen=True)

    repository_id: str
    operation: str
    success: bool
    message: str
    details: str = ""
    pull_summary: PullSummary | None = None
    error_kind: str | None = None
