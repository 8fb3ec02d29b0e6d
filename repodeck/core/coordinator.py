"""Per-repository operation coordination and concurrent bulk refresh."""

from __future__ import annotations

import asyncio
import contextlib
import threading
from collections.abc import Awaitable, Callable, Iterable, Iterator
from typing import Any

import structlog

from repodeck.core.events import (
    OPERATION_FINISHED,
    OPERATION_STARTED,
    REFRESH_ALL_FINISHED,
    REFRESH_ALL_STARTED,
    REPOSITORY_UPDATED,
    EventBus,
)
from repodeck.exceptions import (
    GitError,
    RepoDeckError,
    RepositoryBusyError,
    UnknownRepositoryError,
)
from repodeck.git.models import (
    FileChange,
    GitBranch,
    OperationResult,
    PullSummary,
    RefreshOutcome,
    Repository,
    RepositoryState,
)
from repodeck.git.service import GitService

logger = structlog.get_logger()

Action = Callable[[Repository], Awaitable[OperationResult]]


class InFlightGuard:
    """Identities of repositories with a state-changing operation in progress."""

    def __init__(self) -> None:
        self._active: set[str] = set()
        self._lock = threading.Lock()

    def try_acquire(self, repository_id: str) -> bool:
        with self._lock:
            if repository_id in self._active:
                return False
            self._active.add(repository_id)
            return True

    def release(self, repository_id: str) -> None:
        with self._lock:
            self._active.discard(repository_id)

    def is_active(self, repository_id: str) -> bool:
        with self._lock:
            return repository_id in self._active

    @property
    def active(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._active)

    @contextlib.contextmanager
    def hold(self, repository_id: str) -> Iterator[None]:
        """Fail fast with RepositoryBusyError instead of queueing behind a running operation."""
        if not self.try_acquire(repository_id):
            raise RepositoryBusyError(repository_id)
        try:
            yield
        finally:
            self.release(repository_id)


def _succeeded(
    repository: Repository,
    operation: str,
    message: str,
    *,
    details: str = "",
    pull_summary: PullSummary | None = None,
) -> OperationResult:
    return OperationResult(
        repository_id=repository.id,
        operation=operation,
        success=True,
        message=message,
        details=details,
        pull_summary=pull_summary,
    )


def _rejected(repository_id: str, operation: str, message: str) -> OperationResult:
    """A failure caused by the request itself, not by git."""
    return OperationResult(
        repository_id=repository_id, operation=operation, success=False, message=message
    )


def _describe_pull(summary: PullSummary) -> str:
    if summary.already_up_to_date:
        return "Already up to date"
    if summary.commit_range:
        return f"Pulled {summary.commit_range}"
    return "Pull successful"


def _commit_paths(changes: list[FileChange]) -> list[str]:
    """Paths to pass to ``git commit --``; a rename needs both of its sides."""
    paths: list[str] = []
    for change in changes:
        candidates = [change.path]
        if change.kind == "renamed" and change.prior_path:
            candidates.append(change.prior_path)
        for path in candidates:
            if path not in paths:
                paths.append(path)
    return paths


class RepositoryCoordinator:
    """Owns per-repository state and serializes operations per repository."""

    def __init__(
        self,
        service: GitService,
        event_bus: EventBus | None = None,
        repositories: Iterable[Repository] = (),
    ) -> None:
        self._service = service
        self._event_bus = event_bus or EventBus()
        self._guard = InFlightGuard()
        self._states: dict[str, RepositoryState] = {}
        self.register(repositories)

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def guard(self) -> InFlightGuard:
        return self._guard

    # Registry

    def register(self, repositories: Iterable[Repository]) -> None:
        for repository in repositories:
            existing = self._states.get(repository.id)
            if existing is None:
                self._states[repository.id] = RepositoryState(repository=repository)
            else:
                self._states[repository.id] = existing.model_copy(
                    update={"repository": repository}
                )

    def unregister(self, repository_id: str) -> None:
        self._states.pop(repository_id, None)

    def state(self, repository_id: str) -> RepositoryState:
        try:
            return self._states[repository_id]
        except KeyError:
            raise UnknownRepositoryError(repository_id) from None

    def states(self) -> list[RepositoryState]:
        return list(self._states.values())

    # Refresh

    async def refresh(self, repository_id: str) -> RefreshOutcome:
        """Re-read one repository's status; raises RepositoryBusyError if it is busy."""
        repository = self.state(repository_id).repository
        with self._guard.hold(repository_id):
            await self._publish(repository_id, is_loading=True)
            try:
                status = await self._service.status(repository.path)
            except GitError as e:
                logger.warning(
                    "repository_refresh_failed",
                    repository_id=repository_id,
                    path=str(repository.path),
                    error_kind=e.kind,
                    error=str(e),
                )
                await self._publish(repository_id, is_loading=False, last_error=str(e))
                return RefreshOutcome(
                    repository_id=repository_id, error=str(e), error_kind=e.kind
                )
            finally:
                self._clear_loading(repository_id)

            await self._publish(
                repository_id, status=status, is_loading=False, last_error=None
            )
            return RefreshOutcome(repository_id=repository_id, status=status)

    async def refresh_all(
        self, repository_ids: Iterable[str] | None = None
    ) -> list[RefreshOutcome]:
        """Refresh many repositories concurrently and wait for all of them.

        Each repository's failure (busy, unknown, git error) is reported in its
        own outcome; siblings are unaffected. Outcomes follow request order.
        """
        ids = list(repository_ids) if repository_ids is not None else list(self._states)
        await self._event_bus.publish(REFRESH_ALL_STARTED, count=len(ids))
        outcomes = await asyncio.gather(*(self._refresh_captured(rid) for rid in ids))
        failed = sum(1 for outcome in outcomes if not outcome.succeeded)
        logger.info("refresh_all_completed", count=len(ids), failed=failed)
        await self._event_bus.publish(
            REFRESH_ALL_FINISHED, count=len(ids), failed=failed
        )
        return list(outcomes)

    async def _refresh_captured(self, repository_id: str) -> RefreshOutcome:
        try:
            return await self.refresh(repository_id)
        except RepoDeckError as e:
            logger.info(
                "repository_refresh_skipped",
                repository_id=repository_id,
                error_kind=e.kind,
            )
            return RefreshOutcome(
                repository_id=repository_id, error=str(e), error_kind=e.kind
            )

    async def load_branches(self, repository_id: str) -> list[GitBranch]:
        repository = self.state(repository_id).repository
        with self._guard.hold(repository_id):
            branches = await self._service.branches(repository.path)
        await self._publish(repository_id, branches=branches)
        return branches

    # Guarded operations

    async def perform(
        self, repository_id: str, operation: str, action: Action
    ) -> OperationResult:
        """Run *action* with exclusive access to the repository, then reload its status.

        Git failures become a failed ``OperationResult`` and the repository's
        ``last_error``; only RepositoryBusyError and UnknownRepositoryError raise.
        """
        repository = self.state(repository_id).repository
        with self._guard.hold(repository_id):
            logger.info(
                "operation_started", repository_id=repository_id, operation=operation
            )
            await self._publish(repository_id, is_loading=True)
            await self._event_bus.publish(
                OPERATION_STARTED, repository_id, operation=operation
            )
            try:
                try:
                    result = await action(repository)
                except GitError as e:
                    logger.warning(
                        "operation_failed",
                        repository_id=repository_id,
                        operation=operation,
                        error_kind=e.kind,
                        error=str(e),
                    )
                    result = OperationResult(
                        repository_id=repository_id,
                        operation=operation,
                        success=False,
                        message=f"{operation} failed",
                        details=str(e),
                        error_kind=e.kind,
                    )

                changes: dict[str, Any] = {"is_loading": False, "last_error": None}
                try:
                    changes["status"] = await self._service.status(repository.path)
                except GitError as e:
                    changes["last_error"] = str(e)
                if result.error_kind is not None:
                    changes["last_error"] = result.details or result.message
            finally:
                self._clear_loading(repository_id)

            await self._publish(repository_id, **changes)
            await self._event_bus.publish(
                OPERATION_FINISHED,
                repository_id,
                operation=operation,
                success=result.success,
            )
            logger.info(
                "operation_finished",
                repository_id=repository_id,
                operation=operation,
                success=result.success,
            )
            return result

    async def pull(self, repository_id: str) -> OperationResult:
        async def action(repository: Repository) -> OperationResult:
            summary = await self._service.pull(repository.path)
            return _succeeded(
                repository, "pull", _describe_pull(summary), pull_summary=summary
            )

        return await self.perform(repository_id, "pull", action)

    async def push(self, repository_id: str) -> OperationResult:
        async def action(repository: Repository) -> OperationResult:
            details = await self._service.push(repository.path)
            return _succeeded(repository, "push", "Push successful", details=details)

        return await self.perform(repository_id, "push", action)

    async def fetch(self, repository_id: str) -> OperationResult:
        async def action(repository: Repository) -> OperationResult:
            details = await self._service.fetch(repository.path)
            branches = await self._service.branches(repository.path)
            self._update(repository.id, branches=branches)
            return _succeeded(
                repository, "fetch", "Fetched remote updates", details=details
            )

        return await self.perform(repository_id, "fetch", action)

    async def force_pull(self, repository_id: str) -> OperationResult:
        async def action(repository: Repository) -> OperationResult:
            await self._service.force_pull(repository.path)
            return _succeeded(
                repository, "force_pull", "Local branch reset to its upstream"
            )

        return await self.perform(repository_id, "force_pull", action)

    async def force_push(self, repository_id: str) -> OperationResult:
        async def action(repository: Repository) -> OperationResult:
            await self._service.force_push(repository.path)
            return _succeeded(
                repository, "force_push", "Upstream overwritten with local branch"
            )

        return await self.perform(repository_id, "force_push", action)

    async def stage(self, repository_id: str, paths: list[str]) -> OperationResult:
        async def action(repository: Repository) -> OperationResult:
            await self._service.stage(repository.path, paths)
            return _succeeded(repository, "stage", f"Staged {len(paths)} file(s)")

        return await self.perform(repository_id, "stage", action)

    async def stage_all(self, repository_id: str) -> OperationResult:
        async def action(repository: Repository) -> OperationResult:
            await self._service.stage_all(repository.path)
            return _succeeded(repository, "stage_all", "Staged all changes")

        return await self.perform(repository_id, "stage_all", action)

    async def unstage(self, repository_id: str, paths: list[str]) -> OperationResult:
        async def action(repository: Repository) -> OperationResult:
            await self._service.unstage(repository.path, paths)
            return _succeeded(repository, "unstage", f"Unstaged {len(paths)} file(s)")

        return await self.perform(repository_id, "unstage", action)

    async def unstage_all(self, repository_id: str) -> OperationResult:
        async def action(repository: Repository) -> OperationResult:
            await self._service.unstage_all(repository.path)
            return _succeeded(repository, "unstage_all", "Unstaged all changes")

        return await self.perform(repository_id, "unstage_all", action)

    async def discard_changes(
        self, repository_id: str, paths: list[str]
    ) -> OperationResult:
        async def action(repository: Repository) -> OperationResult:
            await self._service.discard_changes(repository.path, paths)
            return _succeeded(
                repository, "discard_changes", f"Discarded changes in {len(paths)} file(s)"
            )

        return await self.perform(repository_id, "discard_changes", action)

    async def commit(
        self,
        repository_id: str,
        message: str,
        changes: list[FileChange] | None = None,
        *,
        push: bool = False,
    ) -> OperationResult:
        """Commit everything staged, or only *changes*, optionally pushing afterwards.

        A push failure after a successful commit is reported as a failed
        result whose message says the commit went through.
        """
        operation = "commit_and_push" if push else "commit"
        message = message.strip()
        if not message:
            return _rejected(repository_id, operation, "Enter a commit message")

        targets = [c for c in changes or [] if c.kind != "conflicted"]
        paths = _commit_paths(targets)
        if changes is not None and not paths:
            return _rejected(repository_id, operation, "No files selected to commit")

        async def action(repository: Repository) -> OperationResult:
            # Untracked files cannot be committed by pathspec until they are added.
            untracked = [c.path for c in targets if c.kind == "untracked"]
            await self._service.stage(repository.path, untracked)
            output = await self._service.commit(repository.path, message, paths or None)
            if not push:
                return _succeeded(repository, operation, "Commit successful", details=output)
            try:
                details = await self._service.push(repository.path)
            except GitError as e:
                return OperationResult(
                    repository_id=repository.id,
                    operation=operation,
                    success=False,
                    message="Commit succeeded but push failed",
                    details=str(e),
                    error_kind=e.kind,
                )
            return _succeeded(
                repository, operation, "Commit and push successful", details=details
            )

        return await self.perform(repository_id, operation, action)

    async def commit_and_push(
        self,
        repository_id: str,
        message: str,
        changes: list[FileChange] | None = None,
    ) -> OperationResult:
        return await self.commit(repository_id, message, changes, push=True)

    async def quick_commit_and_push(
        self, repository_id: str, message: str
    ) -> OperationResult:
        """Commit and push only the tracked, unstaged modifications."""
        message = message.strip()
        if not message:
            return _rejected(
                repository_id, "quick_commit_and_push", "Enter a commit message"
            )

        async def action(repository: Repository) -> OperationResult:
            status = await self._service.status(repository.path)
            paths = [
                c.path for c in status.modified_files if c.kind != "conflicted"
            ]
            if not paths:
                return OperationResult(
                    repository_id=repository.id,
                    operation="quick_commit_and_push",
                    success=False,
                    message="No modified files to commit",
                )
            await self._service.unstage_all(repository.path)
            await self._service.stage(repository.path, paths)
            await self._service.commit(repository.path, message)
            details = await self._service.push(repository.path)
            return _succeeded(
                repository,
                "quick_commit_and_push",
                f"Committed and pushed {len(paths)} file(s)",
                details=details,
            )

        return await self.perform(repository_id, "quick_commit_and_push", action)

    async def checkout(self, repository_id: str, branch: str) -> OperationResult:
        async def action(repository: Repository) -> OperationResult:
            await self._service.checkout(repository.path, branch)
            return _succeeded(repository, "checkout", f"Switched to branch '{branch}'")

        return await self.perform(repository_id, "checkout", action)

    async def create_branch(
        self, repository_id: str, name: str, *, checkout: bool = True
    ) -> OperationResult:
        async def action(repository: Repository) -> OperationResult:
            await self._service.create_branch(repository.path, name, checkout=checkout)
            verb = "Created and switched to" if checkout else "Created"
            return _succeeded(repository, "create_branch", f"{verb} branch '{name}'")

        return await self.perform(repository_id, "create_branch", action)

    async def merge(self, repository_id: str, branch: str) -> OperationResult:
        async def action(repository: Repository) -> OperationResult:
            details = await self._service.merge(repository.path, branch)
            return _succeeded(
                repository, "merge", f"Merged branch '{branch}'", details=details
            )

        return await self.perform(repository_id, "merge", action)

    # State publication

    def _update(self, repository_id: str, **changes: Any) -> RepositoryState | None:
        current = self._states.get(repository_id)
        if current is None:
            return None
        replacement = current.model_copy(update=changes)
        self._states[repository_id] = replacement
        return replacement

    def _clear_loading(self, repository_id: str) -> None:
        current = self._states.get(repository_id)
        if current is not None and current.is_loading:
            self._update(repository_id, is_loading=False)

    async def _publish(self, repository_id: str, **changes: Any) -> None:
        state = self._update(repository_id, **changes)
        if state is not None:
            await self._event_bus.publish(REPOSITORY_UPDATED, repository_id, state=state)
