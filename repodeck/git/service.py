"""Async wrapper for git CLI operations."""

from __future__ import annotations

import asyncio
import re
import shlex
from collections.abc import Mapping
from pathlib import Path

import structlog

from repodeck.exceptions import CommandFailedError, SpawnError
from repodeck.git.commands import build_command, leading_verb
from repodeck.git.errors import classify_failure
from repodeck.git.models import (
    CommandResult,
    FileChange,
    GitBranch,
    PullSummary,
    RepositoryStatus,
)
from repodeck.git.runner import ProcessRunner
from repodeck.git.status import parse_status
from repodeck.git.summary import parse_pull_summary

logger = structlog.get_logger()

_BRANCH_NAME_RE = re.compile(r"^[a-zA-Z0-9._/\-]+$")
_BRANCH_FORMAT = "%(refname)|%(refname:short)|%(upstream:short)|%(HEAD)"
_QUOTEPATH_OFF = ("-c", "core.quotepath=false")
_STATUS_ARGS = (
    *_QUOTEPATH_OFF,
    "status",
    "--porcelain=v2",
    "--branch",
    # "normal" collapses untracked directories, much cheaper than "all" on big trees
    "--untracked-files=normal",
)
_PULL_ARGS = (*_QUOTEPATH_OFF, "pull", "--stat", "--no-progress")


def _check_branch_name(name: str) -> None:
    if not _BRANCH_NAME_RE.match(name) or name.startswith("-"):
        raise CommandFailedError(f"Invalid branch name: {name}")


class GitService:
    """Async wrapper for git CLI operations."""

    def __init__(
        self, runner: ProcessRunner | None = None, git_path: Path | str = "git"
    ) -> None:
        self._runner = runner or ProcessRunner()
        self._git_path = str(git_path)

    async def run(
        self,
        *args: str,
        cwd: Path,
        deadline: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run git and return the raw result, whatever the exit code."""
        spec = build_command(self._git_path, args, cwd, env=env, deadline=deadline)
        return await self._runner.run(spec)

    async def execute(
        self, *args: str, cwd: Path, deadline: float | None = None
    ) -> str:
        """Run git and return stdout, raising a classified error on failure."""
        result = await self.run(*args, cwd=cwd, deadline=deadline)
        if not result.succeeded:
            error = classify_failure(result)
            logger.info(
                "git_command_failed",
                verb=leading_verb(args),
                cwd=str(cwd),
                exit_code=result.exit_code,
                error_kind=error.kind,
            )
            raise error
        return result.stdout

    async def is_repo(self, cwd: Path) -> bool:
        """Check if cwd is inside a git work tree."""
        try:
            result = await self.run("rev-parse", "--is-inside-work-tree", cwd=cwd)
        except SpawnError:
            return False
        return result.succeeded and result.stdout.strip() == "true"

    async def status(self, cwd: Path) -> RepositoryStatus:
        """Branch, ahead/behind and file changes from one porcelain v2 query."""
        output = await self.execute(*_STATUS_ARGS, cwd=cwd)
        return parse_status(output)

    async def branches(self, cwd: Path) -> list[GitBranch]:
        """Local and remote-tracking branches, skipping symbolic HEAD refs."""
        output = await self.execute("branch", "-a", f"--format={_BRANCH_FORMAT}", cwd=cwd)

        branches: list[GitBranch] = []
        for line in output.splitlines():
            parts = line.split("|")
            if len(parts) < 4:
                continue
            refname, name, upstream, head = parts[0], parts[1], parts[2], parts[3]
            # "(HEAD detached at ...)" and "origin/HEAD" are not branches
            if name.startswith("(") or name == "HEAD" or name.endswith("/HEAD"):
                continue
            branches.append(
                GitBranch(
                    name=name,
                    is_current=head.strip() == "*",
                    is_remote=refname.startswith("refs/remotes/"),
                    upstream=upstream or None,
                )
            )
        return branches

    # Remote operations

    async def pull(self, cwd: Path) -> PullSummary:
        result = await self.run(*_PULL_ARGS, cwd=cwd)
        if not result.succeeded:
            raise classify_failure(result)

        combined = "\n".join(
            text for text in (result.stdout, result.stderr) if text.strip()
        )
        summary = parse_pull_summary(combined)
        logger.info(
            "git_pull_summary",
            cwd=str(cwd),
            up_to_date=summary.already_up_to_date,
            commit_range=summary.commit_range,
            changed_files=summary.changed_files,
        )
        return summary

    async def push(self, cwd: Path) -> str:
        return await self._combined_output("push", cwd=cwd)

    async def fetch(self, cwd: Path) -> str:
        return await self._combined_output("fetch", "--all", cwd=cwd)

    async def current_upstream(self, cwd: Path) -> str:
        """Short name of the branch's upstream, e.g. ``origin/main``."""
        try:
            output = await self.execute(
                "rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{upstream}", cwd=cwd
            )
        except CommandFailedError as e:
            raise CommandFailedError(
                "No upstream branch is configured", stderr=e.stderr, exit_code=e.exit_code
            ) from e
        return output.strip()

    async def force_pull(self, cwd: Path) -> None:
        """Make the work tree match its upstream, discarding local changes."""
        upstream = await self.current_upstream(cwd)
        await self.execute("fetch", "--all", "--prune", cwd=cwd)
        await self.execute("reset", "--hard", upstream, cwd=cwd)
        await self.execute("clean", "-fd", cwd=cwd)

    async def force_push(self, cwd: Path) -> None:
        """Overwrite the upstream branch with the local HEAD."""
        upstream = await self.current_upstream(cwd)
        remote, sep, remote_branch = upstream.partition("/")
        if not sep or not remote or not remote_branch:
            raise CommandFailedError("No upstream branch is configured")
        await self.execute("push", "--force", remote, f"HEAD:{remote_branch}", cwd=cwd)

    # Index operations

    async def stage(self, cwd: Path, paths: list[str]) -> None:
        if not paths:
            return
        await self.execute("add", "-A", "--", *paths, cwd=cwd)

    async def stage_all(self, cwd: Path) -> None:
        await self.execute("add", "-A", cwd=cwd)

    async def unstage(self, cwd: Path, paths: list[str]) -> None:
        if not paths:
            return
        await self.execute("reset", "HEAD", "--", *paths, cwd=cwd)

    async def unstage_all(self, cwd: Path) -> None:
        # Pathspec form works before the first commit too.
        await self.execute("reset", "HEAD", "--", ".", cwd=cwd)

    async def commit(
        self, cwd: Path, message: str, paths: list[str] | None = None
    ) -> str:
        """Commit staged changes, or only *paths* when given."""
        args = ["commit", "-m", message]
        if paths:
            args.extend(["--", *paths])
        output = await self.execute(*args, cwd=cwd)
        return output.strip()

    async def discard_changes(self, cwd: Path, paths: list[str]) -> None:
        if not paths:
            return
        await self.execute(
            "restore", "--source=HEAD", "--worktree", "--", *paths, cwd=cwd
        )

    # Branch operations

    async def checkout(self, cwd: Path, branch: str) -> None:
        _check_branch_name(branch)
        await self.execute("checkout", branch, cwd=cwd)

    async def create_branch(
        self, cwd: Path, name: str, *, checkout: bool = True
    ) -> None:
        _check_branch_name(name)
        if checkout:
            await self.execute("checkout", "-b", name, cwd=cwd)
        else:
            await self.execute("branch", name, cwd=cwd)

    async def merge(self, cwd: Path, branch: str) -> str:
        _check_branch_name(branch)
        return (await self.execute("merge", branch, cwd=cwd)).strip()

    # Inspection

    async def diff(self, cwd: Path, change: FileChange) -> str:
        """Diff for one change; untracked files show their contents."""
        if change.staged:
            return await self.execute("diff", "--cached", "--", change.path, cwd=cwd)
        if change.kind == "untracked":
            return await asyncio.to_thread(_read_untracked, cwd, change.path)
        return await self.execute("diff", "--", change.path, cwd=cwd)

    async def show_at_head(self, cwd: Path, path: str) -> str:
        return await self.execute("show", f"HEAD:{path}", cwd=cwd)

    async def run_raw(self, cwd: Path, command_line: str) -> str:
        """Run a user-typed git command line, with or without the leading ``git``."""
        try:
            args = shlex.split(command_line)
        except ValueError as e:
            raise CommandFailedError(f"Invalid command line: {e}") from e
        if args and args[0].lower() == "git":
            args = args[1:]
        if not args:
            raise CommandFailedError("Command cannot be empty")
        return await self.execute(*args, cwd=cwd)

    async def _combined_output(self, *args: str, cwd: Path) -> str:
        # push/fetch report progress and results on stderr
        result = await self.run(*args, cwd=cwd)
        if not result.succeeded:
            raise classify_failure(result)
        return "\n".join(
            text.strip() for text in (result.stdout, result.stderr) if text.strip()
        )


def _read_untracked(cwd: Path, path: str) -> str:
    """Contents of an untracked file, or the file list of an untracked directory."""
    target = cwd / path
    try:
        if target.is_dir():
            return "\n".join(
                p.relative_to(cwd).as_posix()
                for p in sorted(target.rglob("*"))
                if p.is_file()
            )
        return target.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise CommandFailedError(f"Cannot read {path}: {e}") from e
