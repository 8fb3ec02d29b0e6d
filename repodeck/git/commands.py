"""Command building: default deadlines per git verb and canonical command text."""

from __future__ import annotations

import shlex
from collections.abc import Mapping, Sequence
from pathlib import Path

from repodeck.git.models import CommandSpec

NETWORK_DEADLINE = 90.0
MUTATING_DEADLINE = 30.0
DEFAULT_DEADLINE = 15.0
METADATA_DEADLINE = 10.0

_NETWORK_VERBS = frozenset(
    {"pull", "push", "fetch", "clone", "ls-remote", "remote", "submodule"}
)
_MUTATING_VERBS = frozenset(
    {
        "merge",
        "rebase",
        "reset",
        "clean",
        "checkout",
        "switch",
        "restore",
        "cherry-pick",
        "revert",
        "stash",
        "commit",
        "rm",
        "mv",
    }
)
_METADATA_VERBS = frozenset(
    {
        "status",
        "rev-parse",
        "rev-list",
        "branch",
        "log",
        "show",
        "diff",
        "config",
        "symbolic-ref",
        "ls-files",
        "tag",
        "describe",
    }
)

# Global options whose value is the following argument.
_OPTIONS_WITH_VALUE = frozenset({"-c", "-C", "--git-dir", "--work-tree", "--namespace"})


def deadline_for(verb: str | None) -> float:
    """Default deadline in seconds for a git verb."""
    if verb in _NETWORK_VERBS:
        return NETWORK_DEADLINE
    if verb in _MUTATING_VERBS:
        return MUTATING_DEADLINE
    if verb in _METADATA_VERBS:
        return METADATA_DEADLINE
    return DEFAULT_DEADLINE


def leading_verb(args: Sequence[str]) -> str | None:
    """Return the git subcommand, skipping global options like ``-c key=value``."""
    skip_next = False
    for arg in args:
        if skip_next:
            skip_next = False
            continue
        if arg in _OPTIONS_WITH_VALUE:
            skip_next = True
            continue
        if arg.startswith("-"):
            continue
        return arg
    return None


def render_command(executable: str, args: Sequence[str]) -> str:
    """Shell-quoted rendering of the full command, for diagnostics only."""
    return shlex.join([executable, *args])


def describe(spec: CommandSpec) -> str:
    return render_command(spec.executable, spec.args)


def build_command(
    executable: str | Path,
    args: Sequence[str],
    cwd: Path,
    *,
    env: Mapping[str, str] | None = None,
    deadline: float | None = None,
) -> CommandSpec:
    if deadline is None:
        deadline = deadline_for(leading_verb(args))
    return CommandSpec(
        executable=str(executable),
        args=tuple(args),
        cwd=cwd,
        env=dict(env) if env else None,
        deadline=deadline,
    )
