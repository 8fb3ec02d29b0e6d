"""Extract structured facts from the human-readable output of git pull."""

from __future__ import annotations

import re

from repodeck.git.models import PullSummary

_UP_TO_DATE = frozenset({"Already up to date.", "Already up-to-date."})
_UPDATING_RE = re.compile(r"Updating ([0-9a-fA-F]+)\.\.([0-9a-fA-F]+)")
_DIFFSTAT_RE = re.compile(
    r"(\d+) files? changed"
    r"(?:, (\d+) insertions?\(\+\))?"
    r"(?:, (\d+) deletions?\(-\))?"
)


def _optional_int(value: str | None) -> int | None:
    return int(value) if value else None


def parse_pull_summary(output: str) -> PullSummary:
    """Summarize combined stdout+stderr of a pull.

    Output that matches nothing still yields a valid summary with every
    optional field left as ``None``.
    """
    lines = [line.strip() for line in output.splitlines()]
    lines = [line for line in lines if line]

    commit_range: str | None = None
    changed_files: int | None = None
    insertions: int | None = None
    deletions: int | None = None

    for line in lines:
        if commit_range is None:
            match = _UPDATING_RE.search(line)
            if match:
                commit_range = f"{match.group(1)}..{match.group(2)}"

        if changed_files is None:
            match = _DIFFSTAT_RE.search(line)
            if match:
                changed_files = int(match.group(1))
                insertions = _optional_int(match.group(2))
                deletions = _optional_int(match.group(3))

    return PullSummary(
        already_up_to_date=any(line in _UP_TO_DATE for line in lines),
        commit_range=commit_range,
        changed_files=changed_files,
        insertions=insertions,
        deletions=deletions,
    )
