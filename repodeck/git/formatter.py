"""Pure functions to format repository data for terminal display."""

from repodeck.git.models import (
    FileChange,
    GitBranch,
    OperationResult,
    PullSummary,
    RepositoryState,
    RepositoryStatus,
)

_KIND_INDICATOR = {
    "modified": "M",
    "added": "A",
    "deleted": "D",
    "renamed": "R",
    "copied": "C",
    "untracked": "?",
    "ignored": "!",
    "conflicted": "U",
}


def _format_change(change: FileChange) -> str:
    indicator = _KIND_INDICATOR.get(change.kind, "?")
    if change.prior_path:
        return f"  {indicator} {change.prior_path} -> {change.path}"
    return f"  {indicator} {change.path}"


def format_branch_line(status: RepositoryStatus) -> str:
    line = f"Branch: {status.current_branch}"
    if status.upstream:
        parts = [f"tracking {status.upstream}"]
        if status.ahead:
            parts.append(f"{status.ahead} ahead")
        if status.behind:
            parts.append(f"{status.behind} behind")
        line += f" ({', '.join(parts)})"
    return line


def format_status(status: RepositoryStatus) -> str:
    """Format RepositoryStatus for display."""
    lines: list[str] = [format_branch_line(status)]

    sections = (
        ("Conflicted:", status.conflicted_files),
        ("Staged:", status.staged_files),
        ("Unstaged:", [c for c in status.modified_files if c.kind != "conflicted"]),
        ("Untracked:", status.untracked_files),
    )
    for title, changes in sections:
        if not changes:
            continue
        lines.append("")
        lines.append(title)
        lines.extend(_format_change(change) for change in changes)

    if not status.has_changes:
        lines.append("")
        lines.append("Working tree clean")

    return "\n".join(lines)


def format_state(state: RepositoryState) -> str:
    """Header line for a repository followed by its status or last error."""
    header = f"== {state.repository.name} ({state.repository.path})"
    lines = [header]
    if state.status is not None:
        lines.append(format_status(state.status))
    if state.last_error:
        lines.append(f"Error: {state.last_error}")
    if state.status is None and not state.last_error:
        lines.append("Not refreshed yet")
    return "\n".join(lines)


def format_pull_summary(summary: PullSummary) -> str:
    if summary.already_up_to_date:
        return "Already up to date."

    parts: list[str] = []
    if summary.commit_range:
        parts.append(f"Updated {summary.commit_range}")
    if summary.changed_files is not None:
        stats = f"{summary.changed_files} file(s) changed"
        if summary.insertions is not None:
            stats += f", +{summary.insertions}"
        if summary.deletions is not None:
            stats += f", -{summary.deletions}"
        parts.append(stats)
    return "; ".join(parts) if parts else "Pull completed."


def format_operation(result: OperationResult) -> str:
    marker = "ok" if result.success else "failed"
    lines = [f"[{marker}] {result.message}"]
    if result.pull_summary is not None:
        lines.append(format_pull_summary(result.pull_summary))
    if result.details:
        lines.append(result.details)
    return "\n".join(lines)


def format_branches(branches: list[GitBranch]) -> str:
    if not branches:
        return "No branches found."
    lines: list[str] = []
    for branch in branches:
        marker = "* " if branch.is_current else "  "
        suffix = f" -> {branch.upstream}" if branch.upstream else ""
        lines.append(f"{marker}{branch.name}{suffix}")
    return "\n".join(lines)
