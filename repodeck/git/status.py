"""Parser for ``git status --porcelain=v2 --branch`` output."""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict

from repodeck.git.models import FileChange, FileKind, RepositoryStatus

SENTINEL_BRANCH = "HEAD"
DETACHED_PREFIX = "detached@"

_HEAD_MARKER = "# branch.head "
_OID_MARKER = "# branch.oid "
_UPSTREAM_MARKER = "# branch.upstream "
_AB_MARKER = "# branch.ab "
_DETACHED = "(detached)"
_INITIAL = "(initial)"
_UNCHANGED = "."
_SHORT_OID = 7

# Number of space-separated fields before the path on each entry type.
_ORDINARY_FIELDS = 8
_RENAME_FIELDS = 9
_UNMERGED_FIELDS = 10

_KIND_BY_CODE: dict[str, FileKind] = {
    "M": "modified",
    "T": "modified",
    "A": "added",
    "D": "deleted",
    "R": "renamed",
    "C": "copied",
    "?": "untracked",
    "!": "ignored",
    "U": "conflicted",
}

_SIMPLE_ESCAPES = {
    '"': 0x22,
    "\\": 0x5C,
    "a": 0x07,
    "b": 0x08,
    "t": 0x09,
    "n": 0x0A,
    "v": 0x0B,
    "f": 0x0C,
    "r": 0x0D,
}
_OCTAL_DIGITS = "01234567"


class BranchInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_branch: str
    upstream: str | None = None
    ahead: int = 0
    behind: int = 0


def kind_for_code(code: str) -> FileKind:
    """Map a porcelain status letter to a change kind; unknown letters are modifications."""
    return _KIND_BY_CODE.get(code, "modified")


def decode_path(raw: str) -> str:
    """Decode a path as printed by git, undoing C-style quoting if present."""
    trimmed = raw.strip()
    if len(trimmed) < 2 or not (trimmed.startswith('"') and trimmed.endswith('"')):
        return trimmed

    body = trimmed[1:-1]
    data = bytearray()
    i = 0
    while i < len(body):
        char = body[i]
        if char != "\\":
            data.extend(char.encode("utf-8"))
            i += 1
            continue

        if i + 1 >= len(body):
            data.append(0x5C)
            break

        escaped = body[i + 1]
        if escaped in _SIMPLE_ESCAPES:
            data.append(_SIMPLE_ESCAPES[escaped])
            i += 2
        elif escaped in _OCTAL_DIGITS:
            end = i + 1
            while end < len(body) and end < i + 4 and body[end] in _OCTAL_DIGITS:
                end += 1
            digits = body[i + 1 : end]
            value = int(digits, 8)
            if value <= 0xFF:
                data.append(value)
            else:
                data.extend(f"\\{digits}".encode())
            i = end
        else:
            # Unknown escape: keep it as written rather than lose bytes.
            data.extend(f"\\{escaped}".encode())
            i += 2

    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return trimmed


def _parse_count(token: str) -> int:
    try:
        return int(token[1:])
    except ValueError:
        return 0


def parse_branch_header(lines: Iterable[str]) -> BranchInfo:
    head = ""
    oid = ""
    upstream: str | None = None
    ahead = 0
    behind = 0

    for line in lines:
        if line.startswith(_HEAD_MARKER):
            head = line[len(_HEAD_MARKER) :].strip()
        elif line.startswith(_OID_MARKER):
            oid = line[len(_OID_MARKER) :].strip()
        elif line.startswith(_UPSTREAM_MARKER):
            upstream = line[len(_UPSTREAM_MARKER) :].strip() or None
        elif line.startswith(_AB_MARKER):
            for token in line[len(_AB_MARKER) :].split():
                if token.startswith("+"):
                    ahead = _parse_count(token)
                elif token.startswith("-"):
                    behind = _parse_count(token)

    has_oid = bool(oid) and oid != _INITIAL
    if head == _DETACHED:
        branch = f"{DETACHED_PREFIX}{oid[:_SHORT_OID]}" if has_oid else SENTINEL_BRANCH
    elif head:
        branch = head
    elif has_oid:
        branch = oid[:_SHORT_OID]
    else:
        branch = SENTINEL_BRANCH

    return BranchInfo(
        current_branch=branch, upstream=upstream, ahead=ahead, behind=behind
    )


def _changes_for_pair(
    xy: str, path: str, prior_path: str | None = None
) -> list[FileChange]:
    index_code = xy[0] if len(xy) > 0 else _UNCHANGED
    worktree_code = xy[1] if len(xy) > 1 else _UNCHANGED

    changes: list[FileChange] = []
    for code, staged in ((index_code, True), (worktree_code, False)):
        if code == _UNCHANGED:
            continue
        kind = kind_for_code(code)
        changes.append(
            FileChange(
                path=path,
                kind=kind,
                staged=staged,
                prior_path=prior_path if kind == "renamed" else None,
            )
        )
    return changes


def parse_entries(lines: Iterable[str]) -> list[FileChange]:
    """Turn porcelain v2 entry lines into change records; unparseable lines are skipped."""
    changes: list[FileChange] = []

    for line in lines:
        if line.startswith("1 "):
            # 1 XY sub mH mI mW hH hI path
            parts = line.split(" ", _ORDINARY_FIELDS)
            if len(parts) <= _ORDINARY_FIELDS:
                continue
            changes.extend(_changes_for_pair(parts[1], decode_path(parts[-1])))
        elif line.startswith("2 "):
            # 2 XY sub mH mI mW hH hI Xscore path<TAB>origPath
            parts = line.split(" ", _RENAME_FIELDS)
            if len(parts) <= _RENAME_FIELDS:
                continue
            new_raw, _, old_raw = parts[-1].partition("\t")
            prior = decode_path(old_raw) or None
            changes.extend(_changes_for_pair(parts[1], decode_path(new_raw), prior))
        elif line.startswith("u "):
            # u XY sub m1 m2 m3 mW h1 h2 h3 path
            parts = line.split(" ", _UNMERGED_FIELDS)
            if len(parts) <= _UNMERGED_FIELDS:
                continue
            changes.append(FileChange(path=decode_path(parts[-1]), kind="conflicted"))
        elif line.startswith("? "):
            path = decode_path(line[2:])
            if path:
                changes.append(FileChange(path=path, kind="untracked"))

    return changes


def parse_status(output: str) -> RepositoryStatus:
    # Split on LF only: unquoted paths may contain other line-break code points.
    lines = [line.rstrip("\r") for line in output.split("\n") if line]
    branch = parse_branch_header(line for line in lines if line.startswith("# "))
    changes = parse_entries(line for line in lines if not line.startswith("# "))
    return RepositoryStatus.from_changes(
        changes,
        current_branch=branch.current_branch,
        upstream=branch.upstream,
        ahead=branch.ahead,
        behind=branch.behind,
    )
