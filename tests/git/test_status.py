"""Tests for the porcelain v2 status parser."""

import pytest

from repodeck.git.status import (
    DETACHED_PREFIX,
    SENTINEL_BRANCH,
    decode_path,
    kind_for_code,
    parse_branch_header,
    parse_entries,
    parse_status,
)

_OID = "0123456789abcdef0123456789abcdef01234567"
_MODES = "N... 100644 100644 100644"
_HASHES = f"{_OID} {_OID}"


def _ordinary(xy: str, path: str) -> str:
    return f"1 {xy} {_MODES} {_HASHES} {path}"


def _rename(xy: str, path: str, prior: str, score: str = "R100") -> str:
    return f"2 {xy} {_MODES} {_HASHES} {score} {path}\t{prior}"


def _unmerged(xy: str, path: str) -> str:
    return f"u {xy} N... 100644 100644 100644 100644 {_OID} {_OID} {_OID} {path}"


def _quote(path: str) -> str:
    """Quote a path the way git does when it contains special bytes."""
    out = []
    for byte in path.encode("utf-8"):
        char = chr(byte)
        if char == '"':
            out.append('\\"')
        elif char == "\\":
            out.append("\\\\")
        elif char == "\t":
            out.append("\\t")
        elif char == "\n":
            out.append("\\n")
        elif byte < 0x20 or byte >= 0x7F:
            out.append(f"\\{byte:03o}")
        else:
            out.append(char)
    return '"' + "".join(out) + '"'


class TestDecodePath:
    def test_unquoted_is_trimmed(self):
        assert decode_path("  src/app.py \n") == "src/app.py"

    def test_quoted_plain(self):
        assert decode_path('"with space.txt"') == "with space.txt"

    def test_simple_escapes(self):
        assert decode_path(r'"a\"b\\c\td"') == 'a"b\\c\td'

    def test_octal_utf8_sequence(self):
        # "é" is 0xC3 0xA9
        assert decode_path(r'"caf\303\251.txt"') == "café.txt"

    def test_octal_multibyte_cjk(self):
        assert decode_path(_quote("文件.md")) == "文件.md"

    def test_short_octal(self):
        assert decode_path(r'"a\0b"') == "a\x00b"

    def test_unknown_escape_kept_verbatim(self):
        assert decode_path(r'"a\qb"') == r"a\qb"

    def test_trailing_backslash_kept(self):
        assert decode_path('"abc\\"') == "abc\\"

    def test_octal_over_byte_range_kept_verbatim(self):
        assert decode_path(r'"x\777y"') == r"x\777y"

    def test_invalid_utf8_falls_back_to_raw(self):
        raw = r'"bad\377name"'
        assert decode_path(raw) == raw

    def test_lone_quote_not_treated_as_quoted(self):
        assert decode_path('"') == '"'

    @pytest.mark.parametrize(
        "path",
        [
            "plain.txt",
            'quote"inside.txt',
            "back\\slash.txt",
            "tab\there.txt",
            "new\nline.txt",
            "naïve résumé.md",
            "日本語/ファイル.txt",
            "emoji 🎉.txt",
        ],
    )
    def test_decodes_git_quoting(self, path):
        assert decode_path(_quote(path)) == path


class TestKindForCode:
    @pytest.mark.parametrize(
        ("code", "kind"),
        [
            ("M", "modified"),
            ("T", "modified"),
            ("A", "added"),
            ("D", "deleted"),
            ("R", "renamed"),
            ("C", "copied"),
            ("?", "untracked"),
            ("!", "ignored"),
            ("U", "conflicted"),
        ],
    )
    def test_known_codes(self, code, kind):
        assert kind_for_code(code) == kind

    def test_unknown_code_is_modified(self):
        assert kind_for_code("X") == "modified"


class TestParseBranchHeader:
    def test_full_header(self):
        info = parse_branch_header(
            [
                f"# branch.oid {_OID}",
                "# branch.head main",
                "# branch.upstream origin/main",
                "# branch.ab +3 -2",
            ]
        )
        assert info.current_branch == "main"
        assert info.upstream == "origin/main"
        assert info.ahead == 3
        assert info.behind == 2

    def test_no_upstream(self):
        info = parse_branch_header([f"# branch.oid {_OID}", "# branch.head feature/x"])
        assert info.current_branch == "feature/x"
        assert info.upstream is None
        assert info.ahead == 0
        assert info.behind == 0

    def test_detached_head_uses_short_oid(self):
        info = parse_branch_header([f"# branch.oid {_OID}", "# branch.head (detached)"])
        assert info.current_branch == f"{DETACHED_PREFIX}{_OID[:7]}"

    def test_detached_without_oid_is_sentinel(self):
        info = parse_branch_header(["# branch.head (detached)"])
        assert info.current_branch == SENTINEL_BRANCH

    def test_missing_head_falls_back_to_oid(self):
        info = parse_branch_header([f"# branch.oid {_OID}"])
        assert info.current_branch == _OID[:7]

    def test_initial_commit_without_head(self):
        info = parse_branch_header(["# branch.oid (initial)"])
        assert info.current_branch == SENTINEL_BRANCH

    def test_unborn_branch_keeps_name(self):
        info = parse_branch_header(["# branch.oid (initial)", "# branch.head main"])
        assert info.current_branch == "main"

    def test_empty_header(self):
        assert parse_branch_header([]).current_branch == SENTINEL_BRANCH

    def test_malformed_counts_default_to_zero(self):
        info = parse_branch_header(["# branch.head main", "# branch.ab +x -?"])
        assert info.ahead == 0
        assert info.behind == 0


class TestParseEntries:
    def test_staged_and_unstaged_for_same_path(self):
        changes = parse_entries([_ordinary("MM", "src/app.py")])
        assert len(changes) == 2
        staged, unstaged = changes
        assert staged.staged is True
        assert staged.kind == "modified"
        assert unstaged.staged is False
        assert unstaged.kind == "modified"

    @pytest.mark.parametrize("count", [1, 3, 25])
    def test_two_records_per_dual_entry(self, count):
        lines = [_ordinary("MM", f"f{i}.py") for i in range(count)]
        changes = parse_entries(lines)
        assert len(changes) == 2 * count
        assert sum(c.staged for c in changes) == count

    def test_index_only(self):
        changes = parse_entries([_ordinary("A.", "new.py")])
        assert [(c.kind, c.staged) for c in changes] == [("added", True)]

    def test_worktree_only(self):
        changes = parse_entries([_ordinary(".D", "gone.py")])
        assert [(c.kind, c.staged) for c in changes] == [("deleted", False)]

    def test_path_with_spaces(self):
        changes = parse_entries([_ordinary(".M", "docs/my notes.md")])
        assert changes[0].path == "docs/my notes.md"

    def test_rename_carries_prior_path(self):
        changes = parse_entries([_rename("R.", "new name.py", "old name.py")])
        assert len(changes) == 1
        assert changes[0].kind == "renamed"
        assert changes[0].staged is True
        assert changes[0].path == "new name.py"
        assert changes[0].prior_path == "old name.py"

    def test_rename_then_worktree_edit(self):
        changes = parse_entries([_rename("RM", "new.py", "old.py")])
        assert changes[0].prior_path == "old.py"
        assert changes[1].kind == "modified"
        assert changes[1].prior_path is None

    def test_copy_has_no_prior_path(self):
        changes = parse_entries([_rename("C.", "copy.py", "orig.py", score="C75")])
        assert changes[0].kind == "copied"
        assert changes[0].prior_path is None

    def test_quoted_rename(self):
        line = _rename("R.", _quote("nouveau é.txt"), _quote("ancien é.txt"))
        change = parse_entries([line])[0]
        assert change.path == "nouveau é.txt"
        assert change.prior_path == "ancien é.txt"

    def test_unmerged_is_conflicted_and_unstaged(self):
        changes = parse_entries([_unmerged("UU", "clash.py")])
        assert len(changes) == 1
        assert changes[0].kind == "conflicted"
        assert changes[0].staged is False
        assert changes[0].path == "clash.py"

    def test_untracked(self):
        changes = parse_entries(["? build/", "? notes.txt"])
        assert [c.path for c in changes] == ["build/", "notes.txt"]
        assert all(c.kind == "untracked" for c in changes)

    def test_ignored_lines_skipped(self):
        assert parse_entries(["! .venv/"]) == []

    def test_malformed_lines_skipped(self):
        lines = ["1 M. too short", "2 R. also short", "u UU short", "garbage", ""]
        assert parse_entries(lines) == []

    def test_malformed_line_does_not_drop_neighbours(self):
        changes = parse_entries([_ordinary(".M", "a.py"), "1 broken", "? b.py"])
        assert [c.path for c in changes] == ["a.py", "b.py"]


class TestParseStatus:
    def test_clean(self):
        status = parse_status(
            f"# branch.oid {_OID}\n# branch.head main\n"
            "# branch.upstream origin/main\n# branch.ab +0 -0\n"
        )
        assert status.current_branch == "main"
        assert status.upstream == "origin/main"
        assert status.has_changes is False

    def test_empty_output(self):
        status = parse_status("")
        assert status.current_branch == SENTINEL_BRANCH
        assert status.total_changed_count == 0

    def test_mixed_entries(self):
        output = "\n".join(
            [
                f"# branch.oid {_OID}",
                "# branch.head feature",
                "# branch.upstream origin/feature",
                "# branch.ab +1 -4",
                _ordinary("M.", "staged.py"),
                _ordinary(".M", "edited.py"),
                _ordinary("MM", "both.py"),
                _rename("R.", "renamed.py", "original.py"),
                _unmerged("UU", "clash.py"),
                "? new.txt",
                "",
            ]
        )
        status = parse_status(output)

        assert status.current_branch == "feature"
        assert status.ahead == 1
        assert status.behind == 4
        assert [c.path for c in status.staged_files] == [
            "staged.py",
            "both.py",
            "renamed.py",
        ]
        assert [c.path for c in status.modified_files] == [
            "edited.py",
            "both.py",
            "clash.py",
        ]
        assert [c.path for c in status.untracked_files] == ["new.txt"]
        assert [c.path for c in status.conflicted_files] == ["clash.py"]
        assert status.staged_files[2].prior_path == "original.py"

    def test_crlf_line_endings(self):
        status = parse_status("# branch.head main\r\n? a.txt\r\n")
        assert status.current_branch == "main"
        assert status.untracked_files[0].path == "a.txt"

    def test_unicode_line_separator_in_path_is_not_a_line_break(self):
        path = "odd\u2028name.txt"
        status = parse_status(f"# branch.head main\n{_ordinary('.M', path)}\n")
        assert status.modified_files[0].path == path

    @pytest.mark.parametrize("count", [0, 1, 5, 40])
    def test_entry_counts(self, count):
        lines = ["# branch.head main"]
        lines += [_ordinary(".M", f"dir/file{i}.py") for i in range(count)]
        lines += [f"? extra{i}.txt" for i in range(count)]
        status = parse_status("\n".join(lines))
        assert len(status.modified_files) == count
        assert len(status.untracked_files) == count
        assert status.total_changed_count == 2 * count
