"""Tests for parsing diffs into changed-code chunks."""

from __future__ import annotations

from specgraph.chunking.diff_parser import (
    build_summary,
    chunk_diff,
    extract_selector_changes,
    is_code_file,
    parse_diff,
)
from specgraph.models import LineKind, SelectorChange


class TestParseDiff:
    def test_files_and_paths(self, checkout_diff: str):
        files = parse_diff(checkout_diff)
        assert [f.path for f in files] == [
            "src/components/Checkout.tsx",
            "src/components/Login.tsx",
            "README.md",
        ]

    def test_hunk_header(self, checkout_diff: str):
        hunk = parse_diff(checkout_diff)[0].hunks[0]
        assert (hunk.old_start, hunk.old_count, hunk.new_start, hunk.new_count) == (10, 7, 10, 7)
        assert hunk.section == "export function Checkout() {"

    def test_line_kinds_and_numbers(self, checkout_diff: str):
        fd = parse_diff(checkout_diff)[0]
        lines = fd.hunks[0].lines
        removed = [l for l in lines if l.kind == LineKind.REMOVED]
        added = [l for l in lines if l.kind == LineKind.ADDED]
        assert len(removed) == 1 and removed[0].line_number == 12
        assert len(added) == 1 and added[0].line_number == 12
        assert fd.added_lines == 1
        assert fd.deleted_lines == 1
        assert fd.changed_line_ranges == [(12, 12)]

    def test_raw_diff_is_per_file(self, checkout_diff: str):
        fd = parse_diff(checkout_diff)[0]
        assert fd.raw_diff.startswith("diff --git a/src/components/Checkout.tsx")
        assert "Login.tsx" not in fd.raw_diff

    def test_new_and_deleted_files(self):
        diff = (
            "diff --git a/src/New.tsx b/src/New.tsx\n"
            "new file mode 100644\n"
            "--- /dev/null\n"
            "+++ b/src/New.tsx\n"
            "@@ -0,0 +1 @@\n"
            "+export const New = () => null\n"
            "diff --git a/src/Old.tsx b/src/Old.tsx\n"
            "deleted file mode 100644\n"
            "--- a/src/Old.tsx\n"
            "+++ /dev/null\n"
            "@@ -1 +0,0 @@\n"
            "-export const Old = () => null\n"
        )
        files = parse_diff(diff)
        assert [(f.path, f.status) for f in files] == [
            ("src/New.tsx", "added"),
            ("src/Old.tsx", "deleted"),
        ]

    def test_empty_diff(self):
        assert parse_diff("") == []


class TestSelectorChanges:
    def test_rename_pairs_removed_and_added(self, checkout_diff: str):
        changes = extract_selector_changes(parse_diff(checkout_diff)[0].hunks)
        assert changes == [
            SelectorChange(
                element="Button",
                attribute="data-test-id",
                added_value="checkout-btn",
                removed_value="pay-btn",
            )
        ]

    def test_new_attribute_has_no_removed_value(self, checkout_diff: str):
        changes = extract_selector_changes(parse_diff(checkout_diff)[1].hunks)
        assert changes == [
            SelectorChange(element="input", attribute="data-test-id", added_value="password")
        ]

    def test_removed_attribute_without_replacement(self):
        diff = (
            "diff --git a/a.tsx b/a.tsx\n"
            "@@ -1,2 +1,1 @@\n"
            ' <div id="root">\n'
            '-  <span aria-label="close">x</span>\n'
        )
        changes = extract_selector_changes(parse_diff(diff)[0].hunks)
        assert changes == [
            SelectorChange(element="span", attribute="aria-label", removed_value="close")
        ]

    def test_id_does_not_match_inside_data_test_id(self):
        diff = (
            "diff --git a/a.tsx b/a.tsx\n"
            "@@ -1 +1 @@\n"
            '+<Card data-testid="card" id={cardId} />\n'
        )
        changes = extract_selector_changes(parse_diff(diff)[0].hunks)
        assert [(c.attribute, c.added_value) for c in changes] == [
            ("data-testid", "card"),
            ("id", "cardId"),
        ]

    def test_attribute_on_continuation_line_uses_open_tag(self):
        diff = (
            "diff --git a/a.tsx b/a.tsx\n"
            "@@ -1,3 +1,3 @@\n"
            " <Button\n"
            '-  data-cy="old"\n'
            '+  data-cy="new"\n'
        )
        changes = extract_selector_changes(parse_diff(diff)[0].hunks)
        assert changes == [
            SelectorChange(element="Button", attribute="data-cy", added_value="new", removed_value="old")
        ]

    def test_unchanged_value_is_not_a_change(self):
        diff = (
            "diff --git a/a.tsx b/a.tsx\n"
            "@@ -1 +1 @@\n"
            '-<Button data-test-id="pay" disabled>\n'
            '+<Button data-test-id="pay">\n'
        )
        assert extract_selector_changes(parse_diff(diff)[0].hunks) == []


class TestChunkDiff:
    def test_only_code_files(self, checkout_diff: str):
        chunks = chunk_diff(checkout_diff)
        assert [c.filename for c in chunks] == [
            "src/components/Checkout.tsx",
            "src/components/Login.tsx",
        ]

    def test_components_from_hunk_section(self, code_chunks):
        assert code_chunks[0].components == ["Checkout"]
        assert code_chunks[1].components == ["Login"]

    def test_functions_from_changed_lines(self):
        diff = (
            "diff --git a/src/cart.ts b/src/cart.ts\n"
            "@@ -1,2 +1,2 @@\n"
            "-function addItem(cart, item) {\n"
            "+export async function addItem(cart, item, qty) {\n"
            "+const total = (items) => items.length\n"
        )
        chunk = chunk_diff(diff)[0]
        assert chunk.functions == ["addItem", "total"]
        assert chunk.components == []

    def test_test_ids_and_summary(self, code_chunks):
        chunk = code_chunks[0]
        assert chunk.test_ids == ["checkout-btn"]
        assert chunk.summary == (
            'Components: Checkout | JSX: <Button> data-test-id="pay-btn" -> "checkout-btn"'
            " | test-ids: checkout-btn"
        )
        assert chunk.lines_added == 1
        assert chunk.lines_removed == 1

    def test_build_summary_empty(self):
        assert build_summary([], [], [], []) == ""


class TestIsCodeFile:
    def test_extensions(self):
        assert is_code_file("src/App.tsx")
        assert is_code_file("lib/util.js")
        assert is_code_file("tools/gen.py")
        assert not is_code_file("README.md")
        assert not is_code_file("styles/app.css")
