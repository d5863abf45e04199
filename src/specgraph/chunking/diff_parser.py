"""Git diff parser: turn a unified diff into changed-code chunks.

Each code file in the diff becomes one `ChangedCodeChunk` carrying its hunks,
the components and functions touched, and every test-selector attribute whose
value changed (`data-test-id="pay"` -> `data-test-id="checkout-pay"`).
"""

from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass, field

from specgraph.models import ChangedCodeChunk, DiffHunk, DiffLine, LineKind, SelectorChange

CODE_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".py")

SELECTOR_ATTRIBUTES = ("data-test-id", "data-testid", "data-cy", "id", "aria-label")
TEST_ID_ATTRIBUTES = ("data-test-id", "data-testid", "data-cy")

_HUNK_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@ ?(.*)$")
_TAG_RE = re.compile(r"<([A-Za-z][\w.]*)")
_ATTR_RE = re.compile(
    r"(?<![\w-])(" + "|".join(re.escape(a) for a in SELECTOR_ATTRIBUTES) + r")="
    r"(?:\"([^\"]*)\"|'([^']*)'|\{([^}]*)\})"
)
_DECL_RES = (
    re.compile(r"\bfunction\s+([A-Za-z_$][\w$]*)"),
    re.compile(r"\bclass\s+([A-Za-z_$][\w$]*)"),
    re.compile(
        r"\b(?:const|let|var)\s+([A-Za-z_$][\w$]*)\s*(?::[^=]+)?=\s*(?:async\s+)?"
        r"(?:function\b|\([^)]*\)\s*(?::[^=]+)?=>|[A-Za-z_$][\w$]*\s*=>)"
    ),
    re.compile(r"^\s*(?:async\s+)?def\s+([A-Za-z_]\w*)"),
)


@dataclass
class FileDiff:
    """Changes to a single file."""
    path: str
    status: str  # 'added', 'modified', 'deleted', 'renamed'
    old_path: str | None = None  # For renames
    hunks: list[DiffHunk] = field(default_factory=list)
    added_lines: int = 0
    deleted_lines: int = 0
    raw_diff: str = ""

    @property
    def changed_line_ranges(self) -> list[tuple[int, int]]:
        """Ranges of added lines in the new file, one per hunk that adds any."""
        ranges = []
        for hunk in self.hunks:
            added = [l.line_number for l in hunk.lines if l.kind == LineKind.ADDED]
            if added:
                ranges.append((min(added), max(added)))
        return ranges


def is_code_file(path: str) -> bool:
    return path.endswith(CODE_EXTENSIONS)


def parse_diff(diff_text: str) -> list[FileDiff]:
    """Parse unified diff text into structured FileDiff objects."""
    files: list[FileDiff] = []
    current_file: FileDiff | None = None
    current_hunk: DiffHunk | None = None
    raw_lines: list[str] = []
    old_line = new_line = 0

    def finish() -> None:
        if current_file is not None:
            current_file.raw_diff = "\n".join(raw_lines)
            files.append(current_file)

    for line in diff_text.splitlines():
        # New file header
        if line.startswith("diff --git"):
            finish()
            parts = line.split(" b/")
            path = parts[-1] if len(parts) > 1 else ""
            current_file = FileDiff(path=path, status="modified")
            current_hunk = None
            raw_lines = [line]
            continue

        if current_file is None:
            continue
        raw_lines.append(line)

        if current_hunk is None:
            # File status markers only appear before the first hunk
            if line.startswith("new file"):
                current_file.status = "added"
                continue
            if line.startswith("deleted file"):
                current_file.status = "deleted"
                continue
            if line.startswith("rename from"):
                current_file.old_path = line.split("rename from ")[-1]
                current_file.status = "renamed"
                continue
            if line.startswith("+++ b/"):
                current_file.path = line[6:]
                continue
            if line.startswith(("---", "+++", "index ", "similarity ", "rename to")):
                continue

        match = _HUNK_RE.match(line)
        if match:
            old_line = int(match.group(1))
            new_line = int(match.group(3))
            current_hunk = DiffHunk(
                old_start=old_line,
                old_count=int(match.group(2) or "1"),
                new_start=new_line,
                new_count=int(match.group(4) or "1"),
                section=match.group(5).strip(),
            )
            current_file.hunks.append(current_hunk)
            continue

        if current_hunk is None:
            continue
        if line.startswith("+"):
            current_hunk.lines.append(
                DiffLine(kind=LineKind.ADDED, content=line[1:], line_number=new_line)
            )
            new_line += 1
            current_file.added_lines += 1
        elif line.startswith("-"):
            current_hunk.lines.append(
                DiffLine(kind=LineKind.REMOVED, content=line[1:], line_number=old_line)
            )
            old_line += 1
            current_file.deleted_lines += 1
        elif line.startswith(" ") or line == "":
            current_hunk.lines.append(
                DiffLine(kind=LineKind.CONTEXT, content=line[1:], line_number=new_line)
            )
            old_line += 1
            new_line += 1

    finish()
    return files


def _selector_hits(hunks: list[DiffHunk], kind: LineKind) -> list[tuple[str, str, str]]:
    """(element, attribute, value) for every selector attribute on `kind` lines.

    The element is the nearest opening tag before the attribute on the same
    line, else the last tag opened on an earlier line of the same side.
    """
    hits: list[tuple[str, str, str]] = []
    for hunk in hunks:
        element = ""
        for line in hunk.lines:
            if line.kind not in (kind, LineKind.CONTEXT):
                continue
            tags = [(m.start(), m.group(1)) for m in _TAG_RE.finditer(line.content)]
            if line.kind == kind:
                for m in _ATTR_RE.finditer(line.content):
                    before = [name for pos, name in tags if pos < m.start()]
                    owner = before[-1] if before else element
                    value = next(g for g in m.groups()[1:] if g is not None).strip()
                    hits.append((owner, m.group(1), value))
            if tags:
                element = tags[-1][1]
    return hits


def extract_selector_changes(hunks: list[DiffHunk]) -> list[SelectorChange]:
    """Pair removed and added selector values per (element, attribute).

    Removed values are consumed first-in first-out, so only a real rename gets
    a `removed_value`; a brand-new attribute has none, and a removed attribute
    with no replacement keeps only its `removed_value`.
    """
    removed: dict[tuple[str, str], deque[str]] = {}
    for element, attribute, value in _selector_hits(hunks, LineKind.REMOVED):
        removed.setdefault((element, attribute), deque()).append(value)

    changes: list[SelectorChange] = []
    for element, attribute, value in _selector_hits(hunks, LineKind.ADDED):
        queue = removed.get((element, attribute))
        old = queue.popleft() if queue else None
        if old == value:
            continue
        changes.append(SelectorChange(
            element=element, attribute=attribute, added_value=value, removed_value=old,
        ))

    for (element, attribute), queue in removed.items():
        for value in queue:
            changes.append(SelectorChange(element=element, attribute=attribute, removed_value=value))

    return list(dict.fromkeys(changes))


def _declared_names(hunks: list[DiffHunk]) -> tuple[list[str], list[str]]:
    components: dict[str, None] = {}
    functions: dict[str, None] = {}
    for hunk in hunks:
        texts = [hunk.section] if hunk.section else []
        texts.extend(l.content for l in hunk.lines if l.kind != LineKind.CONTEXT)
        for text in texts:
            for pattern in _DECL_RES:
                for m in pattern.finditer(text):
                    name = m.group(1)
                    if name[0].isupper():
                        components[name] = None
                    else:
                        functions[name] = None
    return list(components), list(functions)


def build_summary(
    components: list[str],
    functions: list[str],
    changes: list[SelectorChange],
    test_ids: list[str],
) -> str:
    parts = []
    if components:
        parts.append(f"Components: {', '.join(components)}")
    if functions:
        parts.append(f"Functions: {', '.join(functions)}")
    if changes:
        rendered = []
        for c in changes:
            if c.removed_value and c.added_value:
                rendered.append(f'<{c.element}> {c.attribute}="{c.removed_value}" -> "{c.added_value}"')
            else:
                rendered.append(f"<{c.element}> {c.attribute}")
        parts.append(f"JSX: {', '.join(rendered)}")
    if test_ids:
        parts.append(f"test-ids: {', '.join(test_ids)}")
    return " | ".join(parts)


def file_diff_to_chunk(fd: FileDiff) -> ChangedCodeChunk:
    changes = extract_selector_changes(fd.hunks)
    components, functions = _declared_names(fd.hunks)
    test_ids = list(dict.fromkeys(
        c.added_value for c in changes if c.attribute in TEST_ID_ATTRIBUTES and c.added_value
    ))
    return ChangedCodeChunk(
        filename=fd.path,
        raw_diff=fd.raw_diff,
        hunks=fd.hunks,
        components=components,
        functions=functions,
        selector_changes=changes,
        test_ids=test_ids,
        summary=build_summary(components, functions, changes, test_ids),
    )


def chunk_diff(diff_text: str) -> list[ChangedCodeChunk]:
    """One chunk per changed code file, in diff order."""
    return [file_diff_to_chunk(fd) for fd in parse_diff(diff_text) if is_code_file(fd.path)]
