"""Split E2E spec files into one chunk per test case."""

from __future__ import annotations

import re
from pathlib import Path

from specgraph.exceptions import SpecsNotFoundError
from specgraph.models import SpecChunk, SpecFile

DEFAULT_SPEC_PATTERNS = ("*.spec.ts", "*.test.ts", "*.spec.js", "*.cy.ts")

# `test('name', ...)` or `it("name", ...)` at any indentation, any quote style
_TEST_RE = re.compile(r"""^\s*(?:test|it)\s*\(\s*(['"`])(.+?)\1""")

_SKIP_DIRS = {"node_modules", ".git", "dist", "build"}
_QUOTES = ("'", '"', "`")


def read_spec_files(root: Path, patterns: list[str] | tuple[str, ...] = DEFAULT_SPEC_PATTERNS) -> list[SpecFile]:
    """Read every spec file under `root`, sorted by relative path.

    Names are POSIX paths relative to `root`.
    """
    root = Path(root)
    if not root.is_dir():
        raise SpecsNotFoundError(str(root))

    found: dict[str, Path] = {}
    for pattern in patterns:
        for path in root.rglob(pattern):
            rel = path.relative_to(root)
            if any(part in _SKIP_DIRS for part in rel.parts) or not path.is_file():
                continue
            found[rel.as_posix()] = path

    return [
        SpecFile(name=name, content=found[name].read_text(encoding="utf-8", errors="replace"))
        for name in sorted(found)
    ]


def _block_end(lines: list[str], start: int) -> int | None:
    """Index of the line closing the first brace block opened at `start`.

    Braces inside string and template literals are not counted.
    """
    depth = 0
    started = False
    quote = None
    for j in range(start, len(lines)):
        escaped = False
        for char in lines[j]:
            if quote:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == quote:
                    quote = None
            elif char in _QUOTES:
                quote = char
            elif char == "{":
                depth += 1
                started = True
            elif char == "}":
                depth -= 1
        # only template literals span lines
        if quote and quote != "`":
            quote = None
        if started and depth == 0:
            return j
    return None


def extract_test_chunks(spec: SpecFile) -> list[SpecChunk]:
    """One chunk per `test(`/`it(` block, found by counting braces.

    Blocks nested inside `describe(` are found too. A test whose braces never
    balance is skipped.
    """
    chunks: list[SpecChunk] = []
    lines = spec.content.split("\n")

    i = 0
    while i < len(lines):
        match = _TEST_RE.match(lines[i])
        if not match:
            i += 1
            continue

        end = _block_end(lines, i)
        if end is None:
            i += 1
            continue
        chunks.append(SpecChunk(
            test_name=match.group(2),
            filename=spec.name,
            content="\n".join(lines[i:end + 1]),
        ))
        i = end + 1

    return chunks


def chunk_specs(spec_files: list[SpecFile]) -> list[SpecChunk]:
    return [chunk for spec in spec_files for chunk in extract_test_chunks(spec)]


def get_test_names(chunks: list[SpecChunk]) -> list[str]:
    return [c.test_name for c in chunks]
