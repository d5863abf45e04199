"""Natural-language renderings of chunks, used as embedding input and lexical query."""

from __future__ import annotations

from specgraph.models import ChangedCodeChunk, SelectorChange, SpecChunk


def build_diff_contextual_text(chunk: ChangedCodeChunk) -> str:
    """Describe what a changed chunk is, not just its raw diff.

    The text names the file, the touched components, selector attribute
    changes and the test selectors involved, so both the embedding and the
    keyword query carry the identifiers a spec is likely to mention.
    """
    parts = [f"Change in frontend file: {chunk.filename}"]

    if chunk.components:
        parts.append(f"Modified components: {', '.join(chunk.components)}")

    if chunk.functions:
        parts.append(f"Modified functions: {', '.join(chunk.functions)}")

    if chunk.selector_changes:
        rendered = ", ".join(_render_selector_change(c) for c in chunk.selector_changes)
        parts.append(f"Selector attribute changes: {rendered}")

    if chunk.test_ids:
        parts.append(f"Test selectors involved: {', '.join(chunk.test_ids)}")

    return ". ".join(parts)


def _render_selector_change(change: SelectorChange) -> str:
    if change.removed_value and change.added_value:
        value = (
            f'{change.attribute} changed from "{change.removed_value}" '
            f'to "{change.added_value}"'
        )
    elif change.added_value:
        value = f'{change.attribute} added "{change.added_value}"'
    elif change.removed_value:
        value = f'{change.attribute} removed "{change.removed_value}"'
    else:
        value = change.attribute
    return f"<{change.element}> {value}"


def build_spec_contextual_text(chunk: SpecChunk) -> str:
    """File, test name and body of a spec chunk, one per line."""
    return "\n".join(
        [
            f"E2E test in file: {chunk.filename}",
            f'Test name: "{chunk.test_name}"',
            f"Content: {chunk.content}",
        ]
    )
