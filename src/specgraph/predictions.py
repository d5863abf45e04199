"""Parse upstream per-test verdicts out of a markdown report.

The report groups tests under three headings, one per status:

    ## 🔴 Broken tests
    - **checkout completes payment** — the pay button test id was renamed

    ## 🟡 At risk
    - **cart shows totals** `specs/cart.spec.ts:12` - total markup moved

    ## 🟢 Not affected
    - Ninguno

Only heading lines switch sections, so an emoji or the word "broken" inside a
reason never reassigns the items that follow. Any other heading ends the
current section.
"""

from __future__ import annotations

import json
import re
from enum import Enum

import pydantic

from specgraph.exceptions import PredictionParseError
from specgraph.models import TestVerdict, VerdictStatus


class Section(Enum):
    NONE = "none"
    BROKEN = "broken"
    RISK = "risk"
    OK = "ok"
    OTHER = "other"


_SECTION_STATUS = {
    Section.BROKEN: VerdictStatus.BROKEN,
    Section.RISK: VerdictStatus.RISK,
    Section.OK: VerdictStatus.OK,
}

_HEADING_RE = re.compile(r"^\s*#{1,6}\s+(.*)$")
_ITEM_RE = re.compile(r"^\s*[-*]\s+\*\*(?P<name>.+?)\*\*(?P<rest>.*)$")
_LOCATION_RE = re.compile(r"^\s*\(?`(?P<file>[^`:]+)(?::(?P<line>\d+))?`\)?")
_SEPARATOR_RE = re.compile(r"^\s*(?:—|–|-|:)\s*")

_EMOJI = {"🔴": Section.BROKEN, "🟡": Section.RISK, "🟢": Section.OK}
_KEYWORDS = (
    (re.compile(r"\bbroken\b|\brotos?\b", re.IGNORECASE), Section.BROKEN),
    (re.compile(r"\brisk\b|\briesgo\b", re.IGNORECASE), Section.RISK),
    (re.compile(r"\bok\b|\bno afectados\b|\bnot affected\b|\bsafe\b", re.IGNORECASE), Section.OK),
)

_EMPTY_NAMES = {"none", "ninguno", "ninguna", "n/a"}


def classify_heading(text: str) -> Section:
    for marker, section in _EMOJI.items():
        if marker in text:
            return section
    for pattern, section in _KEYWORDS:
        if pattern.search(text):
            return section
    return Section.OTHER


def _parse_item(name: str, rest: str, status: VerdictStatus) -> TestVerdict:
    file, line = "", 0
    location = _LOCATION_RE.match(rest)
    if location:
        file = location.group("file").strip()
        line = int(location.group("line") or 0)
        rest = rest[location.end():]
    reason = _SEPARATOR_RE.sub("", rest, count=1).strip()
    return TestVerdict(test=name.strip(), file=file, line=line, status=status, reason=reason)


def parse_verdicts(markdown: str) -> list[TestVerdict]:
    """Extract one verdict per bullet inside a status section."""
    verdicts: list[TestVerdict] = []
    section = Section.NONE

    for raw in markdown.splitlines():
        heading = _HEADING_RE.match(raw)
        if heading:
            section = classify_heading(heading.group(1))
            continue

        status = _SECTION_STATUS.get(section)
        if status is None:
            continue

        item = _ITEM_RE.match(raw)
        if not item or item.group("name").strip().lower() in _EMPTY_NAMES:
            continue
        verdicts.append(_parse_item(item.group("name"), item.group("rest"), status))

    return verdicts


def load_verdicts(text: str) -> list[TestVerdict]:
    """Read verdicts from either a JSON array or a markdown report."""
    if not text.lstrip().startswith("["):
        return parse_verdicts(text)
    try:
        items = json.loads(text)
        return [TestVerdict.model_validate(item) for item in items]
    except (json.JSONDecodeError, TypeError, pydantic.ValidationError) as e:
        raise PredictionParseError(f"Invalid verdict JSON: {e}") from e


def count_by_status(verdicts: list[TestVerdict]) -> dict[VerdictStatus, int]:
    counts = {status: 0 for status in VerdictStatus}
    for verdict in verdicts:
        counts[verdict.status] += 1
    return counts
