"""Content-addressable identifiers for graph entities.

A dedupable entity's id is a pure function of its defining content: the
canonical serialization below is hashed with SHA-256 and truncated to 160
bits (40 lowercase hex chars). Event entities (analysis runs, predictions)
get a random UUID instead, since every occurrence is new.
"""

from __future__ import annotations

import hashlib
import uuid

from specgraph.models import SelectorChange

ID_HEX_LENGTH = 40


def content_hash(text: str) -> str:
    """Truncated SHA-256 of `text` as lowercase hex."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:ID_HEX_LENGTH]


def make_org_id(name: str) -> str:
    return content_hash(f"org:{name}")


def make_repo_id(org_name: str, repo_name: str) -> str:
    return content_hash(f"repo:{org_name}/{repo_name}")


def make_pr_id(repo_id: str, pr_number: int) -> str:
    return content_hash(f"pr:{repo_id}:{pr_number}")


def make_chunk_id(filename: str, raw_diff: str) -> str:
    return content_hash(f"ast:{filename}:{raw_diff}")


def make_spec_chunk_id(content: str) -> str:
    return content_hash(f"spec:{content}")


def make_selector_change_id(change: SelectorChange) -> str:
    return content_hash(
        f"jsx:{change.element}:{change.attribute}:"
        f"{change.added_value or ''}:{change.removed_value or ''}"
    )


def new_event_id() -> str:
    """Random id for AnalysisRun, Prediction and TestPrediction nodes."""
    return str(uuid.uuid4())
