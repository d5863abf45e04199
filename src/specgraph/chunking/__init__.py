"""Chunk providers: changed code from diffs, test cases from spec files."""

from specgraph.chunking.diff_parser import chunk_diff, is_code_file, parse_diff
from specgraph.chunking.spec_chunker import chunk_specs, get_test_names, read_spec_files

__all__ = [
    "chunk_diff",
    "chunk_specs",
    "get_test_names",
    "is_code_file",
    "parse_diff",
    "read_spec_files",
]
