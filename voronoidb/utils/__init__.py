"""Utility modules for common operations."""

from voronoidb.utils.jsonl import DocumentRecord, atomic_write_jsonl, read_jsonl
from voronoidb.utils.paths import atomic_write_bytes, ensure_dir, get_xdg_data_home

__all__ = [
    "DocumentRecord",
    "atomic_write_bytes",
    "atomic_write_jsonl",
    "ensure_dir",
    "get_xdg_data_home",
    "read_jsonl",
]
