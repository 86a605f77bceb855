"""JSONL import/export of documents with durability guarantees."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from voronoidb.utils.paths import atomic_write_bytes


class DocumentRecord(BaseModel):
    """One exported document: its collection name, content and embedding."""

    model_config = ConfigDict(extra="ignore")

    collection: str = Field(min_length=1)
    content: str
    embedding: list[float]


class JSONLDecodeError(ValueError):
    """Raised when a JSONL line is not a valid document record."""

    def __init__(self, path: Path, line_number: int, detail: str) -> None:
        super().__init__(f"{path}:{line_number}: {detail}")
        self.path = path
        self.line_number = line_number


def read_jsonl(path: Path) -> Iterator[DocumentRecord]:
    """Yield document records from ``path``, skipping blank lines."""
    source = Path(path)
    with source.open("r", encoding="utf-8") as handle:
        for line_number, line in enumerate(handle, start=1):
            stripped = line.strip()
            if not stripped:
                continue
            try:
                yield DocumentRecord.model_validate_json(stripped)
            except ValidationError as exc:
                raise JSONLDecodeError(source, line_number, str(exc)) from exc


def atomic_write_jsonl(path: Path, records: Iterable[DocumentRecord]) -> int:
    """Write ``records`` to ``path`` atomically as JSONL; return the line count.

    Records are serialized in memory, then written through
    :func:`~voronoidb.utils.paths.atomic_write_bytes`.
    """
    lines = [record.model_dump_json() + "\n" for record in records]
    atomic_write_bytes(Path(path), "".join(lines).encode("utf-8"))
    return len(lines)
