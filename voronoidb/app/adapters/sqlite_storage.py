"""SQLite-backed storage port implementation."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

import numpy as np

from voronoidb.app.ports.storage import StoragePort
from voronoidb.errors import CollectionDoesNotExist, CollectionExists, StorageFailure
from voronoidb.models import Cell, Collection, Document

logger = logging.getLogger(__name__)

IN_MEMORY = ":memory:"

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS collections (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cells (
        id INTEGER PRIMARY KEY,
        centroid BLOB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS documents (
        id INTEGER PRIMARY KEY,
        content TEXT NOT NULL,
        embedding BLOB NOT NULL,
        collection_id INTEGER NOT NULL REFERENCES collections(id),
        cell_id INTEGER REFERENCES cells(id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents (collection_id)",
    "CREATE INDEX IF NOT EXISTS idx_documents_cell ON documents (cell_id)",
)

_DOCUMENT_COLUMNS = "id, content, embedding, collection_id, cell_id"


def encode_embedding(values: Sequence[float]) -> bytes:
    """Encode a float sequence as little-endian float64 bytes."""
    return np.asarray(values, dtype="<f8").tobytes()


def decode_embedding(blob: bytes) -> tuple[float, ...]:
    """Inverse of :func:`encode_embedding`."""
    return tuple(float(x) for x in np.frombuffer(blob, dtype="<f8"))


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=int(row["id"]),
        content=row["content"],
        embedding=decode_embedding(row["embedding"]),
        collection_id=int(row["collection_id"]),
        cell_id=None if row["cell_id"] is None else int(row["cell_id"]),
    )


class SQLiteStorageAdapter(StoragePort):
    """Adapter persisting collections, documents and cells in SQLite."""

    def __init__(self, database_path: Path | str = IN_MEMORY) -> None:
        self._path = str(database_path)
        if self._path != IN_MEMORY:
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(self._path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StorageFailure(f"Cannot open database {self._path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")

    @property
    def path(self) -> str:
        return self._path

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            with self._conn:
                yield self._conn
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as exc:
            raise StorageFailure(str(exc)) from exc

    def _query(self, sql: str, params: Sequence[object] = ()) -> list[sqlite3.Row]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StorageFailure(str(exc)) from exc

    def initialize(self) -> None:
        with self._transaction() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)
        logger.debug("SQLite schema ready at %s", self._path)

    def close(self) -> None:
        self._conn.close()

    def insert_collection(self, name: str) -> Collection:
        try:
            with self._transaction() as conn:
                cursor = conn.execute("INSERT INTO collections (name) VALUES (?)", (name,))
        except sqlite3.IntegrityError as exc:
            raise CollectionExists(name) from exc
        return Collection(id=int(cursor.lastrowid), name=name)

    def select_collection(self, name: str) -> Collection | None:
        rows = self._query("SELECT id, name FROM collections WHERE name = ? LIMIT 1", (name,))
        if not rows:
            return None
        return Collection(id=int(rows[0]["id"]), name=rows[0]["name"])

    def select_collections(self) -> list[Collection]:
        rows = self._query("SELECT id, name FROM collections ORDER BY id")
        return [Collection(id=int(row["id"]), name=row["name"]) for row in rows]

    def delete_collection(self, collection_id: int) -> int:
        with self._transaction() as conn:
            deleted = conn.execute(
                "DELETE FROM documents WHERE collection_id = ?", (collection_id,)
            ).rowcount
            conn.execute("DELETE FROM collections WHERE id = ?", (collection_id,))
        return int(deleted)

    def max_document_id(self) -> int:
        rows = self._query("SELECT MAX(id) AS max_id FROM documents")
        value = rows[0]["max_id"] if rows else None
        return int(value) if value is not None else 0

    def insert_document(self, document: Document) -> None:
        try:
            with self._transaction() as conn:
                conn.execute(
                    f"INSERT INTO documents ({_DOCUMENT_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                    (
                        document.id,
                        document.content,
                        encode_embedding(document.embedding),
                        document.collection_id,
                        document.cell_id,
                    ),
                )
        except sqlite3.IntegrityError as exc:
            if not self._query(
                "SELECT 1 FROM collections WHERE id = ?", (document.collection_id,)
            ):
                raise CollectionDoesNotExist(document.collection_id) from exc
            raise StorageFailure(f"Cannot insert document {document.id}: {exc}") from exc

    def select_document(self, document_id: int) -> Document | None:
        rows = self._query(
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?", (document_id,)
        )
        return _row_to_document(rows[0]) if rows else None

    def select_documents(self, collection_id: int | None = None) -> list[Document]:
        if collection_id is None:
            rows = self._query(f"SELECT {_DOCUMENT_COLUMNS} FROM documents ORDER BY id")
        else:
            rows = self._query(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE collection_id = ? ORDER BY id",
                (collection_id,),
            )
        return [_row_to_document(row) for row in rows]

    def select_documents_in_cell(
        self, cell_id: int, collection_id: int | None = None
    ) -> list[Document]:
        if collection_id is None:
            rows = self._query(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE cell_id = ? ORDER BY id",
                (cell_id,),
            )
        else:
            rows = self._query(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents "
                "WHERE cell_id = ? AND collection_id = ? ORDER BY id",
                (cell_id, collection_id),
            )
        return [_row_to_document(row) for row in rows]

    def update_document(self, document: Document) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE documents SET content = ?, embedding = ?, cell_id = ? WHERE id = ?",
                (
                    document.content,
                    encode_embedding(document.embedding),
                    document.cell_id,
                    document.id,
                ),
            )

    def delete_document(self, document_id: int) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        return cursor.rowcount > 0

    def replace_partitions(
        self,
        centroids: Sequence[Sequence[float]],
        assignments: Iterable[tuple[int, int]],
    ) -> list[Cell]:
        cells = [
            Cell(id=index, centroid=tuple(float(x) for x in centroid))
            for index, centroid in enumerate(centroids)
        ]
        with self._transaction() as conn:
            conn.execute("UPDATE documents SET cell_id = NULL")
            conn.execute("DELETE FROM cells")
            conn.executemany(
                "INSERT INTO cells (id, centroid) VALUES (?, ?)",
                [(cell.id, encode_embedding(cell.centroid)) for cell in cells],
            )
            conn.executemany(
                "UPDATE documents SET cell_id = ? WHERE id = ?",
                [(cell_id, document_id) for document_id, cell_id in assignments],
            )
        return cells

    def clear_partitions(self) -> None:
        with self._transaction() as conn:
            conn.execute("UPDATE documents SET cell_id = NULL")
            conn.execute("DELETE FROM cells")

    def select_cells(self) -> list[Cell]:
        rows = self._query("SELECT id, centroid FROM cells ORDER BY id")
        return [
            Cell(id=int(row["id"]), centroid=decode_embedding(row["centroid"])) for row in rows
        ]
