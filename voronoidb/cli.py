"""voronoidb CLI application with Typer."""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Annotated, Any

import typer

from voronoidb import __version__
from voronoidb.app.ports.vector_store import BackendKind
from voronoidb.bootstrap import ApplicationContainer, bootstrap_application
from voronoidb.config import get_settings, set_settings
from voronoidb.errors import VoronoiDBError
from voronoidb.models import Collection, Document, Metric
from voronoidb.utils.jsonl import DocumentRecord, atomic_write_jsonl, read_jsonl

app = typer.Typer(
    name="voronoidb",
    help="Embedded vector database with Voronoi partitioned search",
    add_completion=True,
    no_args_is_help=True,
)
collection_app = typer.Typer(help="Create, inspect and delete collections")
document_app = typer.Typer(help="Add, list, delete, import and export documents")
app.add_typer(collection_app, name="collection")
app.add_typer(document_app, name="document")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class SearchMode(str, Enum):
    EXACT = "exact"
    PARTITIONED = "partitioned"
    INDEX = "index"


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"voronoidb version {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    level = "DEBUG" if verbose else get_settings().log_level
    logging.basicConfig(format=LOG_FORMAT)
    logging.getLogger("voronoidb").setLevel(getattr(logging, level))


@contextmanager
def _open_container() -> Iterator[ApplicationContainer]:
    """Bootstrap the database, map library errors to exit code 1 and close on exit."""
    try:
        container = bootstrap_application()
    except VoronoiDBError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    try:
        yield container
    except (VoronoiDBError, ValueError, OSError) as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    finally:
        container.close()


def _parse_vector(text: str) -> list[float]:
    """Parse a JSON array of numbers given on the command line."""
    try:
        value = json.loads(text)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"Expected a JSON array of numbers: {exc}") from exc
    if not isinstance(value, list) or not all(
        isinstance(item, (int, float)) and not isinstance(item, bool) for item in value
    ):
        raise typer.BadParameter("Expected a JSON array of numbers, e.g. [0.1, 0.2, 0.3]")
    return [float(item) for item in value]


def _document_payload(document: Document, score: float | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": document.id,
        "collection_id": document.collection_id,
        "content": document.content,
        "cell_id": document.cell_id,
    }
    if score is not None:
        payload["score"] = score
    return payload


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
    data_dir: Annotated[
        Path | None,
        typer.Option("--data-dir", help="Override data directory"),
    ] = None,
    dimensions: Annotated[
        int | None,
        typer.Option("--dimensions", min=1, help="Embedding dimensionality"),
    ] = None,
    backend: Annotated[
        BackendKind | None,
        typer.Option("--backend", help="ANN backend used by index searches"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Enable debug logging"),
    ] = False,
) -> None:
    """voronoidb - embedded vector database with Voronoi partitioned search."""
    # Update settings with CLI flags
    settings = get_settings()
    if data_dir:
        settings.data_dir = data_dir
    if dimensions is not None:
        settings.dimensions = dimensions
    if backend is not None:
        settings.index_backend = backend
    set_settings(settings)
    _configure_logging(verbose)


# Collection subcommands


@collection_app.command("create")
def collection_create(
    name: Annotated[str, typer.Argument(help="Collection name")],
) -> None:
    """Create a new collection."""
    with _open_container() as container:
        collection = container.database.create_collection(name)
    typer.secho(f"✅ Created collection {collection.name} (id={collection.id})", fg=typer.colors.GREEN)


@collection_app.command("get")
def collection_get(
    name: Annotated[str, typer.Argument(help="Collection name")],
) -> None:
    """Show a collection and its document count."""
    with _open_container() as container:
        collection = container.database.get_collection(name)
        count = len(container.database.get_all_documents(collection))
    typer.echo(f"{collection.id}\t{collection.name}\t{count} documents")


@collection_app.command("list")
def collection_list() -> None:
    """List collections."""
    with _open_container() as container:
        collections = container.database.list_collections()
    if not collections:
        typer.echo("No collections.")
        return
    for collection in collections:
        typer.echo(f"{collection.id}\t{collection.name}")


@collection_app.command("delete")
def collection_delete(
    name: Annotated[str, typer.Argument(help="Collection name")],
) -> None:
    """Delete a collection and all of its documents."""
    with _open_container() as container:
        database = container.database
        database.delete_collection(database.get_collection(name))
    typer.secho(f"✅ Deleted collection {name}", fg=typer.colors.GREEN)


# Document subcommands


@document_app.command("add")
def document_add(
    collection: Annotated[str, typer.Argument(help="Collection name")],
    content: Annotated[str, typer.Argument(help="Document content")],
    embedding: Annotated[
        str,
        typer.Option("--embedding", "-e", help="Embedding as a JSON array"),
    ],
) -> None:
    """Add a document to a collection."""
    vector = _parse_vector(embedding)
    with _open_container() as container:
        database = container.database
        document = database.create_document(database.get_collection(collection), content, vector)
    typer.secho(f"✅ Added document {document.id}", fg=typer.colors.GREEN)


@document_app.command("list")
def document_list(
    collection: Annotated[
        str | None,
        typer.Option("--collection", "-c", help="Restrict to one collection"),
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Emit JSON")] = False,
) -> None:
    """List stored documents."""
    with _open_container() as container:
        database = container.database
        scope = database.get_collection(collection) if collection else None
        documents = database.get_all_documents(scope)
    if json_output:
        typer.echo(json.dumps([_document_payload(doc) for doc in documents], indent=2))
        return
    for document in documents:
        typer.echo(f"{document.id}\t{document.collection_id}\t{document.content}")


@document_app.command("delete")
def document_delete(
    document_id: Annotated[int, typer.Argument(help="Document id")],
) -> None:
    """Delete a document."""
    with _open_container() as container:
        container.database.delete_document(document_id)
    typer.secho(f"✅ Deleted document {document_id}", fg=typer.colors.GREEN)


@document_app.command("import")
def document_import(
    path: Annotated[
        Path,
        typer.Argument(help="JSONL file of documents", exists=True, dir_okay=False),
    ],
) -> None:
    """Import documents from JSONL, creating collections as needed."""
    imported = 0
    with _open_container() as container:
        database = container.database
        known: dict[str, Collection] = {c.name: c for c in database.list_collections()}
        for record in read_jsonl(path):
            target = known.get(record.collection)
            if target is None:
                target = database.create_collection(record.collection)
                known[target.name] = target
            database.create_document(target, record.content, record.embedding)
            imported += 1
    typer.secho(f"✅ Imported {imported} documents from {path}", fg=typer.colors.GREEN)


@document_app.command("export")
def document_export(
    path: Annotated[Path, typer.Argument(help="Destination JSONL file")],
    collection: Annotated[
        str | None,
        typer.Option("--collection", "-c", help="Restrict to one collection"),
    ] = None,
) -> None:
    """Export documents to JSONL."""
    with _open_container() as container:
        database = container.database
        names = {c.id: c.name for c in database.list_collections()}
        scope = database.get_collection(collection) if collection else None
        records = [
            DocumentRecord(
                collection=names[doc.collection_id],
                content=doc.content,
                embedding=list(doc.embedding),
            )
            for doc in database.get_all_documents(scope)
        ]
        written = atomic_write_jsonl(path, records)
    typer.secho(f"✅ Exported {written} documents to {path}", fg=typer.colors.GREEN)


# Training and search


@app.command("train")
def train(
    cells: Annotated[
        int,
        typer.Option("--cells", min=1, help="Target number of Voronoi cells"),
    ] = 2,
) -> None:
    """Cluster all documents into Voronoi cells."""
    with _open_container() as container:
        trained = container.database.train(cells)
    typer.secho(f"✅ Trained {len(trained)} cells", fg=typer.colors.GREEN)


@app.command("reset")
def reset() -> None:
    """Discard the current training pass."""
    with _open_container() as container:
        container.database.reset_training()
    typer.secho("✅ Training reset", fg=typer.colors.GREEN)


@app.command("search")
def search(
    query: Annotated[str, typer.Argument(help="Query embedding as a JSON array")],
    k: Annotated[int, typer.Option("--k", "-k", min=0, help="Number of results")] = 5,
    metric: Annotated[
        Metric | None,
        typer.Option(
            "--metric",
            help=(
                "Ranking metric for exact search (default euclidean_distance). "
                "Partitioned search always uses euclidean distance; index search "
                "uses VORONOIDB_INDEX_METRIC."
            ),
        ),
    ] = None,
    mode: Annotated[
        SearchMode,
        typer.Option("--mode", help="exact, partitioned or index"),
    ] = SearchMode.EXACT,
    collection: Annotated[
        str | None,
        typer.Option("--collection", "-c", help="Restrict to one collection"),
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Emit JSON")] = False,
) -> None:
    """Search for the documents nearest to a query embedding."""
    vector = _parse_vector(query)
    if metric is not None and mode is not SearchMode.EXACT:
        raise typer.BadParameter(
            f"--metric only applies to exact search, not {mode.value}", param_hint="--metric"
        )
    with _open_container() as container:
        database = container.database
        scope = database.get_collection(collection) if collection else None
        if mode is SearchMode.EXACT:
            hits = [
                (hit.document, hit.score)
                for hit in database.search_with_scores(
                    vector, k, metric or Metric.EUCLIDEAN_DISTANCE, scope
                )
            ]
        elif mode is SearchMode.PARTITIONED:
            hits = [(doc, None) for doc in database.partitioned_search(vector, k, scope)]
        else:
            hits = [(doc, None) for doc in database.index_search(vector, k, scope)]

    if json_output:
        typer.echo(json.dumps([_document_payload(doc, score) for doc, score in hits], indent=2))
        return
    if not hits:
        typer.echo("No results.")
        return
    for rank, (document, score) in enumerate(hits, start=1):
        suffix = "" if score is None else f"\t{score:.6f}"
        typer.echo(f"{rank}. [{document.id}] {document.content}{suffix}")


@app.command("clear-cache")
def clear_cache() -> None:
    """Delete every cached ANN index."""
    with _open_container() as container:
        removed = container.cache.invalidate_all()
    typer.secho(f"✅ Removed {removed} cached indexes", fg=typer.colors.GREEN)


if __name__ == "__main__":
    app()
