"""Command line interface for docqa.

Usage:
    docqa ingest notes/ report.txt         # Index files or directories
    docqa ingest notes/ --rebuild          # Clear the index first
    docqa ask "What is the refund policy?" # Answer with citations
    docqa search "refund policy" -n 5      # Show matching chunks only
    docqa delete <document-id>             # Remove a document
    docqa stats                            # Show index statistics
"""
import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import List

import structlog

from docqa import config
from docqa.errors import DocQAError, IngestionError
from docqa.logging_config import configure_logging
from docqa.rag.context import make_preview
from docqa.services import Services, create_services

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, file_path: Path):
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {file_path.name[:30]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, stats: dict):
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Indexing Complete!")
        print(f"{'=' * 60}\n")
        print(f"  Files processed:   {stats['files_processed']}")
        print(f"  Files failed:      {stats['files_failed']}")
        print(f"  Chunks created:    {stats['chunks_created']}")
        print(f"  Chunks failed:     {stats['chunks_failed']}")
        print(f"  Time elapsed:      {elapsed_seconds:.1f}s")
        print(f"\n{'=' * 60}\n")


def _collect_files(services: Services, paths: List[Path]) -> List[Path]:
    files = []
    for path in paths:
        if path.is_dir():
            files.extend(services.ingest.discover_files(path))
        elif path.exists():
            files.append(path)
        else:
            raise FileNotFoundError(f"Path not found: {path}")
    return files


async def cmd_ingest(services: Services, args) -> int:
    files = _collect_files(services, args.paths)
    stats = {"files_processed": 0, "files_failed": 0, "chunks_created": 0, "chunks_failed": 0}

    progress = ProgressReporter(verbose=args.verbose)
    progress.start(f"{'Rebuilding' if args.rebuild else 'Indexing'} {len(files)} file(s)")

    for idx, file_path in enumerate(files, 1):
        progress.update(idx, len(files), file_path)
        try:
            result = await services.ingest.ingest_file(
                file_path,
                title=args.title,
                tags=args.tags,
                enable_chunking=not args.no_chunking,
                allow_partial=args.allow_partial,
            )
        except IngestionError as e:
            stats["files_failed"] += 1
            if e.result is not None:
                stats["chunks_created"] += len(e.result.succeeded)
                stats["chunks_failed"] += len(e.result.failed)
            continue
        except (DocQAError, OSError, UnicodeDecodeError) as e:
            logger.error("file_ingestion_failed", path=str(file_path), error=str(e))
            stats["files_failed"] += 1
            continue

        stats["files_processed"] += 1
        stats["chunks_created"] += len(result.succeeded)
        stats["chunks_failed"] += len(result.failed)

    progress.finish(stats)
    return 1 if stats["files_failed"] else 0


async def cmd_ask(services: Services, args) -> int:
    response = await services.query.ask(args.question, limit=args.limit)

    print(f"\n{response.answer}\n")
    if response.citations:
        print("Sources:")
        for i, citation in enumerate(response.citations, 1):
            print(f"  [{i}] {citation.id}: {citation.preview}")
    print()
    return 0


async def cmd_search(services: Services, args) -> int:
    results = await services.retriever.retrieve(args.query, limit=args.limit)

    if not results:
        print("No results.")
        return 0

    for i, result in enumerate(results, 1):
        label = result.title or result.source or result.id
        print(f"[{i}] {label}  (distance {result.distance:.4f})")
        print(f"    {make_preview(result.content)}")
    return 0


async def cmd_delete(services: Services, args) -> int:
    removed = await services.ingest.delete_document(args.document_id)
    if not removed:
        print(f"Document not found: {args.document_id}")
        return 1

    await services.index.save()
    print(f"Deleted document {args.document_id} ({removed} chunk(s))")
    return 0


async def cmd_stats(services: Services, args) -> int:
    store_stats = services.index.store.get_stats()
    print(f"  Data directory:   {services.index.database.db_path.parent}")
    print(f"  Embedding model:  {store_stats.get('embedding_model', config.EMBEDDING_MODEL)}")
    print(f"  Dimension:        {store_stats['dimension']}")
    print(f"  Vectors:          {store_stats['vector_count']}")
    print(f"  Chunks:           {services.index.count()}")

    documents = services.index.list_documents()
    print(f"  Documents:        {len(documents)}")
    for doc in documents:
        print(f"    - {doc['id']}  {doc['title'] or doc['source'] or ''}  ({doc['chunk_count']} chunks)")
    return 0


COMMANDS = {
    "ingest": cmd_ingest,
    "ask": cmd_ask,
    "search": cmd_search,
    "delete": cmd_delete,
    "stats": cmd_stats,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docqa",
        description="Chunk, index and query documents for retrieval-augmented answers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help=f"Index and database directory (default: {config.DATA_DIR})",
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: LOG_LEVEL)")

    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Index text or markdown files")
    ingest.add_argument("paths", nargs="+", type=Path, help="Files or directories")
    ingest.add_argument("--rebuild", action="store_true", help="Clear existing data first")
    ingest.add_argument("--title", default=None, help="Title (default: file name)")
    ingest.add_argument("--tags", default=None, help="Free-form tags")
    ingest.add_argument("--no-chunking", action="store_true", help="Store each file as one chunk")
    ingest.add_argument(
        "--allow-partial",
        action="store_true",
        help="Keep documents whose chunks partly failed",
    )
    ingest.add_argument("--verbose", "-v", action="store_true", help="Verbose progress")

    ask = sub.add_parser("ask", help="Answer a question from indexed documents")
    ask.add_argument("question")
    ask.add_argument("--limit", "-n", type=int, default=None, help="Chunks to retrieve")

    search = sub.add_parser("search", help="Show the chunks closest to a query")
    search.add_argument("query")
    search.add_argument("--limit", "-n", type=int, default=None, help="Results to show")

    delete = sub.add_parser("delete", help="Delete a document and its chunks")
    delete.add_argument("document_id")

    sub.add_parser("stats", help="Show index statistics")

    return parser


async def run(args, services: Services = None) -> int:
    services = services or create_services(data_dir=args.data_dir)

    try:
        # A rebuild never loads the saved index, so a new model dimension is accepted
        await services.index.init(rebuild=getattr(args, "rebuild", False))
        return await COMMANDS[args.command](services, args)
    except FileNotFoundError as e:
        print(f"\nError: {e}\n")
        return 1
    except DocQAError as e:
        print(f"\nError: {e}\n")
        logger.error("command_failed", command=args.command, error=str(e), error_type=type(e).__name__)
        return 1


def main(argv: List[str] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\n\nCancelled by user.\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())
