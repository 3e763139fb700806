"""
Knowledge Seeding Script - Bulk loading of the knowledge base

Loads either the built-in starter facts or every text file of a directory
into the knowledge base. File embeddings are requested concurrently on a
worker pool; the knowledge store serializes the writes.

Example Usage:
    # Built-in facts (only when the knowledge base is empty)
    python scripts/seed_knowledge.py

    # All .txt and .md files of a directory
    python scripts/seed_knowledge.py --dir ./notes --source "project notes"

Dependencies:
    - rag_assistant: Assistant facade, knowledge store and embedding client
    - rich: Console output and progress display
    - argparse: Command-line argument parsing
"""

import argparse
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional

# Add src to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress

from rag_assistant.assistant import Assistant, create_assistant
from rag_assistant.config import AssistantConfig
from rag_assistant.logging_setup import configure_logging
from rag_assistant.models import Document

console = Console()

TEXT_SUFFIXES = {".txt", ".md"}


def collect_files(directory: Path) -> List[Path]:
    """Text files under ``directory``, sorted for a stable insertion order."""
    return sorted(p for p in directory.rglob("*") if p.is_file() and p.suffix.lower() in TEXT_SUFFIXES)


def seed_directory(assistant: Assistant, directory: Path, source: Optional[str] = None,
                   workers: int = 10) -> int:
    """
    Embed every text file of ``directory`` and add it to the knowledge base.

    Returns:
        Number of documents added
    """
    files = collect_files(directory)
    documents = []
    for path in files:
        try:
            content = path.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as e:
            console.print(f"Skipping {path}: {e}", style="yellow", markup=False)
            continue
        if content:
            documents.append(Document(content=content, source=source or path.name,
                                      metadata={"path": str(path)}))

    added = 0
    with ThreadPoolExecutor(max_workers=workers) as pool, Progress(console=console) as progress:
        task = progress.add_task("Embedding documents", total=len(documents))
        vectors = pool.map(lambda doc: assistant.embedding_service.embed(doc.content), documents)
        # map() yields in submission order, so files keep their sorted order in the store
        for document, vector in zip(documents, vectors):
            if assistant.knowledge_store.add_document(document, vector):
                added += 1
            progress.advance(task)
    return added


def main(argv: Optional[List[str]] = None) -> int:
    """
    Seed the knowledge base.

    Returns:
        int: Exit code (0 for success, 1 for failure)
    """
    parser = argparse.ArgumentParser(
        description="Load documents into the RAG assistant knowledge base",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
            Examples:
            %(prog)s
            %(prog)s --dir ./notes --source "project notes"
        """
    )
    parser.add_argument(
        "--dir",
        dest="directory",
        help="Directory of .txt/.md files to load (default: built-in facts)"
    )
    parser.add_argument(
        "--source",
        help="Source label for loaded files (default: file name)"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=10,
        help="Concurrent embedding requests (default: 10)"
    )
    args = parser.parse_args(argv)

    config = AssistantConfig.from_env()
    configure_logging("seed_knowledge", config.log_dir)

    try:
        with create_assistant(config) as assistant:
            before = assistant.knowledge_store.get_document_count()
            if args.directory:
                directory = Path(args.directory)
                if not directory.is_dir():
                    console.print(f"Not a directory: {directory}", style="red")
                    return 1
                added = seed_directory(assistant, directory, args.source, max(1, args.workers))
            else:
                added = assistant.load_initial_knowledge()
                if not added:
                    console.print("Knowledge base is not empty; built-in facts skipped", style="yellow")

            console.print(Panel(
                f"Documents before: {before}\n"
                f"Documents added: {added}\n"
                f"Documents now: {assistant.knowledge_store.get_document_count()}\n"
                f"Knowledge base: {assistant.knowledge_store.storage_path}",
                title="Seeding Complete",
                border_style="green"
            ))
        return 0
    except OSError as e:
        console.print(f"Seeding failed: {e}", style="red")
        return 1


if __name__ == "__main__":
    sys.exit(main())
