"""Text document ingestion entrypoint.

This script reads plain-text and Markdown files, chunks and embeds them,
and writes documents and chunks to the configured JSON repository so the
API can rehydrate them on start-up.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from docchat_rag.app.container import build_container
from docchat_rag.common.schemas import Visibility
from docchat_rag.config import GlobalConfig, configure_logging

logger = logging.getLogger("docchat_rag.scripts.ingest")

SUPPORTED_SUFFIXES = {".txt", ".md", ".markdown"}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest text documents into the docchat-rag store")

    parser.add_argument(
        "paths",
        nargs="+",
        type=Path,
        help="Files or directories to ingest. Directories are searched recursively.",
    )

    parser.add_argument(
        "--config-file",
        "-c",
        required=True,
        type=str,
        help="Path to the YAML configuration file.",
    )

    parser.add_argument(
        "--storage-path",
        "-s",
        required=False,
        type=str,
        default=None,
        help="Override the JSON repository path from config (optional).",
    )

    parser.add_argument(
        "--public",
        action="store_true",
        help="Mark ingested documents as public.",
    )

    return parser.parse_args()


def iter_files(paths: list[Path]):
    for path in paths:
        if path.is_dir():
            yield from sorted(p for p in path.rglob("*") if p.suffix.lower() in SUPPORTED_SUFFIXES)
        elif path.suffix.lower() in SUPPORTED_SUFFIXES:
            yield path
        else:
            logger.warning("Skipping unsupported file: %s", path)


def main() -> None:
    args = parse_args()

    cfg = GlobalConfig.load(args.config_file)
    configure_logging(cfg.logging.get("level"))

    if args.storage_path:
        cfg.raw["storage"] = {**cfg.raw.get("storage", {}), "kind": "json", "path": args.storage_path}
    if cfg.storage.get("kind") != "json":
        raise SystemExit("storage.kind must be 'json' (or pass --storage-path) so ingested chunks are persisted.")

    container = build_container(cfg)
    pipeline = container.ingestion_pipeline
    visibility = Visibility.PUBLIC if args.public else Visibility.PRIVATE

    ingested = 0
    try:
        for path in iter_files(args.paths):
            text = path.read_text(encoding="utf-8", errors="replace")
            if not text.strip():
                logger.warning("Skipping empty file: %s", path)
                continue
            document = pipeline.ingest_text(path.name, text, visibility=visibility)
            print(f"{document.id}\t{document.chunk_count} chunks\t{path}")
            ingested += 1
    finally:
        container.close()

    print(f"Ingestion complete! {ingested} document(s) written to {cfg.storage['path']}")


if __name__ == "__main__":
    main()
