"""Command line interface: emqu chunk | embed | query."""

import argparse
import sys
from dataclasses import replace
from typing import List, Optional

from loguru import logger

from config.settings import load_settings
from emqu.exceptions import EmquError
from emqu.pipeline import Pipeline

EXIT_IO_ERROR = 1
EXIT_CONFIG_ERROR = 2


def setup_logging(verbose: bool = False) -> None:
    """Configure loguru to write to stderr."""
    logger.remove()

    if verbose:
        logger.add(
            sys.stderr,
            level="DEBUG",
            format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
        )
    else:
        logger.add(
            sys.stderr,
            level="INFO",
            format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
        )


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    return number


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="emqu",
        description="Chunk, embed and query textual files.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--env-file", help="Load environment variables from this .env file")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    chunk_parser = subparsers.add_parser(
        "chunk", help="Chunk files into semantically sensible pieces"
    )
    chunk_parser.add_argument("pattern", help="Glob pattern for files to process")
    chunk_parser.add_argument("output", help="Output folder for chunks")
    chunk_parser.add_argument(
        "--max-chunk-size", type=positive_int, help="Soft chunk size limit in characters"
    )
    chunk_parser.add_argument(
        "--no-headers", action="store_true", help="Do not prefix chunk files with their origin"
    )

    embed_parser = subparsers.add_parser("embed", help="Generate embeddings from files")
    embed_parser.add_argument("pattern", help="Glob pattern for files to process")
    embed_parser.add_argument("output", help="Output database file")
    embed_parser.add_argument(
        "-w", "--workers", type=positive_int, help="Concurrent embedding requests"
    )
    embed_parser.add_argument(
        "--max-chunk-size", type=positive_int, help="Soft chunk size limit in characters"
    )
    embed_parser.add_argument(
        "--prechunked", action="store_true",
        help="Treat every file as one chunk (e.g. the output of 'emqu chunk')"
    )
    embed_parser.add_argument(
        "--skip-unreadable", action="store_true",
        help="Warn about unreadable files instead of failing"
    )

    query_parser = subparsers.add_parser("query", help="Query similar documents")
    query_parser.add_argument("input", help="Database file with embeddings")
    query_parser.add_argument("query", help="Query text")
    query_parser.add_argument(
        "-t", "--top-k", type=positive_int, help="Number of results (default: 1)"
    )

    return parser


def _apply_overrides(settings, args):
    chunking = settings.chunking
    if getattr(args, "max_chunk_size", None):
        chunking = replace(chunking, max_chunk_size=args.max_chunk_size)
    if getattr(args, "no_headers", False):
        chunking = replace(chunking, write_headers=False)

    indexing = settings.indexing
    if getattr(args, "workers", None):
        indexing = replace(indexing, workers=args.workers)
    if getattr(args, "prechunked", False):
        indexing = replace(indexing, prechunked=True)
    if getattr(args, "skip_unreadable", False):
        indexing = replace(indexing, on_input_error="skip")

    return replace(settings, chunking=chunking, indexing=indexing)


def print_results(results) -> None:
    for rank, result in enumerate(results, 1):
        print(f"#{rank} [{result.score:.4f}] {result.record.source_path}")
        print(result.record.text.strip())
        print()


def main(argv: Optional[List[str]] = None, embed_fn=None) -> int:
    """Run the CLI and return the process exit code."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    try:
        settings = _apply_overrides(load_settings(args.env_file), args)
        pipeline = Pipeline(settings, embed_fn=embed_fn)

        if args.command == "chunk":
            result = pipeline.chunk(args.pattern, args.output)
            print(f"Successfully chunked {result.files} document(s) into {result.output_dir}")
        elif args.command == "embed":
            result = pipeline.embed(args.pattern, args.output)
            print(f"Successfully generated embeddings for {result.chunks} chunk(s)")
        elif args.command == "query":
            results = pipeline.query(args.input, args.query, args.top_k)
            if results:
                print_results(results)
            else:
                print("No results.")
    except EmquError as e:
        print(f"Error: {e}", file=sys.stderr)
        return e.exit_code
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_IO_ERROR

    return 0


def run() -> None:
    """Console script entry point."""
    sys.exit(main())
