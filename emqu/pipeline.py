"""
Pipeline - the three emqu workflows

CHUNK:  glob -> read files -> chunk -> one file per chunk
EMBED:  glob -> read files -> chunk (or one chunk per file) -> embed -> database file
QUERY:  database file -> embed query -> rank -> top K records

The functions at module level work on already-resolved data (lists of
(path, text) pairs, chunks, an embedding function). The Pipeline class wires
them to the file system and to settings.

Embedding runs on a thread pool. Each result is stored at its chunk's
position, so the database order never depends on which request finished
first. The first failed request cancels the rest and aborts the run; no
database file is written in that case.
"""

import glob
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from loguru import logger

from config.settings import INPUT_ERROR_POLICIES, Settings
from emqu.chunking import Chunk, DocumentLoader, SemanticChunker
from emqu.database import Database, make_record
from emqu.embeddings import EmbedFunction, EmbeddingClient, check_dimension
from emqu.exceptions import InputError
from emqu.query import QueryEngine, QueryResult

Document = Tuple[str, str]


@dataclass
class ChunkingResult:
    """Outcome of the chunk workflow."""
    files: int
    chunks: int
    output_dir: str
    time_seconds: float
    written: List[str] = field(default_factory=list)


@dataclass
class IndexingResult:
    """Outcome of the embed workflow."""
    files: int
    chunks: int
    dimension: Optional[int]
    output: str
    time_seconds: float


def discover_files(pattern: str) -> List[Path]:
    """
    Resolve a glob pattern ("**" allowed) to files, sorted by path.

    Raises:
        InputError: nothing matched
    """
    matches = sorted(
        path for path in glob.glob(pattern, recursive=True) if Path(path).is_file()
    )
    if not matches:
        raise InputError(f"No files match {pattern!r}")
    return [Path(path) for path in matches]


def read_documents(paths: Sequence[Path], on_error: str = "fail") -> List[Document]:
    """
    Read every path into a (path, text) pair, keeping the given order.

    With on_error="skip" unreadable files are logged and left out; with
    "fail" the first one raises InputError.
    """
    if on_error not in INPUT_ERROR_POLICIES:
        raise ValueError(f"on_error must be one of {INPUT_ERROR_POLICIES}, got {on_error!r}")

    documents = []
    for path in paths:
        try:
            documents.append((str(path), DocumentLoader.load(str(path))))
        except InputError as exc:
            if on_error == "fail":
                raise
            logger.warning(f"Skipping {path}: {exc}")
    return documents


def chunk_documents(documents: Sequence[Document], chunker: SemanticChunker) -> List[Chunk]:
    """Chunk every document, in document order."""
    chunks = []
    for source_path, text in documents:
        document_chunks = chunker.chunk_text(text, source_path=source_path)
        if not document_chunks:
            logger.warning(f"{source_path} has no text, no chunks produced")
        chunks.extend(document_chunks)
    return chunks


def whole_file_chunks(documents: Sequence[Document]) -> List[Chunk]:
    """One chunk per document, for inputs that were chunked beforehand."""
    chunks = []
    for source_path, text in documents:
        stripped = text.strip()
        if not stripped:
            logger.warning(f"{source_path} has no text, skipped")
            continue
        chunks.append(Chunk(
            source_path=source_path,
            index=0,
            text=stripped,
            start_line=1,
            end_line=stripped.count("\n") + 1,
        ))
    return chunks


def chunk_file_name(chunk: Chunk, width: int = 4) -> str:
    """Output name for a chunk: <stem>-<1-based index, zero padded><suffix>."""
    path = Path(chunk.source_path)
    stem = path.stem or "unknown"
    suffix = path.suffix or ".txt"
    return f"{stem}-{chunk.index + 1:0{width}d}{suffix}"


def render_chunk_file(chunk: Chunk, write_header: bool = True) -> str:
    """Chunk file contents, optionally headed by its origin."""
    if not write_header:
        return chunk.text + "\n"
    stem = Path(chunk.source_path).stem or "unknown"
    header = f"From {stem}, lines {chunk.start_line} - {chunk.end_line}"
    return f"{header}\n\n{chunk.text}\n"


def write_chunk_files(
    chunks: Sequence[Chunk],
    output_dir: str,
    write_headers: bool = True
) -> List[Path]:
    """
    Write each chunk to its own file in output_dir.

    Raises:
        InputError: two chunks map to the same file name (same file stem in
            different directories)
    """
    directory = Path(output_dir)
    directory.mkdir(parents=True, exist_ok=True)

    width = max(4, len(str(max((c.index + 1 for c in chunks), default=0))))
    targets = {}
    for chunk in chunks:
        name = chunk_file_name(chunk, width)
        if name in targets:
            raise InputError(
                f"Chunks of {targets[name].source_path} and {chunk.source_path} "
                f"would both be written to {name}"
            )
        targets[name] = chunk

    written = []
    for name, chunk in targets.items():
        path = directory / name
        path.write_text(render_chunk_file(chunk, write_headers), encoding="utf-8")
        written.append(path)
    return written


def embed_chunks(
    chunks: Sequence[Chunk],
    embed_fn: EmbedFunction,
    workers: int = 4,
    model: Optional[str] = None
) -> Database:
    """
    Embed every chunk and collect the results into a database.

    Requests run concurrently on up to `workers` threads. Records are added in
    chunk order.

    Raises:
        ProviderError: a request failed, or vectors came back with differing lengths
    """
    if workers < 1:
        raise ValueError(f"workers must be at least 1, got {workers}")

    database = Database(model=model)
    if not chunks:
        return database

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(embed_fn, chunk.text) for chunk in chunks]
        try:
            # Stop at the first failure, whichever request it is
            done, _ = wait(futures, return_when=FIRST_EXCEPTION)
            for future in futures:
                if future in done and future.exception() is not None:
                    raise future.exception()
            vectors = [future.result() for future in futures]
        except BaseException:
            for future in futures:
                future.cancel()
            raise

    dimension = None
    for chunk, vector in zip(chunks, vectors):
        dimension = check_dimension(vector, dimension)
        database.add(make_record(chunk.source_path, chunk.text, vector))
    return database


class Pipeline:
    """
    The chunk / embed / query workflows, configured by Settings.

    USAGE:
        pipeline = Pipeline(load_settings())
        pipeline.chunk("docs/**/*.md", "chunks/")
        pipeline.embed("chunks/*", "index.json")
        results = pipeline.query("index.json", "how are logs rotated?", k=3)

    The embedding client is created on first use, so the chunk workflow
    needs no credentials. Pass embed_fn to use another embedding function.
    """

    def __init__(self, settings: Settings, embed_fn: Optional[EmbedFunction] = None):
        self.settings = settings
        self.chunker = SemanticChunker(settings.chunking)
        self._embed_fn = embed_fn
        self._lock = threading.Lock()

    @property
    def embed_fn(self) -> EmbedFunction:
        with self._lock:
            if self._embed_fn is None:
                self._embed_fn = EmbeddingClient(self.settings.provider)
        return self._embed_fn

    def _embed(self, text: str):
        return self.embed_fn(text)

    def _load_documents(self, pattern: str) -> List[Document]:
        paths = discover_files(pattern)
        logger.info(f"Found {len(paths)} file(s) matching {pattern!r}")
        return read_documents(paths, self.settings.indexing.on_input_error)

    def chunk(self, pattern: str, output_dir: str) -> ChunkingResult:
        """Chunk the matching files into one file per chunk under output_dir."""
        start_time = time.time()

        documents = self._load_documents(pattern)
        chunks = chunk_documents(documents, self.chunker)
        written = write_chunk_files(
            chunks, output_dir, self.settings.chunking.write_headers
        )

        elapsed_time = time.time() - start_time
        logger.info(
            f"Chunked {len(documents)} document(s) into {len(chunks)} chunk(s) "
            f"in {output_dir} ({elapsed_time:.2f}s)"
        )
        return ChunkingResult(
            files=len(documents),
            chunks=len(chunks),
            output_dir=str(output_dir),
            time_seconds=elapsed_time,
            written=[str(path) for path in written],
        )

    def embed(self, pattern: str, database_path: str) -> IndexingResult:
        """Chunk and embed the matching files and write a fresh database."""
        start_time = time.time()
        indexing = self.settings.indexing

        documents = self._load_documents(pattern)
        if indexing.prechunked:
            chunks = whole_file_chunks(documents)
        else:
            chunks = chunk_documents(documents, self.chunker)

        logger.info(
            f"Embedding {len(chunks)} chunk(s) with {self.settings.provider.model} "
            f"({indexing.workers} worker(s))"
        )
        database = embed_chunks(
            chunks,
            self._embed,
            workers=indexing.workers,
            model=self.settings.provider.model,
        )
        database.save(database_path)

        elapsed_time = time.time() - start_time
        logger.info(
            f"Wrote {len(database)} record(s) to {database_path} ({elapsed_time:.2f}s)"
        )
        return IndexingResult(
            files=len(documents),
            chunks=len(chunks),
            dimension=database.dimension,
            output=str(database_path),
            time_seconds=elapsed_time,
        )

    def query(self, database_path: str, query_text: str, k: Optional[int] = None) -> List[QueryResult]:
        """Load the database and return the k records most similar to query_text."""
        database = Database.load(database_path)

        model = self.settings.provider.model
        if database.model and database.model != model:
            logger.warning(
                f"{database_path} was built with {database.model}, querying with {model}"
            )

        engine = QueryEngine(self._embed)
        if k is None:
            k = self.settings.retrieval.top_k
        return engine.query(database, query_text, k)
