"""
Document Chunking Module

Splits a document into chunks that are small enough to embed and still read
as coherent units.

HOW BOUNDARIES ARE CHOSEN:

1. Structural boundaries (always split, never merged across):
   - Delimiter lines such as "----" separating records of a generated corpus.
     The delimiter line belongs to no chunk.
   - Section headings ("# Title", "## Subtitle", ...) in Markdown files. A
     heading opens a new section and stays at the top of it. In other formats
     a "# " line is usually a comment and is left alone.

2. Size boundaries (only used when a section is larger than max_chunk_size),
   tried in order:
   - Paragraphs (blank lines)
   - Lines
   - Sentences (after ".", "!" or "?")
   - Words
   - Characters (last resort)
   Neighbouring pieces of the same section are merged back together as long
   as the merged text still fits, so chunks come out as large as allowed.

Every chunk is a slice of the original text. Only whitespace at the chunk
edges is dropped, nothing inside a chunk is rewritten.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Pattern, Tuple

import PyPDF2
from PyPDF2.errors import PdfReadError
from loguru import logger

from config.settings import ChunkingConfig
from emqu.exceptions import InputError

Span = Tuple[int, int]


@dataclass(frozen=True)
class Chunk:
    """
    A piece of a document.

    - source_path: file the chunk came from
    - index: 0-based position among the chunks of that file
    - text: the chunk text, trimmed, never empty
    - start_line / end_line: 1-based line range inside the source file
    """
    source_path: str
    index: int
    text: str
    start_line: int = 1
    end_line: int = 1

    def __repr__(self):
        preview = self.text[:50] + "..." if len(self.text) > 50 else self.text
        return f"Chunk({self.source_path}, idx={self.index}, text='{preview}')"


class DocumentLoader:
    """
    Load documents from disk as text.

    PDFs are extracted page by page with PyPDF2; every other file is read as
    UTF-8 text.
    """

    @staticmethod
    def load(file_path: str) -> str:
        """
        Load a document and return its text.

        Raises:
            InputError: the file is missing, unreadable or not valid UTF-8
        """
        path = Path(file_path)

        if not path.is_file():
            raise InputError(f"File not found: {file_path}")

        if path.suffix.lower() == ".pdf":
            return DocumentLoader._load_pdf(path)
        return DocumentLoader._load_txt(path)

    @staticmethod
    def _load_txt(path: Path) -> str:
        """Load a text file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
        except UnicodeDecodeError as exc:
            raise InputError(
                f"File is not valid UTF-8: {path}", {"byte_offset": exc.start}
            ) from exc
        except OSError as exc:
            raise InputError(f"Cannot read {path}: {exc.strerror or exc}") from exc

    @staticmethod
    def _load_pdf(path: Path) -> str:
        """Load a PDF file, one blank line between pages."""
        try:
            with open(path, "rb") as f:
                reader = PyPDF2.PdfReader(f)
                text_parts = [page.extract_text() or "" for page in reader.pages]
        except PdfReadError as exc:
            raise InputError(f"Cannot parse PDF {path}: {exc}") from exc
        except OSError as exc:
            raise InputError(f"Cannot read {path}: {exc.strerror or exc}") from exc

        logger.debug(f"Extracted {len(text_parts)} page(s) from {path}")
        return "\n\n".join(text_parts)


def _compile(pattern: Optional[str]) -> Optional[Pattern]:
    if not pattern:
        return None
    return re.compile(pattern, re.MULTILINE)


class SemanticChunker:
    """
    Split documents into chunks along structural and size boundaries.

    USAGE:
        chunker = SemanticChunker(ChunkingConfig(max_chunk_size=500))
        chunks = chunker.chunk_text(text, source_path="notes.md")

    The output is deterministic: the same text and config always give the
    same chunks, in order of appearance.
    """

    # Size boundaries in order of preference
    SEPARATORS = [
        re.compile(r"\n\s*\n"),         # Paragraphs
        re.compile(r"\n"),              # Lines
        re.compile(r"(?<=[.!?])\s+"),   # Sentences
        re.compile(r"\s+"),             # Words
    ]

    def __init__(self, config: Optional[ChunkingConfig] = None):
        """
        Initialize the chunker.

        Raises:
            ValueError: max_chunk_size is smaller than one character
        """
        config = config or ChunkingConfig()
        if config.max_chunk_size < 1:
            raise ValueError(
                f"max_chunk_size must be at least 1, got {config.max_chunk_size}"
            )

        self.max_chunk_size = config.max_chunk_size
        self._delimiter = _compile(config.delimiter_pattern)
        self._heading = _compile(config.heading_pattern)
        self._heading_suffixes = tuple(s.lower() for s in config.heading_suffixes)

    def uses_headings(self, source_path: str) -> bool:
        """Whether heading lines are section boundaries for this file."""
        return (
            self._heading is not None
            and Path(source_path).suffix.lower() in self._heading_suffixes
        )

    def chunk_text(self, text: str, source_path: str = "unknown") -> List[Chunk]:
        """
        Split text into chunks.

        Args:
            text: The full document text
            source_path: Where the text came from

        Returns:
            List of Chunk objects, empty for empty or blank text
        """
        spans: List[Span] = []
        for unit in self._structural_units(text, self.uses_headings(source_path)):
            spans.extend(self._fit(text, unit, 0))

        chunks = []
        line, line_pos = 1, 0
        for index, (start, end) in enumerate(spans):
            line += text.count("\n", line_pos, start)
            start_line = line
            line += text.count("\n", start, end)
            line_pos = end

            chunks.append(Chunk(
                source_path=source_path,
                index=index,
                text=text[start:end],
                start_line=start_line,
                end_line=line,
            ))

        return chunks

    def _structural_units(self, text: str, headings: bool) -> List[Span]:
        """Cut the text at delimiter lines and, if asked, before headings."""
        segments = [(0, len(text))]

        if self._delimiter is not None:
            segments = []
            pos = 0
            for match in self._delimiter.finditer(text):
                segments.append((pos, match.start()))
                pos = match.end()
            segments.append((pos, len(text)))

        if headings:
            sections = []
            for start, end in segments:
                cuts = [m.start() for m in self._heading.finditer(text, start, end)]
                bounds = [start] + [c for c in cuts if c > start] + [end]
                sections.extend(zip(bounds, bounds[1:]))
            segments = sections

        units = []
        for start, end in segments:
            span = self._trim(text, start, end)
            if span is not None:
                units.append(span)
        return units

    def _fit(self, text: str, span: Span, level: int) -> List[Span]:
        """
        Return span itself if it fits, otherwise split it at the separator
        for this level, fit every piece one level down and merge neighbours.
        """
        start, end = span
        if end - start <= self.max_chunk_size:
            return [span]

        if level >= len(self.SEPARATORS):
            return self._split_by_size(text, span)

        pieces = self._pieces(text, span, self.SEPARATORS[level])
        if len(pieces) < 2:
            return self._fit(text, span, level + 1)

        fitted: List[Span] = []
        for piece in pieces:
            fitted.extend(self._fit(text, piece, level + 1))
        return self._merge(fitted)

    def _pieces(self, text: str, span: Span, separator: Pattern) -> List[Span]:
        start, end = span
        pieces = []
        pos = start
        for match in separator.finditer(text, start, end):
            piece = self._trim(text, pos, match.start())
            if piece is not None:
                pieces.append(piece)
            pos = match.end()

        piece = self._trim(text, pos, end)
        if piece is not None:
            pieces.append(piece)
        return pieces

    def _split_by_size(self, text: str, span: Span) -> List[Span]:
        """Split into fixed-size pieces (last resort)."""
        start, end = span
        pieces = []
        for pos in range(start, end, self.max_chunk_size):
            piece = self._trim(text, pos, min(pos + self.max_chunk_size, end))
            if piece is not None:
                pieces.append(piece)
        return pieces

    def _merge(self, spans: List[Span]) -> List[Span]:
        """Greedily join adjacent spans while the joined slice still fits."""
        merged = []
        current_start, current_end = spans[0]

        for start, end in spans[1:]:
            if end - current_start <= self.max_chunk_size:
                current_end = end
            else:
                merged.append((current_start, current_end))
                current_start, current_end = start, end

        merged.append((current_start, current_end))
        return merged

    @staticmethod
    def _trim(text: str, start: int, end: int) -> Optional[Span]:
        while start < end and text[start].isspace():
            start += 1
        while end > start and text[end - 1].isspace():
            end -= 1
        return (start, end) if start < end else None
