"""
Database Module

The persisted index: an ordered list of records, each holding a chunk's
source path, its text and its embedding.

FILE FORMAT (JSON, UTF-8):

    {
      "format": "emqu-database",
      "version": 1,
      "model": "text-embedding-3-small",
      "dimension": 1536,
      "records": [
        {"source_path": "docs/a.md", "text": "...", "embedding": [0.01, ...]},
        ...
      ]
    }

Fields are looked up by name and unknown fields are ignored, so newer files
with extra fields still load. Floats are written with Python's repr, which
reads back to the exact same value.

Records keep their insertion order (file order, then chunk order). Query
ranking relies on it to break ties.
"""

import json
import math
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from loguru import logger

from emqu.exceptions import CorruptDatabase, DimensionMismatch

FORMAT_NAME = "emqu-database"
FORMAT_VERSION = 1


@dataclass(frozen=True)
class Record:
    """A chunk and its embedding, as stored in the database."""
    source_path: str
    text: str
    embedding: Tuple[float, ...]

    @property
    def dimension(self) -> int:
        return len(self.embedding)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_path": self.source_path,
            "text": self.text,
            "embedding": list(self.embedding),
        }

    def __repr__(self):
        preview = self.text[:50] + "..." if len(self.text) > 50 else self.text
        return f"Record({self.source_path}, dim={self.dimension}, text='{preview}')"


@dataclass
class Database:
    """
    An ordered collection of records sharing one embedding dimension.

    USAGE:
        db = Database(model="text-embedding-3-small")
        db.add(Record("notes.md", "some text", (0.1, 0.2, 0.3)))
        db.save("index.json")

        db = Database.load("index.json")
    """
    records: List[Record] = field(default_factory=list)
    model: Optional[str] = None

    def __post_init__(self):
        records, self.records = self.records, []
        for record in records:
            self.add(record)

    @property
    def dimension(self) -> Optional[int]:
        """Embedding dimension shared by all records, None while empty."""
        return self.records[0].dimension if self.records else None

    def add(self, record: Record) -> None:
        """
        Append a record.

        Raises:
            DimensionMismatch: the record's embedding length differs from
                the records already stored
        """
        if record.dimension == 0:
            raise ValueError("Record embedding must not be empty")
        expected = self.dimension
        if expected is not None and record.dimension != expected:
            raise DimensionMismatch(expected, record.dimension)
        self.records.append(record)

    def __len__(self):
        return len(self.records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self.records)

    # Persistence

    def to_dict(self) -> Dict[str, Any]:
        return {
            "format": FORMAT_NAME,
            "version": FORMAT_VERSION,
            "model": self.model,
            "dimension": self.dimension,
            "records": [record.to_dict() for record in self.records],
        }

    def save(self, file_path: str) -> None:
        """
        Write the database to file_path.

        The document goes to a temporary file in the same directory first and
        then replaces file_path, so readers never see a half-written file.

        Raises:
            OSError: the file or its directory cannot be written
        """
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, ensure_ascii=False)
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

        logger.debug(f"Saved {len(self)} records to {path}")

    @classmethod
    def load(cls, file_path: str) -> "Database":
        """
        Load and validate a database file.

        Raises:
            OSError: the file cannot be read
            CorruptDatabase: the file is not a valid database document
        """
        path = Path(file_path)
        with open(path, "rb") as f:
            raw = f.read()

        try:
            document = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise CorruptDatabase(
                f"{path} is not a JSON document: {exc}"
            ) from exc

        database = cls.from_dict(document, source=str(path))
        logger.debug(f"Loaded {len(database)} records from {path}")
        return database

    @classmethod
    def from_dict(cls, document: Any, source: str = "<memory>") -> "Database":
        """
        Build a database from a parsed document in a single validation pass.

        Raises:
            CorruptDatabase: missing or mistyped fields, or embeddings of
                differing length
        """
        if not isinstance(document, dict):
            raise CorruptDatabase(f"{source}: top level must be an object")

        raw_records = document.get("records")
        if not isinstance(raw_records, list):
            raise CorruptDatabase(f"{source}: 'records' must be a list")

        model = document.get("model")
        if model is not None and not isinstance(model, str):
            raise CorruptDatabase(f"{source}: 'model' must be a string")

        declared = document.get("dimension")
        if declared is not None and (not isinstance(declared, int) or isinstance(declared, bool)):
            raise CorruptDatabase(f"{source}: 'dimension' must be an integer")

        records = []
        dimension = None
        for position, raw in enumerate(raw_records):
            record = _parse_record(raw, position, source)
            if dimension is None:
                dimension = record.dimension
            elif record.dimension != dimension:
                raise CorruptDatabase(
                    f"{source}: record {position} has {record.dimension} dimensions, "
                    f"expected {dimension}",
                    {"record": position},
                )
            records.append(record)

        if declared is not None and dimension is not None and declared != dimension:
            raise CorruptDatabase(
                f"{source}: declared dimension {declared} does not match records ({dimension})"
            )

        return cls(records=records, model=model)


def _parse_record(raw: Any, position: int, source: str) -> Record:
    if not isinstance(raw, dict):
        raise CorruptDatabase(f"{source}: record {position} must be an object")

    for name in ("source_path", "text"):
        if not isinstance(raw.get(name), str):
            raise CorruptDatabase(
                f"{source}: record {position} is missing string field '{name}'",
                {"record": position},
            )

    embedding = raw.get("embedding")
    if not isinstance(embedding, list) or not embedding:
        raise CorruptDatabase(
            f"{source}: record {position} needs a non-empty 'embedding' list",
            {"record": position},
        )

    return Record(
        source_path=raw["source_path"],
        text=raw["text"],
        embedding=_parse_vector(embedding, position, source),
    )


def _parse_vector(values: Sequence[Any], position: int, source: str) -> Tuple[float, ...]:
    vector = []
    for value in values:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise CorruptDatabase(
                f"{source}: record {position} has a non-numeric embedding value {value!r}",
                {"record": position},
            )
        try:
            number = float(value)
        except OverflowError:
            number = math.inf
        # json accepts NaN and Infinity literals
        if not math.isfinite(number):
            raise CorruptDatabase(
                f"{source}: record {position} has a non-finite embedding value {value!r}",
                {"record": position},
            )
        vector.append(number)
    return tuple(vector)


def make_record(source_path: str, text: str, embedding: Sequence[float]) -> Record:
    """Create a record, converting the embedding to a tuple of floats."""
    return Record(
        source_path=source_path,
        text=text,
        embedding=tuple(float(x) for x in embedding),
    )
