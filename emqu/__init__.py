# emqu: chunk, embed and query textual files
from .chunking import Chunk, DocumentLoader, SemanticChunker
from .database import Database, Record
from .embeddings import EmbeddingClient, EmbedFunction
from .exceptions import (
    CorruptDatabase,
    DimensionMismatch,
    EmquError,
    InputError,
    ProviderError,
)
from .pipeline import Pipeline
from .query import QueryEngine, QueryResult, cosine_similarity, rank

__version__ = "0.1.0"
