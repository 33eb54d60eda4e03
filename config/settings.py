"""
Configuration settings for emqu.

WHAT LIVES HERE:
- Provider settings: which embedding model to call and how to reach it
- Chunking settings: boundary patterns and the soft size limit
- Indexing settings: worker count and unreadable-file policy
- Retrieval settings: default number of results

Values come from environment variables, optionally loaded from a .env file.
There is no module-level settings instance: callers build a Settings value
with load_settings() and pass it to the components that need it.

OPENAI vs AZURE OPENAI:
- Setting AZURE_OPENAI_ENDPOINT switches the client to Azure. In Azure the
  model name is the name of your embedding *deployment*.
- Otherwise the public OpenAI API (or any compatible server given through
  OPENAI_BASE_URL) is used.
"""

import os
import re
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import find_dotenv, load_dotenv


DEFAULT_DELIMITER_PATTERN = r"^-{4,}[ \t]*$"
DEFAULT_HEADING_PATTERN = r"^#{1,6}[ \t]"
DEFAULT_HEADING_SUFFIXES = (".md", ".markdown")


@dataclass
class ProviderConfig:
    """
    Configuration for the embedding provider.

    The API key is optional here: it is only checked when an embedding call
    is about to be made, so chunking works without credentials.
    """
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    azure_endpoint: Optional[str] = None
    api_version: str = "2024-02-15-preview"
    model: str = "text-embedding-3-small"  # Deployment name on Azure
    timeout: float = 30.0                   # Seconds per request
    max_retries: int = 2                    # Handled by the openai client

    @property
    def is_azure(self) -> bool:
        return bool(self.azure_endpoint)


@dataclass
class ChunkingConfig:
    """
    Configuration for document chunking.

    - max_chunk_size: soft limit in characters. Sections larger than this are
      split at paragraphs, then lines, sentences, words, characters.
    - delimiter_pattern: lines matching it separate records (e.g. "----").
    - heading_pattern: lines matching it start a new section.
    - heading_suffixes: file suffixes the heading pattern applies to. In
      shell scripts or YAML a "# " line is a comment, not a heading.
    - write_headers: prefix chunk files with "From <name>, lines a - b".

    A pattern set to None (or "") disables that boundary.
    """
    max_chunk_size: int = 1000
    delimiter_pattern: Optional[str] = DEFAULT_DELIMITER_PATTERN
    heading_pattern: Optional[str] = DEFAULT_HEADING_PATTERN
    heading_suffixes: Tuple[str, ...] = DEFAULT_HEADING_SUFFIXES
    write_headers: bool = True


@dataclass
class IndexingConfig:
    """
    Configuration for the embed step.

    - workers: concurrent embedding requests
    - prechunked: treat every input file as exactly one chunk
    - on_input_error: "fail" aborts on an unreadable file, "skip" warns
    """
    workers: int = 4
    prechunked: bool = False
    on_input_error: str = "fail"


@dataclass
class RetrievalConfig:
    """Configuration for querying."""
    top_k: int = 1


@dataclass
class Settings:
    """Main settings container, one section per concern."""
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    indexing: IndexingConfig = field(default_factory=IndexingConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)


INPUT_ERROR_POLICIES = ("fail", "skip")


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def _env_pattern(name: str, default: str) -> Optional[str]:
    """Unset keeps the default, an empty value disables the boundary."""
    raw = os.getenv(name)
    if raw is None:
        return default
    if not raw.strip():
        return None
    try:
        re.compile(raw, re.MULTILINE)
    except re.error as exc:
        raise ValueError(f"{name} is not a valid regular expression: {exc}") from None
    return raw


def _env_suffixes(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    suffixes = []
    for part in raw.split(","):
        part = part.strip().lower()
        if part:
            suffixes.append(part if part.startswith(".") else "." + part)
    return tuple(suffixes)


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Load settings from environment variables.

    Args:
        env_file: Optional path to a .env file. Without it the nearest .env
            file in the working directory or one of its parents is used.
            Variables already present in the environment win over the file.

    RECOGNIZED ENVIRONMENT VARIABLES:
    - OPENAI_API_KEY or AZURE_OPENAI_API_KEY
    - OPENAI_BASE_URL, AZURE_OPENAI_ENDPOINT, AZURE_OPENAI_API_VERSION
    - EMQU_EMBEDDING_MODEL, EMQU_REQUEST_TIMEOUT, EMQU_MAX_RETRIES
    - EMQU_MAX_CHUNK_SIZE, EMQU_WORKERS, EMQU_TOP_K
    - EMQU_DELIMITER_PATTERN, EMQU_HEADING_PATTERN (empty disables),
      EMQU_HEADING_SUFFIXES (comma separated, e.g. ".md,.rst")

    Raises:
        ValueError: a variable is malformed or out of range
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv(find_dotenv(usecwd=True))

    azure_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT") or None
    if azure_endpoint:
        api_key = os.getenv("AZURE_OPENAI_API_KEY") or os.getenv("OPENAI_API_KEY")
    else:
        api_key = os.getenv("OPENAI_API_KEY")

    defaults = ProviderConfig()
    provider = ProviderConfig(
        api_key=api_key or None,
        base_url=os.getenv("OPENAI_BASE_URL") or None,
        azure_endpoint=azure_endpoint,
        api_version=os.getenv("AZURE_OPENAI_API_VERSION") or defaults.api_version,
        model=os.getenv("EMQU_EMBEDDING_MODEL") or defaults.model,
        timeout=_env_float("EMQU_REQUEST_TIMEOUT", defaults.timeout),
        max_retries=_env_int("EMQU_MAX_RETRIES", defaults.max_retries, minimum=0),
    )

    return Settings(
        provider=provider,
        chunking=ChunkingConfig(
            max_chunk_size=_env_int("EMQU_MAX_CHUNK_SIZE", ChunkingConfig.max_chunk_size),
            delimiter_pattern=_env_pattern("EMQU_DELIMITER_PATTERN", DEFAULT_DELIMITER_PATTERN),
            heading_pattern=_env_pattern("EMQU_HEADING_PATTERN", DEFAULT_HEADING_PATTERN),
            heading_suffixes=_env_suffixes("EMQU_HEADING_SUFFIXES", DEFAULT_HEADING_SUFFIXES),
        ),
        indexing=IndexingConfig(
            workers=_env_int("EMQU_WORKERS", IndexingConfig.workers),
        ),
        retrieval=RetrievalConfig(
            top_k=_env_int("EMQU_TOP_K", RetrievalConfig.top_k),
        ),
    )
