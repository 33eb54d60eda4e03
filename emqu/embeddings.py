"""
Embeddings Module

Turns text into fixed-length vectors by calling an embedding provider.

The rest of emqu only depends on one call signature:

    embed_text(text: str) -> list of floats

so any callable with that shape (a test fake, a local model wrapper) can
stand in for the EmbeddingClient defined here.

PROVIDERS:
- OpenAI embeddings API (default model text-embedding-3-small, 1536 numbers)
- Azure OpenAI, when an Azure endpoint is configured. There the model name is
  the name of your embedding deployment.
- Any OpenAI-compatible server reachable through OPENAI_BASE_URL

Retries and timeouts are left to the openai client (max_retries, timeout).
Whatever still fails surfaces as ProviderError.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import openai
from loguru import logger
from openai import AzureOpenAI, OpenAI

from config.settings import ProviderConfig
from emqu.exceptions import ProviderError

EmbedFunction = Callable[[str], Sequence[float]]


@dataclass
class EmbeddingResult:
    """Result of embedding a piece of text."""
    text: str
    embedding: List[float]
    model: str
    token_count: int


class EmbeddingClient:
    """
    Client for generating embeddings through the openai SDK.

    USAGE:
        client = EmbeddingClient(settings.provider)
        vector = client.embed_text("How do I rotate the logs?")

    The client is safe to call from several threads at once; the embed step
    runs one request per chunk on a thread pool.
    """

    def __init__(self, config: ProviderConfig, client=None):
        """
        Initialize the embedding client.

        Args:
            config: Provider settings (model, endpoint, credentials)
            client: Pre-built openai client, mainly for tests. When omitted
                one is created from config.

        Raises:
            ProviderError: no API key is configured
        """
        self.config = config
        self.model = config.model

        if client is not None:
            self.client = client
            return

        if not config.api_key:
            variable = "AZURE_OPENAI_API_KEY" if config.is_azure else "OPENAI_API_KEY"
            raise ProviderError(
                f"{variable} not set. "
                "Add it to your .env file or set it as an environment variable."
            )

        if config.is_azure:
            self.client = AzureOpenAI(
                azure_endpoint=config.azure_endpoint,
                api_key=config.api_key,
                api_version=config.api_version,
                timeout=config.timeout,
                max_retries=config.max_retries,
            )
        else:
            self.client = OpenAI(
                api_key=config.api_key,
                base_url=config.base_url,
                timeout=config.timeout,
                max_retries=config.max_retries,
            )

    def embed(self, text: str) -> EmbeddingResult:
        """
        Generate the embedding for a single text.

        Raises:
            ProviderError: the request failed or the response has no usable vector
        """
        try:
            response = self.client.embeddings.create(input=text, model=self.model)
        except openai.OpenAIError as exc:
            raise ProviderError(
                f"Embedding request failed: {exc}", {"model": self.model}
            ) from exc

        data = getattr(response, "data", None)
        if not data:
            raise ProviderError("Provider returned no embedding", {"model": self.model})

        try:
            embedding = [float(x) for x in data[0].embedding]
        except (AttributeError, TypeError, ValueError) as exc:
            raise ProviderError(
                f"Provider returned a malformed embedding: {exc}", {"model": self.model}
            ) from exc
        if not embedding:
            raise ProviderError("Provider returned an empty embedding", {"model": self.model})

        usage = getattr(response, "usage", None)
        token_count = getattr(usage, "total_tokens", 0) or 0
        logger.trace(f"Embedded {len(text)} chars ({token_count} tokens)")

        return EmbeddingResult(
            text=text,
            embedding=embedding,
            model=self.model,
            token_count=token_count,
        )

    def embed_text(self, text: str) -> List[float]:
        """Embed text and return only the vector."""
        return self.embed(text).embedding

    __call__ = embed_text


def check_dimension(vector: Sequence[float], expected: Optional[int]) -> int:
    """
    Return the vector length, raising ProviderError when it is empty or
    differs from the expected dimension.
    """
    size = len(vector)
    if size == 0:
        raise ProviderError("Provider returned an empty embedding")
    if expected is not None and size != expected:
        raise ProviderError(
            "Provider returned embeddings of differing dimension",
            {"expected": expected, "actual": size},
        )
    return size
