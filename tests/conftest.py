import hashlib
import os
import re
import sys
from types import SimpleNamespace

import pytest

from hypothesis import settings
from loguru import logger

settings.register_profile("ci", settings(max_examples=200, deadline=None, derandomize=True))
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))

DIMENSION = 8


def fake_embed(text):
    """Deterministic bag-of-words vector, no network."""
    vector = [0.0] * DIMENSION
    for word in re.findall(r"\w+", text.lower()):
        digest = hashlib.sha256(word.encode("utf-8")).digest()
        vector[digest[0] % DIMENSION] += 1.0
    return vector


class RecordingEmbedder:
    """Wraps an embedding function and remembers every call."""

    def __init__(self, fn=fake_embed):
        self.fn = fn
        self.calls = []

    def __call__(self, text):
        self.calls.append(text)
        return self.fn(text)


class FakeEmbeddings:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def create(self, input, model):
        self.requests.append((input, model))
        if self.error is not None:
            raise self.error
        if self.response is not None:
            return self.response
        return SimpleNamespace(
            data=[SimpleNamespace(embedding=fake_embed(input))],
            usage=SimpleNamespace(total_tokens=len(input.split())),
        )


class FakeOpenAIClient:
    """Stands in for openai.OpenAI: only client.embeddings.create is used."""

    def __init__(self, response=None, error=None):
        self.embeddings = FakeEmbeddings(response, error)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in list(os.environ):
        if name.startswith("EMQU_") or name.startswith("AZURE_OPENAI_") or name.startswith("OPENAI_"):
            monkeypatch.delenv(name)


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logger.remove()
    logger.add(lambda message: sys.stderr.write(message), level="DEBUG")


@pytest.fixture
def embedder():
    return RecordingEmbedder()


@pytest.fixture
def corpus(tmp_path):
    """A small directory of text files."""
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "b_logging.md").write_text(
        "# Logging\nLogs rotate every night.\n\n## Retention\nOld logs are kept for thirty days.\n",
        encoding="utf-8",
    )
    (docs / "a_deploy.txt").write_text(
        "Deploy with the release script.\n----\nRoll back by redeploying the previous tag.\n",
        encoding="utf-8",
    )
    (docs / "c_empty.txt").write_text("   \n\n", encoding="utf-8")
    return docs
