from types import SimpleNamespace

import openai
import pytest

from config.settings import ProviderConfig
from emqu.embeddings import EmbeddingClient, check_dimension
from emqu.exceptions import ProviderError

from tests.conftest import DIMENSION, FakeOpenAIClient, fake_embed


def test_embed_text_returns_floats():
    fake = FakeOpenAIClient()
    client = EmbeddingClient(ProviderConfig(model="my-model"), client=fake)

    vector = client.embed_text("logs rotate")

    assert vector == fake_embed("logs rotate")
    assert len(vector) == DIMENSION
    assert all(isinstance(x, float) for x in vector)
    assert fake.embeddings.requests == [("logs rotate", "my-model")]


def test_embed_reports_token_usage():
    client = EmbeddingClient(ProviderConfig(), client=FakeOpenAIClient())

    result = client.embed("one two three")

    assert result.token_count == 3
    assert result.model == "text-embedding-3-small"


def test_client_is_callable_as_embed_function():
    client = EmbeddingClient(ProviderConfig(), client=FakeOpenAIClient())
    assert client("deploy") == fake_embed("deploy")


def test_openai_errors_become_provider_errors():
    error = openai.OpenAIError("rate limited")
    client = EmbeddingClient(ProviderConfig(), client=FakeOpenAIClient(error=error))

    with pytest.raises(ProviderError, match="rate limited") as excinfo:
        client.embed_text("text")

    assert excinfo.value.__cause__ is error


@pytest.mark.parametrize("response", [
    SimpleNamespace(data=[], usage=None),
    SimpleNamespace(data=[SimpleNamespace(embedding=[])], usage=None),
    SimpleNamespace(data=[SimpleNamespace(embedding=None)], usage=None),
    SimpleNamespace(data=[SimpleNamespace(embedding=["x", "y"])], usage=None),
    SimpleNamespace(),
])
def test_malformed_responses(response):
    client = EmbeddingClient(ProviderConfig(), client=FakeOpenAIClient(response=response))

    with pytest.raises(ProviderError):
        client.embed_text("text")


def test_missing_api_key():
    with pytest.raises(ProviderError, match="OPENAI_API_KEY"):
        EmbeddingClient(ProviderConfig(api_key=None))


def test_missing_azure_api_key():
    config = ProviderConfig(azure_endpoint="https://example.openai.azure.com")
    with pytest.raises(ProviderError, match="AZURE_OPENAI_API_KEY"):
        EmbeddingClient(config)


def test_builds_openai_client():
    client = EmbeddingClient(ProviderConfig(api_key="sk-test", max_retries=5))

    assert isinstance(client.client, openai.OpenAI)
    assert client.client.max_retries == 5


def test_builds_azure_client():
    config = ProviderConfig(
        api_key="azure-key",
        azure_endpoint="https://example.openai.azure.com",
        model="embedding-deployment",
    )

    client = EmbeddingClient(config)

    assert isinstance(client.client, openai.AzureOpenAI)
    assert client.model == "embedding-deployment"


def test_check_dimension():
    assert check_dimension([1.0, 2.0], None) == 2
    assert check_dimension([1.0, 2.0], 2) == 2
    with pytest.raises(ProviderError):
        check_dimension([1.0, 2.0], 3)
    with pytest.raises(ProviderError):
        check_dimension([], None)
