"""Tests for EmbeddingService class."""

import asyncio
import os
from unittest.mock import AsyncMock, patch

import numpy as np
import pytest

from levrag.config import config
from levrag.embeddings import EmbeddingService
from levrag.errors import EmbeddingFailure

from .conftest import (
    TestConstants,
    create_mock_embedding_response,
    make_connection_error,
    make_status_error,
    mock_openai_client,
    unit,
)


@pytest.fixture
def embeddings_client():
    client = mock_openai_client()
    client.embeddings.create.return_value = create_mock_embedding_response(
        [unit(0.1, 0.2, 0.3)]
    )
    return client


@pytest.fixture
def embedding_service_factory(embeddings_client):
    """Factory for EmbeddingService instances over the mocked client."""

    def _create_service(**overrides) -> EmbeddingService:  # noqa: ANN003
        options = {
            "model": TestConstants.TEST_EMBEDDING_MODEL,
            "dimension": TestConstants.EMBEDDING_DIMENSION,
            "client": embeddings_client,
            "request_delay": 0,
            "timeout": 5,
            "max_attempts": 3,
            "base_delay": 0,
        }
        options.update(overrides)
        return EmbeddingService(**options)

    return _create_service


@pytest.fixture
def embedding_service(embedding_service_factory):
    return embedding_service_factory()


def test_init_with_api_key():
    service = EmbeddingService(api_key=TestConstants.TEST_API_KEY)

    assert service.client.api_key == TestConstants.TEST_API_KEY
    assert service.client.max_retries == 0


def test_init_with_env_api_key():
    with patch.dict(os.environ, {"OPENAI_API_KEY": "env-key"}):
        service = EmbeddingService(model="text-embedding-3-small")

    assert service.model == "text-embedding-3-small"
    assert service.client.api_key == "env-key"


def test_init_defaults_from_config(embeddings_client):
    service = EmbeddingService(client=embeddings_client)

    assert service.model == config.EMBEDDING_MODEL
    assert service.dimension == config.EMBEDDING_DIMENSION
    assert service.request_delay == config.EMBEDDING_REQUEST_DELAY
    assert service.timeout == config.REQUEST_TIMEOUT


@pytest.mark.asyncio
async def test_get_embedding_success(embedding_service, embeddings_client):
    result = await embedding_service.get_embedding("test text")

    embeddings_client.embeddings.create.assert_awaited_once_with(
        model=TestConstants.TEST_EMBEDDING_MODEL,
        input="test text",
        dimensions=TestConstants.EMBEDDING_DIMENSION,
    )
    assert isinstance(result, np.ndarray)
    np.testing.assert_allclose(result, unit(0.1, 0.2, 0.3))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("data", "message"),
    [
        ([], "contained no vector"),
        ([["a", "b"]], "malformed vector"),
        ([[0.1, 0.2]], "does not match configured dimension"),
    ],
)
async def test_malformed_response_fails_without_retry(
    embedding_service, embeddings_client, data, message
):
    embeddings_client.embeddings.create.return_value = create_mock_embedding_response(data)

    with pytest.raises(EmbeddingFailure, match=message):
        await embedding_service.get_embedding("test text")

    assert embeddings_client.embeddings.create.await_count == 1


@pytest.mark.asyncio
async def test_transient_errors_are_retried(embedding_service, embeddings_client):
    embeddings_client.embeddings.create.side_effect = [
        make_connection_error(),
        make_status_error(503),
        create_mock_embedding_response([unit(1.0)]),
    ]

    result = await embedding_service.get_embedding("test text")

    np.testing.assert_allclose(result, unit(1.0))
    assert embeddings_client.embeddings.create.await_count == 3


@pytest.mark.asyncio
async def test_persistent_server_error_becomes_embedding_failure(
    embedding_service, embeddings_client
):
    embeddings_client.embeddings.create.side_effect = make_status_error(500)

    with pytest.raises(EmbeddingFailure, match="Embedding request failed"):
        await embedding_service.get_embedding("test text")

    assert embeddings_client.embeddings.create.await_count == 3


@pytest.mark.asyncio
async def test_client_error_is_not_retried(embedding_service, embeddings_client):
    embeddings_client.embeddings.create.side_effect = make_status_error(401)

    with pytest.raises(EmbeddingFailure, match="Embedding request failed"):
        await embedding_service.get_embedding("test text")

    assert embeddings_client.embeddings.create.await_count == 1


@pytest.mark.asyncio
async def test_timeout_becomes_embedding_failure(embedding_service_factory, embeddings_client):
    async def never_answers(**_kwargs):
        await asyncio.sleep(10)

    embeddings_client.embeddings.create.side_effect = never_answers
    service = embedding_service_factory(timeout=0.01, max_attempts=2)

    with pytest.raises(EmbeddingFailure, match="timed out"):
        await service.get_embedding("test text")

    assert embeddings_client.embeddings.create.await_count == 2


@pytest.mark.asyncio
async def test_get_embeddings_batch_is_sequential_and_ordered(
    embedding_service, embeddings_client
):
    embeddings_client.embeddings.create.side_effect = [
        create_mock_embedding_response([unit(float(i + 1))]) for i in range(3)
    ]

    results = await embedding_service.get_embeddings_batch(["a", "b", "c"])

    assert [call.kwargs["input"] for call in embeddings_client.embeddings.create.await_args_list] == [
        "a",
        "b",
        "c",
    ]
    for i, result in enumerate(results):
        np.testing.assert_allclose(result, unit(float(i + 1)))


@pytest.mark.asyncio
async def test_get_embeddings_batch_waits_between_requests(embedding_service_factory):
    service = embedding_service_factory(request_delay=0.25)

    with patch("levrag.embeddings.asyncio.sleep", new=AsyncMock()) as sleep:
        await service.get_embeddings_batch(["a", "b", "c"])

    assert sleep.await_count == 2
    sleep.assert_awaited_with(0.25)


@pytest.mark.asyncio
async def test_get_embeddings_batch_empty(embedding_service, embeddings_client):
    assert await embedding_service.get_embeddings_batch([]) == []
    embeddings_client.embeddings.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_embeddings_batch_reports_failing_index(
    embedding_service, embeddings_client
):
    embeddings_client.embeddings.create.side_effect = [
        create_mock_embedding_response([unit(1.0)]),
        create_mock_embedding_response([]),
    ]

    with pytest.raises(EmbeddingFailure, match="failed at index 1: Embedding response"):
        await embedding_service.get_embeddings_batch(["first", "second", "third"])

    assert embeddings_client.embeddings.create.await_count == 2


@pytest.mark.asyncio
async def test_aclose_closes_client(embedding_service, embeddings_client):
    await embedding_service.aclose()

    embeddings_client.close.assert_awaited_once()
