"""Tests for the Retriever's top-K and threshold policy."""

import pytest

from levrag.config import config
from levrag.retrieval import Retriever
from levrag.vector_store import BruteForceIndex

from .conftest import hashed_embedding, insert_raw_row, make_chunk, unit


@pytest.fixture
def random_index(memory_repository):
    """Twenty chunks with hash-seeded vectors."""
    memory_repository.add_chunks(
        [
            make_chunk(f"chunk {i}", hashed_embedding(f"chunk {i}"), chunk_index=i)
            for i in range(20)
        ]
    )
    return BruteForceIndex(memory_repository)


def test_defaults_from_config(random_index):
    retriever = Retriever(random_index)

    assert retriever.top_k == config.TOP_K
    assert retriever.threshold == config.SIMILARITY_THRESHOLD


@pytest.mark.parametrize("query_text", ["levboots", "battery", "chunk 3", "safety"])
@pytest.mark.parametrize(("top_k", "threshold"), [(1, 0.0), (5, 0.3), (3, -1.0), (50, 0.1)])
def test_results_bounded_thresholded_and_sorted(random_index, query_text, top_k, threshold):
    retriever = Retriever(random_index, top_k=top_k, threshold=threshold)

    result = retriever.retrieve(hashed_embedding(query_text))

    assert len(result.chunks) <= top_k
    assert all(match.similarity >= threshold for match in result.chunks)
    similarities = [match.similarity for match in result.chunks]
    assert similarities == sorted(similarities, reverse=True)
    assert result.scanned == 20


def test_exact_match_ranks_first(random_index):
    result = Retriever(random_index, top_k=3, threshold=0.3).retrieve(
        hashed_embedding("chunk 7")
    )

    assert result.chunks[0].chunk.content == "chunk 7"
    assert result.chunks[0].similarity == pytest.approx(1.0)


def test_empty_repository_gives_empty_result(memory_repository):
    result = Retriever(BruteForceIndex(memory_repository), top_k=5, threshold=0.3).retrieve(
        unit(1.0)
    )

    assert result.is_empty
    assert result.chunks == []
    assert result.scanned == 0


def test_nothing_above_threshold_is_empty_not_error(memory_repository):
    memory_repository.add_chunks([make_chunk("orthogonal", unit(0.0, 1.0))])

    result = Retriever(BruteForceIndex(memory_repository), top_k=5, threshold=0.3).retrieve(
        unit(1.0)
    )

    assert result.is_empty
    assert result.scanned == 1


def test_skipped_chunks_are_counted_and_logged(sqlite_repository, caplog):
    sqlite_repository.add_chunks([make_chunk("good", unit(1.0))])
    insert_raw_row(sqlite_repository, "bad", "{oops")

    with caplog.at_level("WARNING", logger="levrag.retrieval"):
        result = Retriever(BruteForceIndex(sqlite_repository), top_k=5, threshold=0.3).retrieve(
            unit(1.0)
        )

    assert [match.chunk.content for match in result.chunks] == ["good"]
    assert result.skipped == 1
    assert "Skipped 1 chunks with missing or malformed embeddings" in caplog.text
