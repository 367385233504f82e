import pytest

pytest.importorskip("pydantic_settings")

from conftest import FakeEmbedder, InMemoryCorpusStore, ScriptedLLM, product_record

from replydesk.core.config import settings
from replydesk.services.retrieval.hybrid import HybridRetriever
from replydesk.services.retrieval.product_finder import ProductFinder
from replydesk.services.retrieval.rerank_service import CandidateReranker, parse_exclude_terms
from replydesk.services.retrieval.types import Corpus, RetrievalCandidate


def _pool(count: int) -> list:
    return [
        RetrievalCandidate(
            corpus=Corpus.PRODUCT,
            record_id=str(index),
            record={"id": str(index), "title": f"Kolye {index}", "description": "gümüş zincir", "min_price": 100},
            searchable_text=f"kolye {index}",
        )
        for index in range(1, count + 1)
    ]


@pytest.mark.asyncio
async def test_small_pool_skips_llm() -> None:
    llm = ScriptedLLM()
    reranker = CandidateReranker(llm)

    results = await reranker.rerank("kolye", _pool(3), final_limit=5)

    assert [candidate.record_id for candidate in results] == ["1", "2", "3"]
    assert llm.requests == []
    assert reranker.stats()["skipped"] == 1


@pytest.mark.asyncio
async def test_ids_are_read_from_json_inside_prose() -> None:
    llm = ScriptedLLM(['Best picks: {"ids": ["4", 2, "4", "99"]} based on the request.'])
    reranker = CandidateReranker(llm)

    results = await reranker.rerank("kolye", _pool(6), final_limit=2)

    assert [candidate.record_id for candidate in results] == ["4", "2"]
    assert "id=6" in llm.requests[0]["messages"][1]["content"]


@pytest.mark.asyncio
async def test_short_selection_is_backfilled_in_retrieval_order() -> None:
    reranker = CandidateReranker(ScriptedLLM(['{"ids": ["5"]}']))

    results = await reranker.rerank("kolye", _pool(6), final_limit=3)

    assert [candidate.record_id for candidate in results] == ["5", "1", "2"]
    assert reranker.stats()["backfilled"] == 1


@pytest.mark.asyncio
@pytest.mark.regression
async def test_unknown_ids_fall_back_to_retrieval_order() -> None:
    reranker = CandidateReranker(ScriptedLLM(['{"ids": ["x", "y"]}']))

    results = await reranker.rerank("kolye", _pool(6), final_limit=2)

    assert [candidate.record_id for candidate in results] == ["1", "2"]
    assert reranker.stats()["fallbacks"] == 1


@pytest.mark.asyncio
async def test_llm_error_falls_back_to_retrieval_order() -> None:
    reranker = CandidateReranker(ScriptedLLM([RuntimeError("rate limited")]))

    results = await reranker.rerank("kolye", _pool(6), final_limit=2)

    assert [candidate.record_id for candidate in results] == ["1", "2"]
    assert reranker.stats()["fallbacks"] == 1


@pytest.mark.asyncio
async def test_excluded_terms_are_removed_before_ranking() -> None:
    pool = _pool(3)
    pool[0] = RetrievalCandidate(
        corpus=Corpus.PRODUCT,
        record_id="1",
        record={"id": "1", "title": "Taşlı Kolye", "description": "altın kaplama"},
        searchable_text="taşlı kolye",
    )
    reranker = CandidateReranker(ScriptedLLM())

    results = await reranker.rerank("kolye", pool, final_limit=5, exclude_terms="taşlı ve kaplama")

    assert [candidate.record_id for candidate in results] == ["2", "3"]


@pytest.mark.asyncio
async def test_disabled_rerank_returns_prefix(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "RERANK_ENABLED", False)
    llm = ScriptedLLM()

    results = await CandidateReranker(llm).rerank("kolye", _pool(8), final_limit=3)

    assert [candidate.record_id for candidate in results] == ["1", "2", "3"]
    assert llm.requests == []


def test_parse_exclude_terms_splits_on_separators_and_conjunctions() -> None:
    assert parse_exclude_terms("Gold plating, silver ve taşlı / inci") == ["gold plating", "silver", "taşlı", "inci"]
    assert parse_exclude_terms(None) == []


@pytest.mark.asyncio
async def test_product_finder_reranks_oversized_pool(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "RERANK_CANDIDATE_POOL", 6)
    monkeypatch.setattr(settings, "RERANK_FINAL_LIMIT", 2)
    rows = [product_record(str(index), f"Gümüş kolye {index}") for index in range(1, 7)]
    store = InMemoryCorpusStore(Corpus.PRODUCT, keyword_rows=rows)
    llm = ScriptedLLM(['{"ids": ["6", "3"]}'])
    finder = ProductFinder(HybridRetriever({Corpus.PRODUCT: store}, embedder=FakeEmbedder()), CandidateReranker(llm))

    results = await finder.find("gümüş kolye")

    assert [candidate.record_id for candidate in results] == ["6", "3"]
    assert len(llm.requests) == 1
