import pytest

pytest.importorskip("pydantic_settings")

from conftest import FakeEmbedder, InMemoryCorpusStore, product_record

from replydesk.services.retrieval.fusion import reciprocal_rank_fusion, waterfall_merge
from replydesk.services.retrieval.hybrid import HybridRetriever
from replydesk.services.retrieval.terms import extract_terms, sanitize_product_query
from replydesk.services.retrieval.types import Corpus, CorpusRecord, RetrievalCandidate


def _faq(record_id: str, text: str) -> CorpusRecord:
    return CorpusRecord(record_id=record_id, searchable_text=text, data={"question": text, "answer": "..."})


def _candidate(record_id: str, *, distance=None, matches: int = 0) -> RetrievalCandidate:
    return RetrievalCandidate(
        corpus=Corpus.PRODUCT,
        record_id=record_id,
        record={"id": record_id},
        searchable_text="",
        distance=distance,
        keyword_matches=matches,
    )


@pytest.mark.asyncio
async def test_faq_results_are_fused_by_weighted_reciprocal_rank() -> None:
    a, b, c = _faq("1", "kargo ücreti"), _faq("2", "iade süresi kaç gün"), _faq("3", "iade adresi")
    store = InMemoryCorpusStore(Corpus.FAQ, neighbors=[(a, 0.1), (b, 0.2)], keyword_rows=[c, b])
    retriever = HybridRetriever({Corpus.FAQ: store}, embedder=FakeEmbedder())

    results = await retriever.search(Corpus.FAQ, "iade süresi", 5)

    assert [candidate.record_id for candidate in results] == ["2", "1", "3"]
    assert results[0].match_score == pytest.approx(0.6 / 62 + 0.4 / 61)
    assert results[0].distance == pytest.approx(0.2)


def test_rrf_ties_keep_discovery_order() -> None:
    results = reciprocal_rank_fusion(
        [_candidate("x")],
        [_candidate("y")],
        limit=5,
        semantic_weight=0.5,
        keyword_weight=0.5,
    )

    assert [candidate.record_id for candidate in results] == ["x", "y"]


@pytest.mark.asyncio
@pytest.mark.regression
async def test_full_keyword_match_beats_closer_semantic_neighbour() -> None:
    a = product_record("A", "gümüş kolye", "zarif model")
    b = product_record("B", "altın küpe")
    store = InMemoryCorpusStore(Corpus.PRODUCT, neighbors=[(b, 0.1), (a, 0.5)], keyword_rows=[a])
    retriever = HybridRetriever({Corpus.PRODUCT: store}, embedder=FakeEmbedder())

    results = await retriever.search(Corpus.PRODUCT, "gümüş kolye", 1)

    assert [candidate.record_id for candidate in results] == ["A"]
    assert results[0].keyword_matches == 2


def test_waterfall_tiers_are_exhausted_in_order() -> None:
    semantic = [_candidate("sem", distance=0.1), _candidate("one", distance=0.2, matches=1)]
    keyword = [_candidate("full", matches=3), _candidate("two", matches=2), _candidate("one")]

    results = waterfall_merge(semantic, keyword, total_terms=3, limit=10)

    assert [candidate.record_id for candidate in results] == ["full", "two", "one", "sem"]


def test_waterfall_drops_keyword_only_rows_without_matches() -> None:
    results = waterfall_merge([], [_candidate("noise")], total_terms=2, limit=5)

    assert results == []


@pytest.mark.asyncio
async def test_semantic_rows_below_similarity_floor_are_dropped() -> None:
    near, far = _faq("1", "kargo"), _faq("2", "iade")
    store = InMemoryCorpusStore(Corpus.FAQ, neighbors=[(near, 0.2), (far, 0.8)])
    retriever = HybridRetriever({Corpus.FAQ: store}, embedder=FakeEmbedder())

    results = await retriever.search(Corpus.FAQ, "teslimat", 5)

    assert [candidate.record_id for candidate in results] == ["1"]


@pytest.mark.asyncio
async def test_keyword_channel_survives_embedding_failure() -> None:
    row = _faq("9", "iade süresi")
    store = InMemoryCorpusStore(Corpus.FAQ, neighbors=[(row, 0.1)], keyword_rows=[row])
    retriever = HybridRetriever({Corpus.FAQ: store}, embedder=FakeEmbedder(fail=True))

    results = await retriever.search(Corpus.FAQ, "iade süresi", 3)

    assert [candidate.record_id for candidate in results] == ["9"]
    assert results[0].distance is None


@pytest.mark.asyncio
async def test_both_channels_failing_returns_empty() -> None:
    store = InMemoryCorpusStore(Corpus.FAQ, fail_semantic=True, fail_keyword=True)
    retriever = HybridRetriever({Corpus.FAQ: store}, embedder=FakeEmbedder())

    assert await retriever.search(Corpus.FAQ, "iade", 3) == []


@pytest.mark.asyncio
async def test_unknown_corpus_and_blank_query_return_empty() -> None:
    retriever = HybridRetriever({}, embedder=FakeEmbedder())

    assert await retriever.search(Corpus.DOCUMENT, "iade", 3) == []
    assert await retriever.search(Corpus.DOCUMENT, "   ", 3) == []


@pytest.mark.asyncio
async def test_product_query_uses_latest_line_without_speaker_prefix() -> None:
    store = InMemoryCorpusStore(Corpus.PRODUCT)
    embedder = FakeEmbedder()
    retriever = HybridRetriever({Corpus.PRODUCT: store}, embedder=embedder)

    await retriever.search(Corpus.PRODUCT, "Kullanıcı: merhaba\nKullanıcı: siyah kolye", 5)

    assert embedder.calls == ["siyah kolye"]
    assert store.keyword_calls == [["siyah", "kolye"]]


def test_term_extraction_folds_turkish_capital_i() -> None:
    assert extract_terms("İade ve DEĞİŞİM") == ["iade", "değişim"]
    assert sanitize_product_query("   ") == ""
