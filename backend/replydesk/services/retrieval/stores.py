from __future__ import annotations

from typing import Any, Callable, Dict, List, Sequence, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from replydesk.models.knowledge import Document, DocumentChunk, FaqEntry
from replydesk.models.product import Product
from replydesk.services.retrieval.terms import fold_case
from replydesk.services.retrieval.types import Corpus, CorpusRecord

SessionFactory = Callable[[], AsyncSession]


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _any_column_contains(columns: Sequence[Any], terms: Sequence[str]):
    clauses = [
        func.lower(func.coalesce(column, "")).like(_like_pattern(term), escape="\\")
        for term in terms
        for column in columns
    ]
    return or_(*clauses)


def _joined(*parts: Any) -> str:
    return fold_case(" ".join(str(part) for part in parts if part))


class FaqStore:
    corpus = Corpus.FAQ

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    @staticmethod
    def to_record(entry: FaqEntry) -> CorpusRecord:
        return CorpusRecord(
            record_id=str(entry.id),
            searchable_text=_joined(entry.question, entry.answer),
            data={"id": entry.id, "question": entry.question, "answer": entry.answer},
        )

    async def nearest_neighbors(self, vector: List[float], limit: int) -> List[Tuple[CorpusRecord, float]]:
        distance = FaqEntry.embedding.cosine_distance(vector).label("distance")
        stmt = (
            select(FaqEntry, distance)
            .where(FaqEntry.approved.is_(True))
            .where(FaqEntry.embedding.is_not(None))
            .order_by(distance)
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [(self.to_record(entry), float(dist)) for entry, dist in rows]

    async def keyword_search(self, terms: Sequence[str], limit: int) -> List[CorpusRecord]:
        if not terms:
            return []
        stmt = (
            select(FaqEntry)
            .where(FaqEntry.approved.is_(True))
            .where(_any_column_contains([FaqEntry.question, FaqEntry.answer], terms))
            .order_by(FaqEntry.id)
            .limit(limit)
        )
        async with self._session_factory() as session:
            entries = (await session.execute(stmt)).scalars().all()
        return [self.to_record(entry) for entry in entries]


class DocumentChunkStore:
    corpus = Corpus.DOCUMENT

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    @staticmethod
    def to_record(chunk: DocumentChunk, document: Document) -> CorpusRecord:
        return CorpusRecord(
            record_id=str(chunk.id),
            searchable_text=_joined(chunk.content),
            data={
                "id": chunk.id,
                "document_id": document.id,
                "document_name": document.name,
                "chunk_index": chunk.chunk_index,
                "content": chunk.content,
            },
        )

    async def nearest_neighbors(self, vector: List[float], limit: int) -> List[Tuple[CorpusRecord, float]]:
        distance = DocumentChunk.embedding.cosine_distance(vector).label("distance")
        stmt = (
            select(DocumentChunk, Document, distance)
            .join(Document, Document.id == DocumentChunk.document_id)
            .where(Document.available.is_(True))
            .where(DocumentChunk.embedding.is_not(None))
            .order_by(distance)
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [(self.to_record(chunk, document), float(dist)) for chunk, document, dist in rows]

    async def keyword_search(self, terms: Sequence[str], limit: int) -> List[CorpusRecord]:
        if not terms:
            return []
        stmt = (
            select(DocumentChunk, Document)
            .join(Document, Document.id == DocumentChunk.document_id)
            .where(Document.available.is_(True))
            .where(_any_column_contains([DocumentChunk.content], terms))
            .order_by(DocumentChunk.document_id, DocumentChunk.chunk_index)
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [self.to_record(chunk, document) for chunk, document in rows]


class ProductStore:
    corpus = Corpus.PRODUCT

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    @staticmethod
    def to_record(product: Product) -> CorpusRecord:
        data: Dict[str, Any] = {
            "id": product.id,
            "title": product.title,
            "description": product.description,
            "vendor": product.vendor,
            "product_type": product.product_type,
            "min_price": product.min_price,
            "max_price": product.max_price,
            "currency": product.currency,
            "total_inventory": product.total_inventory,
            "variants": list(product.variants or []),
            "image_url": product.image_url,
            "url": product.product_url,
        }
        return CorpusRecord(
            record_id=str(product.id),
            searchable_text=_joined(product.title, product.description, product.vendor, product.product_type),
            data=data,
        )

    async def nearest_neighbors(self, vector: List[float], limit: int) -> List[Tuple[CorpusRecord, float]]:
        distance = Product.embedding.cosine_distance(vector).label("distance")
        stmt = (
            select(Product, distance)
            .where(Product.is_active.is_(True))
            .where(Product.embedding.is_not(None))
            .order_by(distance)
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [(self.to_record(product), float(dist)) for product, dist in rows]

    async def keyword_search(self, terms: Sequence[str], limit: int) -> List[CorpusRecord]:
        if not terms:
            return []
        columns = [Product.title, Product.description, Product.vendor, Product.product_type]
        stmt = (
            select(Product)
            .where(Product.is_active.is_(True))
            .where(_any_column_contains(columns, terms))
            .order_by(Product.id)
            .limit(limit)
        )
        async with self._session_factory() as session:
            products = (await session.execute(stmt)).scalars().all()
        return [self.to_record(product) for product in products]


def build_sql_stores(session_factory: SessionFactory) -> Dict[Corpus, Any]:
    return {
        Corpus.FAQ: FaqStore(session_factory),
        Corpus.DOCUMENT: DocumentChunkStore(session_factory),
        Corpus.PRODUCT: ProductStore(session_factory),
    }
