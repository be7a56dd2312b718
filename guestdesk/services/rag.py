import logging
from dataclasses import dataclass, field
from typing import List, Literal

from sqlalchemy.exc import SQLAlchemyError

from ..models import Chunk
from ..utils.text import tokenize_query
from .knowledge import KnowledgeStore

logger = logging.getLogger(__name__)

RetrievalMode = Literal["keyword", "fulltext", "hybrid"]

SEPARATOR = "\n\n---\n\n"


@dataclass
class RetrievalResult:
    mode: str  # mode that produced the context: "keyword", "fulltext" or "none"
    chunks: List[Chunk] = field(default_factory=list)
    context: str = ""

    @property
    def empty(self) -> bool:
        return not self.context


class RetrievalEngine:
    """Selects knowledge for a query according to the configured mode.

    Keyword matches come back in chunk-index order, not ranked by relevance.
    Storage errors never escape: the turn continues without context.
    """

    def __init__(self, store: KnowledgeStore, mode: RetrievalMode = "hybrid", max_chunks: int = 5):
        if mode not in ("keyword", "fulltext", "hybrid"):
            raise ValueError(f"unknown retrieval mode: {mode}")
        self.store = store
        self.mode = mode
        self.max_chunks = max_chunks

    def retrieve(self, tenant_id: int, query: str) -> RetrievalResult:
        try:
            if self.mode == "fulltext":
                return self.fulltext(tenant_id)
            result = self.keyword(tenant_id, query)
            if result.empty and self.mode == "hybrid":
                logger.info("No keyword match for tenant %s, falling back to full text", tenant_id)
                return self.fulltext(tenant_id)
            return result
        except SQLAlchemyError:
            logger.error("Knowledge retrieval failed for tenant %s (mode=%s)", tenant_id, self.mode, exc_info=True)
            return RetrievalResult(mode="none")

    def keyword(self, tenant_id: int, query: str) -> RetrievalResult:
        tokens = tokenize_query(query)
        if not tokens:
            logger.warning("No keywords extracted from query for tenant %s", tenant_id)
            return RetrievalResult(mode="none")

        chunks = self.store.search_chunks(tenant_id, tokens, self.max_chunks)
        logger.info(
            "Keyword retrieval for tenant %s: %d tokens, %d chunks", tenant_id, len(tokens), len(chunks)
        )
        if not chunks:
            return RetrievalResult(mode="none")
        return RetrievalResult(
            mode="keyword",
            chunks=chunks,
            context=SEPARATOR.join(c.text for c in chunks),
        )

    def fulltext(self, tenant_id: int) -> RetrievalResult:
        docs = self.store.full_texts(tenant_id)
        if not docs:
            logger.info("No documents for tenant %s", tenant_id)
            return RetrievalResult(mode="none")
        context = SEPARATOR.join(f"【文档: {name}】\n{text}" for name, text in docs)
        logger.info("Full text context for tenant %s: %d documents, %d chars", tenant_id, len(docs), len(context))
        return RetrievalResult(mode="fulltext", context=context)
