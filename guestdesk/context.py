from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from .config import Settings
from .db import init_db, make_engine, make_session_factory
from .services.chat import ChatOrchestrator
from .services.classify import KeywordClassifier, MessageClassifier
from .services.extract import DocumentParser
from .services.knowledge import KnowledgeService, KnowledgeStore
from .services.llm import GenerationAdapter, build_adapter
from .services.rag import RetrievalEngine
from .services.sessions import SessionStore
from .utils.text import Chunker


@dataclass
class AppContext:
    settings: Settings
    engine: Engine
    knowledge: KnowledgeService
    retrieval: RetrievalEngine
    sessions: SessionStore
    generator: GenerationAdapter
    orchestrator: ChatOrchestrator


def build_context(
    settings: Settings,
    *,
    engine: Optional[Engine] = None,
    generator: Optional[GenerationAdapter] = None,
    classifier: Optional[MessageClassifier] = None,
) -> AppContext:
    """Wire every component once; pass overrides to swap in fakes."""
    engine = engine or make_engine(settings.DATABASE_URL)
    init_db(engine)
    session_factory = make_session_factory(engine)

    store = KnowledgeStore(session_factory)
    knowledge = KnowledgeService(
        store,
        DocumentParser(),
        Chunker(settings.CHUNK_SIZE, settings.CHUNK_OVERLAP),
        max_upload_bytes=settings.MAX_UPLOAD_BYTES,
        upload_dir=settings.UPLOAD_DIR or None,
    )
    retrieval = RetrievalEngine(store, settings.KNOWLEDGE_MODE, settings.MAX_CONTEXT_CHUNKS)
    sessions = SessionStore(session_factory)
    generator = generator or build_adapter(settings)
    orchestrator = ChatOrchestrator(
        sessions,
        retrieval,
        generator,
        classifier or KeywordClassifier(),
        history_limit=settings.HISTORY_LIMIT,
        max_message_chars=settings.MAX_MESSAGE_CHARS,
        curated_kinds=settings.curated_kinds,
    )
    return AppContext(
        settings=settings,
        engine=engine,
        knowledge=knowledge,
        retrieval=retrieval,
        sessions=sessions,
        generator=generator,
        orchestrator=orchestrator,
    )
