import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Collection, Optional

from ..models import Message
from .classify import MessageClassifier
from .llm import Completion, GenerationAdapter
from .prompts import ANONYMOUS_GUEST, build_system_prompt, greeting, validate_guest_message
from .rag import RetrievalEngine
from .sessions import SessionStore

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    session_id: str
    reply: str
    classification: Optional[str] = None
    tokens_used: Optional[int] = None
    is_new_session: bool = False


class ChatOrchestrator:
    """Drives one guest turn. Storage calls are blocking and run in worker threads."""

    def __init__(
        self,
        sessions: SessionStore,
        retrieval: RetrievalEngine,
        generator: GenerationAdapter,
        classifier: MessageClassifier,
        *,
        history_limit: int = 10,
        max_message_chars: int = 1000,
        curated_kinds: Collection[str] = ("blessing",),
    ):
        self.sessions = sessions
        self.retrieval = retrieval
        self.generator = generator
        self.classifier = classifier
        self.history_limit = history_limit
        self.max_message_chars = max_message_chars
        self.curated_kinds = frozenset(curated_kinds)

    async def handle_turn(
        self,
        tenant_id: int,
        message: str,
        session_id: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> TurnResult:
        session_id = session_id or str(uuid.uuid4())
        session = await asyncio.to_thread(self.sessions.get, session_id, tenant_id)

        if session is None:
            return await asyncio.to_thread(self._open_session, session_id, tenant_id, display_name)

        text = validate_guest_message(message, self.max_message_chars)
        kind = self.classifier.classify(text)
        logger.info("Session %s: message classified as %s", session_id, kind)

        history = await asyncio.to_thread(self.snapshot_history, session_id, tenant_id)
        retrieved = await asyncio.to_thread(self.retrieval.retrieve, tenant_id, text)
        system_prompt = build_system_prompt(retrieved.context)
        logger.info(
            "Session %s: %d history messages, context mode=%s (%d chars)",
            session_id, len(history), retrieved.mode, len(retrieved.context),
        )

        # generation errors propagate before anything of this turn is stored
        completion = await self.generator.complete(system_prompt, history, text)

        await asyncio.to_thread(
            self.record_turn,
            session_id,
            tenant_id,
            text,
            kind,
            completion,
            guest_name=display_name or session.display_name,
        )
        return TurnResult(
            session_id=session_id,
            reply=completion.text,
            classification=kind,
            tokens_used=completion.tokens_used,
        )

    def _open_session(self, session_id: str, tenant_id: int, display_name: Optional[str]) -> TurnResult:
        # raises OwnershipConflict, without writing, if another tenant owns the id
        self.sessions.get_or_create(session_id, tenant_id, display_name)
        text = greeting(display_name)
        self.sessions.add_message(session_id, tenant_id, "assistant", text, 0)
        logger.info("New session %s for tenant %s, greeting sent", session_id, tenant_id)
        return TurnResult(session_id=session_id, reply=text, is_new_session=True)

    def snapshot_history(self, session_id: str, tenant_id: int) -> list[Message]:
        """Must run before record_turn() of the same turn, so the in-flight message is not in it."""
        return self.sessions.recent_messages(session_id, tenant_id, self.history_limit)

    def record_turn(
        self,
        session_id: str,
        tenant_id: int,
        text: str,
        kind: str,
        completion: Completion,
        guest_name: Optional[str] = None,
    ) -> None:
        """Only called after generation succeeded; a failed turn leaves the session untouched."""
        self.sessions.add_message(session_id, tenant_id, "user", text, 0)
        if kind in self.curated_kinds:
            self.sessions.save_curated_message(session_id, tenant_id, kind, text, guest_name or ANONYMOUS_GUEST)
            logger.info("Session %s: %s saved for review", session_id, kind)
        self.sessions.add_message(session_id, tenant_id, "assistant", completion.text, completion.tokens_used)
