import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..errors import NotFound, OwnershipConflict, ValidationError
from ..models import CURATED_KINDS, MESSAGE_ROLES, ChatSession, CuratedMessage, Message

logger = logging.getLogger(__name__)


@dataclass
class SessionSummary:
    id: str
    display_name: str | None
    title: str | None
    message_count: int
    created_at: datetime
    updated_at: datetime


class SessionStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _owned(self, db: Session, session_id: str, tenant_id: int, is_admin: bool = False) -> ChatSession:
        row = db.get(ChatSession, session_id)
        if row is None:
            raise NotFound("Session not found", context={"session_id": session_id})
        if row.tenant_id != tenant_id and not is_admin:
            logger.warning(
                "Tenant %s tried to access session %s owned by tenant %s", tenant_id, session_id, row.tenant_id
            )
            raise OwnershipConflict(
                "You do not have permission to access this session", context={"session_id": session_id}
            )
        return row

    def get(self, session_id: str, tenant_id: int, *, is_admin: bool = False) -> ChatSession | None:
        with self._session_factory() as db:
            row = db.get(ChatSession, session_id)
            if row is None or (row.tenant_id != tenant_id and not is_admin):
                return None
            return row

    def get_or_create(self, session_id: str, tenant_id: int, display_name: str | None = None) -> ChatSession:
        if not session_id:
            raise ValidationError("session_id is required")
        with self._session_factory() as db:
            existing = db.get(ChatSession, session_id)
            if existing is not None:
                return self._reuse(existing, tenant_id)
            row = ChatSession(id=session_id, tenant_id=tenant_id, display_name=display_name)
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                # another turn created the same id first
                db.rollback()
                return self._reuse(db.get(ChatSession, session_id), tenant_id)
            logger.info("Created session %s for tenant %s", session_id, tenant_id)
            return row

    def _reuse(self, row: ChatSession, tenant_id: int) -> ChatSession:
        if row.tenant_id != tenant_id:
            logger.warning(
                "Session id collision: %s requested by tenant %s, owned by tenant %s", row.id, tenant_id, row.tenant_id
            )
            raise OwnershipConflict(
                "This session ID already exists. Please use a different ID or let the system generate one.",
                context={"session_id": row.id},
            )
        return row

    def add_message(
        self, session_id: str, tenant_id: int, role: str, content: str, tokens_used: int = 0
    ) -> Message:
        if role not in MESSAGE_ROLES:
            raise ValidationError(f"Invalid role: {role}", context={"allowed": list(MESSAGE_ROLES)})
        with self._session_factory() as db, db.begin():
            row = self._owned(db, session_id, tenant_id)
            msg = Message(
                session_id=session_id, tenant_id=tenant_id, role=role, content=content, tokens_used=tokens_used
            )
            db.add(msg)
            row.updated_at = datetime.now(timezone.utc)
        return msg

    def recent_messages(
        self, session_id: str, tenant_id: int, limit: int = 10, *, is_admin: bool = False
    ) -> list[Message]:
        """Last `limit` messages, oldest first."""
        with self._session_factory() as db:
            self._owned(db, session_id, tenant_id, is_admin)
            stmt = select(Message).where(Message.session_id == session_id).order_by(Message.id.desc()).limit(limit)
            rows = list(db.scalars(stmt))
        rows.reverse()
        return rows

    def messages(self, session_id: str, tenant_id: int, *, is_admin: bool = False) -> list[Message]:
        with self._session_factory() as db:
            self._owned(db, session_id, tenant_id, is_admin)
            stmt = select(Message).where(Message.session_id == session_id).order_by(Message.id.asc())
            return list(db.scalars(stmt))

    def clear_messages(self, session_id: str, tenant_id: int, *, is_admin: bool = False) -> int:
        with self._session_factory() as db, db.begin():
            self._owned(db, session_id, tenant_id, is_admin)
            result = db.execute(delete(Message).where(Message.session_id == session_id))
        logger.info("Cleared %d messages from session %s", result.rowcount, session_id)
        return result.rowcount

    def delete_session(self, session_id: str, tenant_id: int, *, is_admin: bool = False) -> None:
        with self._session_factory() as db, db.begin():
            row = self._owned(db, session_id, tenant_id, is_admin)
            db.execute(delete(Message).where(Message.session_id == session_id))
            db.execute(delete(CuratedMessage).where(CuratedMessage.session_id == session_id))
            db.delete(row)
        logger.info("Deleted session %s", session_id)

    def list_sessions(self, tenant_id: int) -> list[SessionSummary]:
        counts = (
            select(Message.session_id, func.count(Message.id).label("n"))
            .group_by(Message.session_id)
            .subquery()
        )
        stmt = (
            select(ChatSession, func.coalesce(counts.c.n, 0))
            .outerjoin(counts, counts.c.session_id == ChatSession.id)
            .where(ChatSession.tenant_id == tenant_id)
            .order_by(ChatSession.created_at.desc())
        )
        with self._session_factory() as db:
            return [
                SessionSummary(
                    id=s.id,
                    display_name=s.display_name,
                    title=s.title,
                    message_count=n,
                    created_at=s.created_at,
                    updated_at=s.updated_at,
                )
                for s, n in db.execute(stmt)
            ]

    def save_curated_message(
        self, session_id: str, tenant_id: int, kind: str, content: str, guest_name: str
    ) -> CuratedMessage:
        if kind not in CURATED_KINDS:
            raise ValidationError(f"Invalid kind: {kind}", context={"allowed": list(CURATED_KINDS)})
        with self._session_factory() as db, db.begin():
            self._owned(db, session_id, tenant_id)
            row = CuratedMessage(
                session_id=session_id, tenant_id=tenant_id, guest_name=guest_name, kind=kind, content=content
            )
            db.add(row)
        return row

    def list_curated_messages(
        self, tenant_id: int, kind: str | None = None, unread_only: bool = False
    ) -> list[CuratedMessage]:
        stmt = select(CuratedMessage).where(CuratedMessage.tenant_id == tenant_id)
        if kind:
            stmt = stmt.where(CuratedMessage.kind == kind)
        if unread_only:
            stmt = stmt.where(CuratedMessage.read.is_(False))
        stmt = stmt.order_by(CuratedMessage.created_at.desc(), CuratedMessage.id.desc())
        with self._session_factory() as db:
            return list(db.scalars(stmt))

    def mark_curated_read(self, message_id: int, tenant_id: int) -> None:
        with self._session_factory() as db, db.begin():
            result = db.execute(
                update(CuratedMessage)
                .where(CuratedMessage.id == message_id, CuratedMessage.tenant_id == tenant_id)
                .values(read=True)
            )
            if result.rowcount == 0:
                raise NotFound("Curated message not found", context={"message_id": message_id})
