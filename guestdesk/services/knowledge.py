import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Sequence

from sqlalchemy import Text, delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..errors import GuestdeskError, NotFound, ValidationError
from ..models import Chunk, Document
from ..utils.text import Chunker
from .extract import DocumentParser, format_from_filename

logger = logging.getLogger(__name__)


class KnowledgeStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def save_document(
        self,
        tenant_id: int,
        *,
        stored_name: str,
        original_name: str,
        fmt: str,
        byte_size: int,
        full_text: str,
        chunks: Sequence[str],
    ) -> Document:
        """Insert a document and all of its chunks in a single transaction."""
        with self._session_factory() as db, db.begin():
            doc = Document(
                tenant_id=tenant_id,
                stored_name=stored_name,
                original_name=original_name,
                format=fmt,
                byte_size=byte_size,
                full_text=full_text,
            )
            db.add(doc)
            db.flush()
            self.save_chunks(db, doc, chunks)
        return doc

    def save_chunks(self, db: Session, doc: Document, chunks: Sequence[str]) -> None:
        # caller owns the transaction so a document never lands without its chunks
        for i, text in enumerate(chunks):
            db.add(Chunk(document_id=doc.id, tenant_id=doc.tenant_id, index=i, text=text))
        db.flush()

    def list_documents(self, tenant_id: int) -> list[Document]:
        with self._session_factory() as db:
            stmt = (
                select(Document)
                .where(Document.tenant_id == tenant_id)
                .order_by(Document.created_at.desc(), Document.id.desc())
            )
            return list(db.scalars(stmt))

    def get_document(self, tenant_id: int, document_id: int) -> Document | None:
        with self._session_factory() as db:
            doc = db.get(Document, document_id)
            if doc is None or doc.tenant_id != tenant_id:
                return None
            return doc

    def delete_document(self, tenant_id: int, document_id: int) -> bool:
        with self._session_factory() as db, db.begin():
            db.execute(delete(Chunk).where(Chunk.document_id == document_id, Chunk.tenant_id == tenant_id))
            result = db.execute(
                delete(Document).where(Document.id == document_id, Document.tenant_id == tenant_id)
            )
            return result.rowcount > 0

    def delete_all_documents(self, tenant_id: int) -> int:
        with self._session_factory() as db, db.begin():
            db.execute(delete(Chunk).where(Chunk.tenant_id == tenant_id))
            result = db.execute(delete(Document).where(Document.tenant_id == tenant_id))
            return result.rowcount

    def count_documents(self, tenant_id: int) -> int:
        with self._session_factory() as db:
            return db.scalar(select(func.count(Document.id)).where(Document.tenant_id == tenant_id)) or 0

    def count_chunks(self, tenant_id: int) -> int:
        with self._session_factory() as db:
            return db.scalar(select(func.count(Chunk.id)).where(Chunk.tenant_id == tenant_id)) or 0

    def search_chunks(self, tenant_id: int, tokens: Sequence[str], limit: int) -> list[Chunk]:
        """Chunks containing any token, in chunk-index order."""
        if not tokens:
            return []
        text = func.lower(Chunk.text, type_=Text)
        stmt = (
            select(Chunk)
            .where(Chunk.tenant_id == tenant_id)
            .where(or_(*(text.contains(tok, autoescape=True) for tok in tokens)))
            .order_by(Chunk.index.asc(), Chunk.id.asc())
            .limit(limit)
        )
        with self._session_factory() as db:
            return list(db.scalars(stmt))

    def full_texts(self, tenant_id: int) -> list[tuple[str, str]]:
        """(original_name, full_text) for every document, oldest upload first."""
        stmt = (
            select(Document.original_name, Document.full_text)
            .where(Document.tenant_id == tenant_id)
            .order_by(Document.created_at.asc(), Document.id.asc())
        )
        with self._session_factory() as db:
            return [(name, text) for name, text in db.execute(stmt)]


@dataclass
class IngestResult:
    filename: str
    document_id: int | None = None
    chunk_count: int = 0
    byte_size: int = 0
    error: GuestdeskError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ReplaceResult:
    deleted: int
    results: list[IngestResult] = field(default_factory=list)


@dataclass
class KnowledgeStats:
    documents: int
    chunks: int


class KnowledgeService:
    def __init__(
        self,
        store: KnowledgeStore,
        parser: DocumentParser,
        chunker: Chunker,
        *,
        max_upload_bytes: int = 10 * 1024 * 1024,
        upload_dir: str | None = None,
    ):
        self.store = store
        self.parser = parser
        self.chunker = chunker
        self.max_upload_bytes = max_upload_bytes
        self.upload_dir = Path(upload_dir) if upload_dir else None
        if self.upload_dir is not None:
            self.upload_dir.mkdir(parents=True, exist_ok=True)

    def _validate(self, filename: str, content: bytes) -> str:
        if not filename:
            raise ValidationError("Filename is required")
        size = len(content)
        if size == 0:
            raise ValidationError("File is empty", context={"filename": filename})
        if size > self.max_upload_bytes:
            raise ValidationError(
                f"File too large. Maximum size: {self.max_upload_bytes // (1024 * 1024)}MB",
                context={"filename": filename, "size": size},
            )
        return format_from_filename(filename)

    def ingest(self, tenant_id: int, filename: str, content: bytes) -> IngestResult:
        """Parse, chunk and store one file. Raises on any failure."""
        started = time.perf_counter()
        fmt = self._validate(filename, content)
        logger.info("Ingesting %s (%d bytes) for tenant %s", filename, len(content), tenant_id)

        text = self.parser.parse(content, fmt)
        chunks = self.chunker.chunk(text)
        stored_name = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{Path(filename).name}"

        path = self._write_upload(stored_name, content)
        try:
            doc = self.store.save_document(
                tenant_id,
                stored_name=stored_name,
                original_name=filename,
                fmt=fmt,
                byte_size=len(content),
                full_text=text,
                chunks=chunks,
            )
        except Exception:
            if path is not None:
                path.unlink(missing_ok=True)
            raise

        logger.info(
            "Ingested document %s for tenant %s: %d chunks in %.0fms",
            doc.id, tenant_id, len(chunks), (time.perf_counter() - started) * 1000,
        )
        return IngestResult(filename=filename, document_id=doc.id, chunk_count=len(chunks), byte_size=len(content))

    def ingest_batch(self, tenant_id: int, files: Iterable[tuple[str, bytes]]) -> list[IngestResult]:
        """Ingest files one after another; a failing file is reported, not fatal."""
        results: list[IngestResult] = []
        for filename, content in files:
            try:
                results.append(self.ingest(tenant_id, filename, content))
            except GuestdeskError as e:
                logger.error("Failed to ingest %s for tenant %s: %s", filename, tenant_id, e.message)
                results.append(IngestResult(filename=filename, byte_size=len(content), error=e))
            except SQLAlchemyError as e:
                logger.error("Storage error ingesting %s for tenant %s", filename, tenant_id, exc_info=True)
                err = GuestdeskError(f"Failed to store document: {e}", context={"filename": filename})
                results.append(IngestResult(filename=filename, byte_size=len(content), error=err))

        failed = sum(1 for r in results if not r.ok)
        logger.info("Batch ingestion for tenant %s: %d ok, %d failed", tenant_id, len(results) - failed, failed)
        return results

    def replace_all(self, tenant_id: int, files: Iterable[tuple[str, bytes]]) -> ReplaceResult:
        deleted = self.delete_all_documents(tenant_id)
        logger.info("Replaced knowledge base for tenant %s: %d documents removed", tenant_id, deleted)
        return ReplaceResult(deleted=deleted, results=self.ingest_batch(tenant_id, files))

    def get_document(self, tenant_id: int, document_id: int) -> Document:
        doc = self.store.get_document(tenant_id, document_id)
        if doc is None:
            raise NotFound("Document not found", context={"document_id": document_id})
        return doc

    def list_documents(self, tenant_id: int) -> list[Document]:
        return self.store.list_documents(tenant_id)

    def delete_document(self, tenant_id: int, document_id: int) -> None:
        doc = self.get_document(tenant_id, document_id)
        if not self.store.delete_document(tenant_id, document_id):
            raise NotFound("Document not found", context={"document_id": document_id})
        self._remove_upload(doc.stored_name)
        logger.info("Deleted document %s for tenant %s", document_id, tenant_id)

    def delete_all_documents(self, tenant_id: int) -> int:
        docs = self.store.list_documents(tenant_id)
        deleted = self.store.delete_all_documents(tenant_id)
        for doc in docs:
            self._remove_upload(doc.stored_name)
        return deleted

    def stats(self, tenant_id: int) -> KnowledgeStats:
        return KnowledgeStats(
            documents=self.store.count_documents(tenant_id),
            chunks=self.store.count_chunks(tenant_id),
        )

    def export_text(self, tenant_id: int) -> str:
        """Whole knowledge base as plain text, one section per document."""
        return "\n\n---\n\n".join(
            f"=== {name} ===\n\n{text}" for name, text in self.store.full_texts(tenant_id)
        )

    def _write_upload(self, stored_name: str, content: bytes) -> Path | None:
        if self.upload_dir is None:
            return None
        path = self.upload_dir / stored_name
        try:
            path.write_bytes(content)
        except OSError as e:
            logger.error("Failed to write upload %s: %s", stored_name, e)
            raise GuestdeskError(
                f"Failed to store uploaded file: {e.strerror or e}", context={"stored_name": stored_name}
            ) from e
        return path

    def _remove_upload(self, stored_name: str) -> None:
        if self.upload_dir is None:
            return
        try:
            (self.upload_dir / stored_name).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to delete upload %s: %s", stored_name, e)
