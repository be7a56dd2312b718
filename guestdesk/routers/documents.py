from typing import List

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import PlainTextResponse

from ..context import AppContext
from ..deps import get_ctx
from ..schemas import DocumentDetail, DocumentOut, ReplaceResponse, StatsResponse, UploadResponse, UploadResult

router = APIRouter(tags=["documents"])


def _read_all(files: List[UploadFile]) -> list[tuple[str, bytes]]:
    return [(f.filename or "", f.file.read()) for f in files]


def _to_response(results) -> dict:
    items = [
        UploadResult(
            filename=r.filename,
            ok=r.ok,
            document_id=r.document_id,
            chunks=r.chunk_count,
            file_size=r.byte_size,
            error=r.error.message if r.error else None,
            error_code=r.error.code if r.error else None,
        )
        for r in results
    ]
    ok = sum(1 for r in items if r.ok)
    return {"results": items, "successful": ok, "failed": len(items) - ok}


@router.post("/documents/upload", response_model=UploadResponse)
def upload_documents(
    files: List[UploadFile] = File(...),
    tenant_id: int = Form(...),
    ctx: AppContext = Depends(get_ctx),
):
    payload = _read_all(files)
    return UploadResponse(**_to_response(ctx.knowledge.ingest_batch(tenant_id, payload)))


@router.post("/documents/replace", response_model=ReplaceResponse)
def replace_documents(
    files: List[UploadFile] = File(...),
    tenant_id: int = Form(...),
    ctx: AppContext = Depends(get_ctx),
):
    payload = _read_all(files)
    replaced = ctx.knowledge.replace_all(tenant_id, payload)
    return ReplaceResponse(deleted=replaced.deleted, **_to_response(replaced.results))


@router.get("/documents", response_model=List[DocumentOut])
def list_documents(tenant_id: int, ctx: AppContext = Depends(get_ctx)):
    return ctx.knowledge.list_documents(tenant_id)


@router.get("/documents/stats", response_model=StatsResponse)
def document_stats(tenant_id: int, ctx: AppContext = Depends(get_ctx)):
    stats = ctx.knowledge.stats(tenant_id)
    return StatsResponse(documents=stats.documents, chunks=stats.chunks)


@router.get("/documents/export", response_class=PlainTextResponse)
def export_documents(tenant_id: int, ctx: AppContext = Depends(get_ctx)):
    return ctx.knowledge.export_text(tenant_id)


@router.get("/documents/{document_id}", response_model=DocumentDetail)
def get_document(document_id: int, tenant_id: int, ctx: AppContext = Depends(get_ctx)):
    return ctx.knowledge.get_document(tenant_id, document_id)


@router.delete("/documents/{document_id}")
def delete_document(document_id: int, tenant_id: int, ctx: AppContext = Depends(get_ctx)):
    ctx.knowledge.delete_document(tenant_id, document_id)
    return {"deleted": True, "document_id": document_id}


@router.delete("/documents")
def delete_all_documents(tenant_id: int, ctx: AppContext = Depends(get_ctx)):
    return {"deleted": ctx.knowledge.delete_all_documents(tenant_id)}
