from typing import List, Literal, Optional

from fastapi import APIRouter, Depends

from ..context import AppContext
from ..deps import get_ctx
from ..schemas import ChatRequest, ChatResponse, CuratedMessageOut, HistoryResponse, SessionOut

router = APIRouter(tags=["chat"])


@router.post("/chat/message", response_model=ChatResponse)
async def send_message(req: ChatRequest, ctx: AppContext = Depends(get_ctx)):
    result = await ctx.orchestrator.handle_turn(
        req.tenant_id,
        req.message,
        session_id=req.session_id,
        display_name=req.display_name,
    )
    return ChatResponse(
        session_id=result.session_id,
        reply=result.reply,
        classification=result.classification,
        tokens_used=result.tokens_used,
        is_new_session=result.is_new_session,
    )


@router.get("/chat/history", response_model=HistoryResponse)
def get_history(tenant_id: int, session_id: str, ctx: AppContext = Depends(get_ctx)):
    messages = ctx.sessions.messages(session_id, tenant_id)
    return {"session_id": session_id, "messages": messages, "count": len(messages)}


@router.delete("/chat/history")
def clear_history(tenant_id: int, session_id: str, ctx: AppContext = Depends(get_ctx)):
    cleared = ctx.sessions.clear_messages(session_id, tenant_id)
    return {"session_id": session_id, "cleared": cleared}


@router.delete("/chat/session")
def delete_session(tenant_id: int, session_id: str, ctx: AppContext = Depends(get_ctx)):
    ctx.sessions.delete_session(session_id, tenant_id)
    return {"session_id": session_id, "deleted": True}


@router.get("/chat/sessions", response_model=List[SessionOut])
def list_sessions(tenant_id: int, ctx: AppContext = Depends(get_ctx)):
    return ctx.sessions.list_sessions(tenant_id)


@router.get("/chat/curated", response_model=List[CuratedMessageOut])
def list_curated(
    tenant_id: int,
    kind: Optional[Literal["blessing", "question", "freeform"]] = None,
    unread_only: bool = False,
    ctx: AppContext = Depends(get_ctx),
):
    return ctx.sessions.list_curated_messages(tenant_id, kind=kind, unread_only=unread_only)


@router.patch("/chat/curated/{message_id}/read")
def mark_curated_read(message_id: int, tenant_id: int, ctx: AppContext = Depends(get_ctx)):
    ctx.sessions.mark_curated_read(message_id, tenant_id)
    return {"message_id": message_id, "read": True}
