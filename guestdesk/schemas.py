from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class UploadResult(BaseModel):
    filename: str
    ok: bool
    document_id: Optional[int] = None
    chunks: int = 0
    file_size: int = 0
    error: Optional[str] = None
    error_code: Optional[str] = None


class UploadResponse(BaseModel):
    results: List[UploadResult]
    successful: int
    failed: int


class ReplaceResponse(UploadResponse):
    deleted: int


class DocumentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    original_name: str
    format: str
    byte_size: int
    created_at: datetime
    updated_at: datetime


class DocumentDetail(DocumentOut):
    full_text: str


class StatsResponse(BaseModel):
    documents: int
    chunks: int


class ChatRequest(BaseModel):
    tenant_id: int
    message: str = ""
    session_id: Optional[str] = None
    display_name: Optional[str] = Field(default=None, max_length=128)


class ChatResponse(BaseModel):
    session_id: str
    reply: str
    classification: Optional[str] = None
    tokens_used: Optional[int] = None
    is_new_session: bool = False


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    role: str
    content: str
    tokens_used: int
    created_at: datetime


class HistoryResponse(BaseModel):
    session_id: str
    messages: List[MessageOut]
    count: int


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    display_name: Optional[str] = None
    title: Optional[str] = None
    message_count: int
    created_at: datetime
    updated_at: datetime


class CuratedMessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: str
    guest_name: str
    kind: str
    content: str
    read: bool
    created_at: datetime
