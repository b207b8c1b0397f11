from typing import Literal

from pydantic import BaseModel

DocumentStatus = Literal["PENDING", "APPROVED", "REJECTED"]


class DocumentResponse(BaseModel):
    id: str
    owner_id: str
    course_id: str | None
    title: str
    original_filename: str
    file_path: str
    mime_type: str
    file_size_bytes: int
    pages: int
    status: DocumentStatus
    url: str
    created_at: str
    updated_at: str


class DocumentStatusUpdate(BaseModel):
    status: DocumentStatus


class SignedUrlResponse(BaseModel):
    url: str
    expires_in_seconds: int
