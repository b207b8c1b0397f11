import asyncio
import logging
import re
import uuid
from datetime import datetime, timezone
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docshelf.config import settings
from docshelf.database import get_db
from docshelf.dependencies import Services, get_services
from docshelf.exceptions import InvalidRequestError, NotFoundError
from docshelf.models.document import Document
from docshelf.schemas.document import (
    DocumentResponse,
    DocumentStatus,
    DocumentStatusUpdate,
    SignedUrlResponse,
)
from docshelf.services.classifier import PDF_MIME, PRESENTATION_MIMES
from docshelf.services.delivery_cache import DeliveredDocument
from docshelf.services.normalizer import build_presentation_placeholder
from docshelf.services.pdf_service import render_pdf
from docshelf.services.uploads import receive_upload
from docshelf.utils.filenames import replace_extension

logger = logging.getLogger("docshelf.api")

router = APIRouter(prefix="/documents", tags=["documents"])

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _doc_to_response(doc: Document) -> DocumentResponse:
    return DocumentResponse(
        id=doc.id,
        owner_id=doc.owner_id,
        course_id=doc.course_id,
        title=doc.title,
        original_filename=doc.original_filename,
        file_path=doc.file_path,
        mime_type=doc.mime_type,
        file_size_bytes=doc.file_size_bytes,
        pages=doc.pages,
        status=doc.status,
        url=f"{settings.api_prefix}/documents/{doc.id}",
        created_at=doc.created_at,
        updated_at=doc.updated_at,
    )


def _get_document_or_404(db: Session, document_id: str) -> Document:
    doc = db.query(Document).filter(Document.id == document_id).first()
    if not doc:
        raise NotFoundError()
    return doc


def _content_disposition(filename: str) -> str:
    quoted = quote(filename)
    if quoted == filename:
        return f'inline; filename="{filename}"'
    # Header values must be latin-1; send an ASCII fallback plus the RFC 5987 form.
    fallback = filename.encode("ascii", errors="replace").decode("ascii").replace('"', "'")
    fallback = _CONTROL_CHARS_RE.sub("_", fallback)
    return f"inline; filename=\"{fallback}\"; filename*=utf-8''{quoted}"


def _document_response(delivered: DeliveredDocument, *, content: bytes | None = None,
                       media_type: str | None = None, filename: str | None = None) -> Response:
    return Response(
        content=delivered.data if content is None else content,
        media_type=media_type or delivered.content_type,
        headers={
            "Content-Disposition": _content_disposition(filename or delivered.filename),
            "Cache-Control": f"public, max-age={settings.cache_max_age_seconds}",
            "X-Cache": delivered.cache_status,
        },
    )


@router.post("", response_model=DocumentResponse, status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    title: str = Form(...),
    owner_id: str = Form(...),
    course_id: str | None = Form(None),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    upload = await receive_upload(file, settings.max_upload_bytes)
    result = await services.ingestor.ingest(upload, owner_id)

    now = _now()
    doc = Document(
        id=str(uuid.uuid4()),
        owner_id=owner_id,
        course_id=course_id,
        title=title,
        original_filename=upload.display_name,
        file_path=result.key,
        mime_type=result.document.media_type,
        file_size_bytes=len(result.document.data),
        pages=result.pages,
        status="PENDING",
        created_at=now,
        updated_at=now,
    )
    db.add(doc)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        owner = db.query(Document.id).filter(Document.file_path == result.key).first()
        if owner is None:
            logger.error("Could not record %s, removing the stored object", result.key)
            await services.object_store.delete(result.key)
        else:
            logger.error("Could not record %s, key belongs to document %s", result.key, owner.id)
        raise
    db.refresh(doc)
    return _doc_to_response(doc)


@router.get("", response_model=list[DocumentResponse])
async def list_documents(
    owner_id: str | None = None,
    course_id: str | None = None,
    status: DocumentStatus | None = None,
    db: Session = Depends(get_db),
):
    if not (owner_id or course_id or status):
        raise InvalidRequestError("Missing required parameters")

    query = db.query(Document)
    if owner_id:
        query = query.filter(Document.owner_id == owner_id)
    if course_id:
        query = query.filter(Document.course_id == course_id)
    if status:
        query = query.filter(Document.status == status)
    docs = query.order_by(Document.created_at.desc()).all()
    return [_doc_to_response(d) for d in docs]


@router.get("/{document_id}")
async def get_document(document_id: str, services: Services = Depends(get_services)):
    delivered = await services.delivery_cache.get(document_id)
    return _document_response(delivered)


@router.get("/{document_id}/preview")
async def preview_document(document_id: str, services: Services = Depends(get_services)):
    """Like the plain download, but presentations come back as a placeholder page."""
    delivered = await services.delivery_cache.get(document_id)
    if delivered.content_type not in PRESENTATION_MIMES:
        return _document_response(delivered)

    placeholder = build_presentation_placeholder(delivered.filename)
    pdf = await asyncio.to_thread(render_pdf, placeholder)
    return _document_response(
        delivered,
        content=pdf,
        media_type=PDF_MIME,
        filename=replace_extension(delivered.filename, ".pdf"),
    )


@router.get("/{document_id}/signed-url", response_model=SignedUrlResponse)
async def signed_url(
    document_id: str,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    doc = _get_document_or_404(db, document_id)
    ttl = settings.signed_url_ttl_seconds
    url = await services.object_store.signed_get_url(doc.file_path, ttl)
    return SignedUrlResponse(url=url, expires_in_seconds=ttl)


@router.patch("/{document_id}/status", response_model=DocumentResponse)
async def update_status(document_id: str, req: DocumentStatusUpdate, db: Session = Depends(get_db)):
    """Moderator approval or rejection."""
    doc = _get_document_or_404(db, document_id)
    doc.status = req.status
    doc.updated_at = _now()
    db.commit()
    db.refresh(doc)
    return _doc_to_response(doc)


@router.delete("/{document_id}")
async def delete_document(
    document_id: str,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    doc = _get_document_or_404(db, document_id)
    await services.object_store.delete(doc.file_path)
    services.delivery_cache.evict(document_id)
    db.delete(doc)
    db.commit()
    return {"message": "Document deleted successfully"}
