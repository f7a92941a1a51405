import json
import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from facility_portal.core.api_docs import error_responses
from facility_portal.core.config import settings
from facility_portal.core.deps import get_db
from facility_portal.core.errors import NotFoundError, PortalError, ValidationError
from facility_portal.core.id_utils import generate_shortuuid
from facility_portal.core.permissions import require_team_action
from facility_portal.core.security_current import CompanyAccess
from facility_portal.models.document import Document
from facility_portal.schemas.common import SuccessOut
from facility_portal.schemas.document import DOCUMENT_TYPES, DocumentOut, SignedUrlOut
from facility_portal.services.audit_service import log_audit_event
from facility_portal.services.storage_service import StorageService, get_storage

router = APIRouter(prefix="/api/documents", tags=["documents"])
logger = logging.getLogger("facility_portal.storage")


def _document_out(document: Document, signed_url: str | None = None) -> DocumentOut:
    return DocumentOut(
        id=document.id,
        company_id=document.company_id,
        application_id=document.application_id,
        uploaded_by_user_id=document.uploaded_by_user_id,
        original_name=document.original_name,
        mime_type=document.mime_type,
        size=document.size,
        document_type=document.document_type,
        file_path=document.file_path,
        created_at=document.created_at,
        signed_url=signed_url,
    )


def _document_in_company(db: Session, *, access: CompanyAccess, document_id: str) -> Document:
    document = db.execute(
        select(Document).where(
            Document.id == document_id,
            Document.company_id == access.company.id,
        )
    ).scalar_one_or_none()
    if not document:
        raise NotFoundError("Document not found")
    return document


def _discard_orphan(storage: StorageService, path: str) -> None:
    """Remove an uploaded object whose database row never committed."""
    try:
        storage.delete_file(path)
    except PortalError as exc:
        logger.error(
            json.dumps(
                {
                    "event": "document_orphan_cleanup_failed",
                    "path": path,
                    "error": exc.message,
                }
            )
        )


def _content_disposition(filename: str, *, inline: bool) -> str:
    disposition = "inline" if inline else "attachment"
    ascii_name = filename.encode("ascii", "ignore").decode("ascii").replace('"', "") or "download"
    return f"{disposition}; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}"


@router.post(
    "",
    response_model=DocumentOut,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a document",
    description="Stores the file in the private bucket under the caller's company folder.",
    responses={**error_responses(401, 403, 404, 409, 422, 500, 503)},
)
def upload_document(
    file: UploadFile = File(...),
    document_type: str = Form(default="supporting", alias="documentType"),
    application_id: int | None = Form(default=None, alias="applicationId"),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_team_action("upload_documents")),
    storage: StorageService = Depends(get_storage),
):
    normalized_type = document_type.strip().lower()
    if normalized_type not in DOCUMENT_TYPES:
        raise ValidationError(f"documentType must be one of: {', '.join(DOCUMENT_TYPES)}")

    # One byte past the ceiling is enough to reject without buffering the rest.
    content = file.file.read(storage.max_upload_bytes + 1)
    original_name = file.filename or "upload"
    stored = storage.upload_file(
        content=content,
        original_name=original_name,
        content_type=file.content_type,
        field_name="file",
        folder_path=f"companies/{access.company.id}",
    )

    document = Document(
        id=generate_shortuuid(),
        company_id=access.company.id,
        application_id=application_id,
        uploaded_by_user_id=access.user.id,
        original_name=original_name,
        mime_type=stored.content_type,
        size=stored.size,
        document_type=normalized_type,
        file_path=stored.path,
    )
    try:
        db.add(document)
        log_audit_event(
            db,
            company_id=access.company.id,
            actor_user_id=access.user.id,
            action="document.uploaded",
            target_type="document",
            target_id=document.id,
            metadata_json={"file_path": stored.path, "size": stored.size, "document_type": normalized_type},
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        _discard_orphan(storage, stored.path)
        raise
    db.refresh(document)
    return _document_out(document, signed_url=stored.signed_url)


@router.get(
    "/{document_id}/download",
    summary="Download or preview a document",
    response_class=Response,
    responses={**error_responses(401, 403, 404, 500, 503)},
)
def download_document(
    document_id: str,
    preview: bool = Query(default=False),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_team_action("view_documents")),
    storage: StorageService = Depends(get_storage),
):
    document = _document_in_company(db, access=access, document_id=document_id)
    data, content_type = storage.download_file(document.file_path)
    return Response(
        content=data,
        media_type=content_type or document.mime_type,
        headers={
            "Content-Disposition": _content_disposition(document.original_name, inline=preview),
            "Cache-Control": "private, no-store",
        },
    )


@router.get(
    "/{document_id}/signed-url",
    response_model=SignedUrlOut,
    summary="Get a time-limited URL for a document",
    responses={**error_responses(401, 403, 404, 422, 500, 503)},
)
def get_document_signed_url(
    document_id: str,
    expires_in: int = Query(
        default=settings.storage_signed_url_expires_seconds,
        ge=1,
        le=604_800,
        alias="expiresIn",
    ),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_team_action("view_documents")),
    storage: StorageService = Depends(get_storage),
):
    document = _document_in_company(db, access=access, document_id=document_id)
    return SignedUrlOut(
        signed_url=storage.get_signed_url(document.file_path, expires_in),
        expires_in=expires_in,
    )


@router.delete(
    "/{document_id}",
    response_model=SuccessOut,
    summary="Delete a document",
    responses={**error_responses(401, 403, 404, 500, 503)},
)
def delete_document(
    document_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_team_action("upload_documents")),
    storage: StorageService = Depends(get_storage),
):
    document = _document_in_company(db, access=access, document_id=document_id)
    try:
        storage.delete_file(document.file_path)
    except NotFoundError:
        logger.warning(
            json.dumps(
                {
                    "event": "document_object_missing",
                    "document_id": document.id,
                    "path": document.file_path,
                }
            )
        )

    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="document.deleted",
        target_type="document",
        target_id=document.id,
        metadata_json={"file_path": document.file_path, "original_name": document.original_name},
    )
    db.delete(document)
    db.commit()
    return SuccessOut(message="Document deleted")
