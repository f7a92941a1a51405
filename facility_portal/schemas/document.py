from datetime import datetime
from typing import Optional

from facility_portal.schemas.common import CamelModel

DOCUMENT_TYPES = ("pre_activity", "post_activity", "supporting", "template", "other")


class DocumentOut(CamelModel):
    id: str
    company_id: str
    application_id: Optional[int] = None
    uploaded_by_user_id: str
    original_name: str
    mime_type: str
    size: int
    document_type: str
    file_path: str
    created_at: datetime
    signed_url: Optional[str] = None


class SignedUrlOut(CamelModel):
    signed_url: str
    expires_in: int
