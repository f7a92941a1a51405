from datetime import datetime
from typing import Optional

from pydantic import ConfigDict, EmailStr, Field, field_validator

from facility_portal.schemas.common import CamelModel, PaginationMeta
from facility_portal.schemas.team import normalize_permission_level


class JoinRequestCreateIn(CamelModel):
    company_id: str
    requested_permission_level: str = "editor"
    message: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("requested_permission_level")
    @classmethod
    def validate_permission_level(cls, value: str) -> str:
        return normalize_permission_level(value)

    @field_validator("message")
    @classmethod
    def normalize_message(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "companyId": "V5tyZ2cbdQhUxhz4VJVHZM",
                "requestedPermissionLevel": "editor",
                "message": "I handle the HVAC side for this contractor.",
            }
        }
    )


class JoinRequestApproveIn(CamelModel):
    assigned_permission_level: Optional[str] = None

    @field_validator("assigned_permission_level")
    @classmethod
    def validate_permission_level(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return normalize_permission_level(value)


class JoinRequestRejectIn(CamelModel):
    review_notes: Optional[str] = Field(default=None, max_length=1000)


class JoinRequestOut(CamelModel):
    id: str
    user_id: str
    requester_email: EmailStr
    requester_name: str
    company_id: str
    company_name: str
    requested_permission_level: str
    message: Optional[str] = None
    status: str
    assigned_permission_level: Optional[str] = None
    reviewed_by_user_id: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    created_at: datetime


class JoinRequestListOut(CamelModel):
    items: list[JoinRequestOut]
    pagination: PaginationMeta
