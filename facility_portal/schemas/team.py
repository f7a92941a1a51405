from datetime import datetime
from typing import Optional

from pydantic import ConfigDict, EmailStr, field_validator, model_validator

from facility_portal.schemas.common import CamelModel, PaginationMeta

ALLOWED_PERMISSION_LEVELS = {"viewer", "editor", "manager"}


def normalize_permission_level(value: str) -> str:
    level = value.strip().lower()
    if level not in ALLOWED_PERMISSION_LEVELS:
        raise ValueError("permission level must be one of: viewer, editor, manager")
    return level


class TeamMemberOut(CamelModel):
    membership_id: str
    user_id: str
    email: EmailStr
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    permission_level: Optional[str] = None
    is_active: bool
    is_temporary_password: bool
    created_at: datetime
    removed_at: Optional[datetime] = None


class TeamMemberListOut(CamelModel):
    items: list[TeamMemberOut]
    pagination: PaginationMeta


class TeamInviteIn(CamelModel):
    email: EmailStr
    first_name: str
    last_name: str
    permission_level: str = "viewer"

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name is required")
        return cleaned

    @field_validator("permission_level")
    @classmethod
    def validate_permission_level(cls, value: str) -> str:
        return normalize_permission_level(value)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "tech@example.com",
                "firstName": "Sam",
                "lastName": "Tech",
                "permissionLevel": "editor",
            }
        }
    )


class TeamInvitationOut(CamelModel):
    invitation_id: str
    company_id: str
    invited_by_user_id: str
    accepted_by_user_id: Optional[str] = None
    email: EmailStr
    first_name: str
    last_name: str
    permission_level: str
    issuance_mode: str
    status: str
    expires_at: datetime
    created_at: datetime
    accepted_at: Optional[datetime] = None


class TemporaryCredentialsOut(CamelModel):
    username: str
    password: str


class TeamInviteOut(CamelModel):
    success: bool = True
    invitation: TeamInvitationOut
    credentials: Optional[TemporaryCredentialsOut] = None
    invitation_token: Optional[str] = None
    email_delivery_status: Optional[str] = None


class TeamInvitationListOut(CamelModel):
    items: list[TeamInvitationOut]
    pagination: PaginationMeta


class InvitationDetailsOut(CamelModel):
    email: EmailStr
    first_name: str
    last_name: str
    permission_level: str
    company_name: str
    invited_by_name: str
    status: str
    expires_at: datetime


class AcceptInvitationIn(CamelModel):
    password: str
    confirm_password: Optional[str] = None

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < 8:
            raise ValueError("password must be at least 8 characters")
        return value

    @model_validator(mode="after")
    def validate_confirmation(self) -> "AcceptInvitationIn":
        if self.confirm_password is not None and self.confirm_password != self.password:
            raise ValueError("passwords do not match")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"password": "a-new-password", "confirmPassword": "a-new-password"}
        }
    )


class UpdatePermissionsIn(CamelModel):
    user_id: str
    permission_level: str

    @field_validator("permission_level")
    @classmethod
    def validate_permission_level(cls, value: str) -> str:
        return normalize_permission_level(value)


class TransferOwnershipIn(CamelModel):
    new_owner_id: str


class DeleteMemberIn(CamelModel):
    user_id: str
