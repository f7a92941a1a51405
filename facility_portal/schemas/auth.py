from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, field_validator

from facility_portal.schemas.common import CamelModel


class RegisterIn(CamelModel):
    email: EmailStr
    first_name: str
    last_name: str
    password: str
    company_name: Optional[str] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name is required")
        return cleaned

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < 8:
            raise ValueError("password must be at least 8 characters")
        return value

    @field_validator("company_name")
    @classmethod
    def normalize_company_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "owner@example.com",
                "firstName": "Jane",
                "lastName": "Owner",
                "password": "password123",
                "companyName": "Owner Mechanical Ltd",
            }
        }
    )


class LoginIn(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        cleaned = value.strip().lower()
        if not cleaned:
            raise ValueError("email is required")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "owner@example.com",
                "password": "password123",
            }
        }
    )


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    temporary_password: bool = False


class MembershipOut(CamelModel):
    company_id: str
    company_name: str
    role: str
    permission_level: Optional[str] = None


class CurrentUserOut(CamelModel):
    id: str
    email: EmailStr
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_temporary_password: bool
    membership: Optional[MembershipOut] = None
    capabilities: dict[str, bool]
    created_at: datetime


class ChangePasswordIn(CamelModel):
    current_password: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, value: str) -> str:
        if len(value) < 8:
            raise ValueError("new password must be at least 8 characters")
        return value
