from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from facility_portal.core.api_docs import error_responses
from facility_portal.core.deps import get_db
from facility_portal.core.id_utils import generate_shortuuid
from facility_portal.core.permissions import capabilities
from facility_portal.core.security import create_access_token, hash_password, verify_password
from facility_portal.core.security_current import get_current_user, resolve_company_access
from facility_portal.models.company import Company
from facility_portal.models.company_membership import CompanyMembership
from facility_portal.models.user import User
from facility_portal.schemas.auth import (
    ChangePasswordIn,
    CurrentUserOut,
    LoginIn,
    MembershipOut,
    RegisterIn,
    TokenOut,
)
from facility_portal.schemas.common import SuccessOut
from facility_portal.services.audit_service import log_audit_event
from facility_portal.services.team_invitation_service import consume_credential_invitation

router = APIRouter(prefix="/api/auth", tags=["auth"])
TOKEN_RESPONSE = {
    200: {
        "description": "Bearer access token",
        "content": {
            "application/json": {
                "example": {
                    "access_token": "access-token",
                    "token_type": "bearer",
                    "temporary_password": False,
                }
            }
        },
    }
}


def _issue_token(user: User) -> TokenOut:
    return TokenOut(
        access_token=create_access_token(user.id),
        temporary_password=user.is_temporary_password,
    )


def _authenticate_user(db: Session, email: str, password: str) -> User:
    normalized_email = email.strip().lower()
    user = db.execute(
        select(User).where(func.lower(User.email) == normalized_email)
    ).scalar_one_or_none()

    if user is None:
        # First login with temporary credentials from a team invitation.
        user = consume_credential_invitation(db, email=normalized_email, password=password)
        if user is not None:
            return user
        raise HTTPException(status_code=401, detail="Invalid credentials")

    if not user.is_active or not verify_password(password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return user


@router.post(
    "/register",
    response_model=TokenOut,
    summary="Register a user",
    description=(
        "Creates a user. With `companyName` the user becomes the account owner of a new "
        "contractor company; without it the user can submit join requests."
    ),
    responses={**TOKEN_RESPONSE, **error_responses(409, 422, 500)},
)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    normalized_email = payload.email.lower()
    exists = db.execute(
        select(User.id).where(func.lower(User.email) == normalized_email)
    ).first()
    if exists:
        raise HTTPException(status_code=409, detail="Email already registered")

    user = User(
        id=generate_shortuuid(),
        email=normalized_email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        hashed_password=hash_password(payload.password),
    )
    db.add(user)
    db.flush()

    if payload.company_name:
        company = Company(id=generate_shortuuid(), name=payload.company_name, is_contractor=True)
        db.add(company)
        db.flush()
        db.add(
            CompanyMembership(
                id=generate_shortuuid(),
                company_id=company.id,
                user_id=user.id,
                role="account_owner",
                permission_level=None,
                is_active=True,
            )
        )
        log_audit_event(
            db,
            company_id=company.id,
            actor_user_id=user.id,
            action="company.created",
            target_type="company",
            target_id=company.id,
            metadata_json={"name": company.name},
        )

    db.commit()
    return _issue_token(user)


@router.post(
    "/login",
    response_model=TokenOut,
    summary="Login with JSON",
    description=(
        "Authenticate with email and password. Temporary credentials issued by a team "
        "invitation activate the invited account on first use."
    ),
    responses={**TOKEN_RESPONSE, **error_responses(401, 409, 410, 422, 500)},
)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = _authenticate_user(db, payload.email, payload.password)
    return _issue_token(user)


@router.post(
    "/token",
    response_model=TokenOut,
    summary="OAuth2 password token (Swagger Authorize)",
    description="Form-data login endpoint used by Swagger Authorize. Put the email in `username`.",
    responses={**TOKEN_RESPONSE, **error_responses(401, 409, 410, 422, 500)},
)
def login_for_swagger(
    db: Session = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends(),
):
    user = _authenticate_user(db, form_data.username, form_data.password)
    return _issue_token(user)


@router.get(
    "/user",
    response_model=CurrentUserOut,
    summary="Get current user",
    description="Profile, active company membership and the capabilities the role policy grants.",
    responses=error_responses(401, 500),
)
def get_current_user_profile(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    access = resolve_company_access(db, user)
    membership = None
    if access:
        membership = MembershipOut(
            company_id=access.company.id,
            company_name=access.company.name,
            role=access.role,
            permission_level=access.permission_level,
        )
    return CurrentUserOut(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        is_temporary_password=user.is_temporary_password,
        membership=membership,
        capabilities=capabilities(
            role=access.role if access else None,
            permission_level=access.permission_level if access else None,
        ),
        created_at=user.created_at,
    )


@router.post(
    "/change-password",
    response_model=SuccessOut,
    summary="Change password",
    description="Replaces the password and clears the temporary-password flag.",
    responses=error_responses(400, 401, 422, 500),
)
def change_password(
    payload: ChangePasswordIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if not verify_password(payload.current_password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Current password is incorrect")
    if payload.current_password == payload.new_password:
        raise HTTPException(status_code=400, detail="New password must be different")

    user.hashed_password = hash_password(payload.new_password)
    user.is_temporary_password = False
    db.commit()
    return SuccessOut(message="Password updated")
