"""Team invitation lifecycle.

Invitations are issued in one of two modes. In ``credentials`` mode the inviter
receives a temporary password to hand over, and the first login with it
materializes the account. In ``token`` mode the invitee receives an emailed
single-use token and chooses their own password on the accept page. Both paths
claim the invitation with a conditional ``pending -> accepted`` update so a
token or credential is consumed at most once.
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from facility_portal.core.config import settings
from facility_portal.core.errors import ConflictError, ExpiredError, NotFoundError
from facility_portal.core.id_utils import generate_shortuuid, generate_temporary_password
from facility_portal.core.permissions import ensure_allowed
from facility_portal.core.security import hash_password, verify_password
from facility_portal.core.security_current import CompanyAccess
from facility_portal.models.company import Company
from facility_portal.models.company_membership import CompanyMembership
from facility_portal.models.team_invitation import TeamInvitation
from facility_portal.models.user import User
from facility_portal.services.audit_service import log_audit_event
from facility_portal.services.email_service import EmailDeliveryResult, send_team_invitation_email


@dataclass(frozen=True)
class InvitationIssue:
    invitation: TeamInvitation
    temporary_password: str | None = None
    invitation_token: str | None = None
    email_delivery: EmailDeliveryResult | None = None


@dataclass(frozen=True)
class InvitationDetails:
    invitation: TeamInvitation
    company: Company
    inviter: User


def generate_team_invitation_token() -> str:
    return f"ti_{secrets.token_urlsafe(24)}"


def hash_team_invitation_token(raw_token: str) -> str:
    token_material = f"{settings.secret_key}:{(raw_token or '').strip()}"
    return hashlib.sha256(token_material.encode("utf-8")).hexdigest()


def is_invitation_expired(invitation: TeamInvitation, now: datetime | None = None) -> bool:
    expires_at = invitation.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at <= (now or datetime.now(timezone.utc))


def expire_stale_invitations(db: Session, *, company_id: str, email: str | None = None) -> int:
    stmt = update(TeamInvitation).where(
        TeamInvitation.company_id == company_id,
        TeamInvitation.status == "pending",
        TeamInvitation.expires_at <= datetime.now(timezone.utc),
    )
    if email:
        stmt = stmt.where(func.lower(TeamInvitation.email) == email.lower())
    result = db.execute(stmt.values(status="expired"))
    return result.rowcount or 0


def invite_team_member(
    db: Session,
    *,
    access: CompanyAccess,
    email: str,
    first_name: str,
    last_name: str,
    permission_level: str,
) -> InvitationIssue:
    ensure_allowed(access, "invite_members")

    normalized_email = email.strip().lower()
    existing_member = db.execute(
        select(CompanyMembership.id)
        .join(User, User.id == CompanyMembership.user_id)
        .where(
            CompanyMembership.company_id == access.company.id,
            CompanyMembership.is_active.is_(True),
            func.lower(User.email) == normalized_email,
        )
    ).first()
    if existing_member:
        raise ConflictError("User is already an active team member")

    existing_user = db.execute(
        select(User.id).where(func.lower(User.email) == normalized_email)
    ).first()
    if existing_user:
        raise ConflictError("User with this email already exists")

    # Pending rows past their expiry must not block a fresh invitation.
    expire_stale_invitations(db, company_id=access.company.id, email=normalized_email)
    pending_invite = db.execute(
        select(TeamInvitation.id).where(
            TeamInvitation.company_id == access.company.id,
            func.lower(TeamInvitation.email) == normalized_email,
            TeamInvitation.status == "pending",
        )
    ).first()
    if pending_invite:
        raise ConflictError("An active invitation already exists for this email")

    mode = settings.team_invite_mode
    now = datetime.now(timezone.utc)
    raw_token = generate_team_invitation_token()
    temporary_password = generate_temporary_password() if mode == "credentials" else None

    invitation = TeamInvitation(
        id=generate_shortuuid(),
        company_id=access.company.id,
        invited_by_user_id=access.user.id,
        email=normalized_email,
        first_name=first_name,
        last_name=last_name,
        permission_level=permission_level,
        issuance_mode=mode,
        token_hash=hash_team_invitation_token(raw_token),
        credential_hash=hash_password(temporary_password) if temporary_password else None,
        status="pending",
        expires_at=now + timedelta(days=settings.team_invite_expire_days),
    )
    db.add(invitation)
    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="team.invitation.created",
        target_type="team_invitation",
        target_id=invitation.id,
        metadata_json={
            "email": normalized_email,
            "permission_level": permission_level,
            "issuance_mode": mode,
        },
    )
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("An active invitation already exists for this email") from exc
    db.refresh(invitation)

    if mode == "credentials":
        return InvitationIssue(invitation=invitation, temporary_password=temporary_password)

    delivery = send_team_invitation_email(
        recipient_email=normalized_email,
        first_name=first_name,
        company_name=access.company.name,
        inviter_name=access.user.full_name,
        permission_level=permission_level,
        invitation_token=raw_token,
        expires_at=invitation.expires_at,
    )
    return InvitationIssue(
        invitation=invitation,
        invitation_token=raw_token,
        email_delivery=delivery,
    )


def _invitation_by_token(db: Session, raw_token: str) -> TeamInvitation:
    invitation = db.execute(
        select(TeamInvitation).where(
            TeamInvitation.token_hash == hash_team_invitation_token(raw_token)
        )
    ).scalar_one_or_none()
    if not invitation:
        raise NotFoundError("Invitation not found")
    return invitation


def _mark_expired(db: Session, invitation: TeamInvitation) -> None:
    if invitation.status == "pending":
        invitation.status = "expired"
        db.commit()


def get_invitation_details(db: Session, *, raw_token: str) -> InvitationDetails:
    invitation = _invitation_by_token(db, raw_token)
    if invitation.status == "pending" and is_invitation_expired(invitation):
        _mark_expired(db, invitation)

    company = db.get(Company, invitation.company_id)
    inviter = db.get(User, invitation.invited_by_user_id)
    return InvitationDetails(invitation=invitation, company=company, inviter=inviter)


def _materialize_member(
    db: Session,
    *,
    invitation: TeamInvitation,
    hashed_password: str,
    is_temporary_password: bool,
) -> User:
    """Claim a pending invitation and create its user and membership in one transaction."""
    user_id = generate_shortuuid()
    now = datetime.now(timezone.utc)
    claimed = db.execute(
        update(TeamInvitation)
        .where(
            TeamInvitation.id == invitation.id,
            TeamInvitation.status == "pending",
        )
        .values(status="accepted", accepted_at=now, accepted_by_user_id=user_id)
    )
    if claimed.rowcount != 1:
        db.rollback()
        raise ConflictError("Invitation has already been accepted")

    user = User(
        id=user_id,
        email=invitation.email,
        first_name=invitation.first_name,
        last_name=invitation.last_name,
        hashed_password=hashed_password,
        is_temporary_password=is_temporary_password,
    )
    db.add(user)
    db.flush()
    db.add(
        CompanyMembership(
            id=generate_shortuuid(),
            company_id=invitation.company_id,
            user_id=user_id,
            role="team_member",
            permission_level=invitation.permission_level,
            is_active=True,
        )
    )
    log_audit_event(
        db,
        company_id=invitation.company_id,
        actor_user_id=user_id,
        action="team.invitation.accepted",
        target_type="team_invitation",
        target_id=invitation.id,
        metadata_json={
            "email": invitation.email,
            "permission_level": invitation.permission_level,
            "issuance_mode": invitation.issuance_mode,
        },
    )
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("An account already exists for this email") from exc
    db.refresh(user)
    return user


def accept_invitation(db: Session, *, raw_token: str, password: str) -> User:
    invitation = _invitation_by_token(db, raw_token)
    if invitation.status == "accepted":
        raise ConflictError("Invitation has already been accepted")
    if invitation.status == "expired" or is_invitation_expired(invitation):
        _mark_expired(db, invitation)
        raise ExpiredError("Invitation has expired")

    existing_user = db.execute(
        select(User.id).where(func.lower(User.email) == invitation.email.lower())
    ).first()
    if existing_user:
        raise ConflictError("An account already exists for this email")

    return _materialize_member(
        db,
        invitation=invitation,
        hashed_password=hash_password(password),
        is_temporary_password=False,
    )


def consume_credential_invitation(db: Session, *, email: str, password: str) -> User | None:
    """Turn a first login with issued temporary credentials into a real account.

    Returns None when no pending credential invitation matches the email and
    password, so the caller can fall through to its usual failure response.
    """
    candidates = db.execute(
        select(TeamInvitation)
        .where(
            func.lower(TeamInvitation.email) == email.strip().lower(),
            TeamInvitation.issuance_mode == "credentials",
            TeamInvitation.status.in_(("pending", "expired")),
            TeamInvitation.credential_hash.is_not(None),
        )
        .order_by(TeamInvitation.created_at.desc())
    ).scalars().all()

    for invitation in candidates:
        if not verify_password(password, invitation.credential_hash):
            continue
        if invitation.status == "expired" or is_invitation_expired(invitation):
            _mark_expired(db, invitation)
            raise ExpiredError("Temporary credentials have expired, ask for a new invitation")
        return _materialize_member(
            db,
            invitation=invitation,
            hashed_password=invitation.credential_hash,
            is_temporary_password=True,
        )
    return None
