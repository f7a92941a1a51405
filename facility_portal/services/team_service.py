from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from facility_portal.core.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from facility_portal.core.permissions import (
    OWNER_ROLES,
    ensure_allowed,
    is_manager_level,
    is_owner_role,
)
from facility_portal.core.security_current import CompanyAccess
from facility_portal.models.company_membership import CompanyMembership
from facility_portal.services.audit_service import log_audit_event


def _active_membership(db: Session, *, company_id: str, user_id: str) -> CompanyMembership:
    membership = db.execute(
        select(CompanyMembership).where(
            CompanyMembership.company_id == company_id,
            CompanyMembership.user_id == user_id,
            CompanyMembership.is_active.is_(True),
        )
    ).scalar_one_or_none()
    if not membership:
        raise NotFoundError("Team member not found")
    return membership


def update_permissions(
    db: Session,
    *,
    access: CompanyAccess,
    target_user_id: str,
    permission_level: str,
) -> CompanyMembership:
    ensure_allowed(access, "manage_permissions")

    target = _active_membership(db, company_id=access.company.id, user_id=target_user_id)
    if is_owner_role(target.role):
        raise AuthorizationError("Account owner permissions cannot be changed")

    previous = {"role": target.role, "permission_level": target.permission_level}
    target.permission_level = permission_level
    # Role "manager" grants manager rights on its own, so a downgrade has to clear it.
    if target.role == "manager" and permission_level != "manager":
        target.role = "team_member"

    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="team.member.permissions_updated",
        target_type="company_membership",
        target_id=target.id,
        metadata_json={
            "user_id": target_user_id,
            "previous": previous,
            "current": {"role": target.role, "permission_level": permission_level},
        },
    )
    db.commit()
    db.refresh(target)
    return target


def transfer_ownership(db: Session, *, access: CompanyAccess, new_owner_id: str) -> CompanyMembership:
    ensure_allowed(access, "transfer_ownership")
    if new_owner_id == access.user.id:
        raise ValidationError("You already own this company")

    target = _active_membership(db, company_id=access.company.id, user_id=new_owner_id)
    if is_owner_role(target.role):
        raise ConflictError("Selected member already owns this company")

    demoted = db.execute(
        update(CompanyMembership)
        .where(
            CompanyMembership.id == access.membership.id,
            CompanyMembership.is_active.is_(True),
            CompanyMembership.role.in_(OWNER_ROLES),
        )
        .values(role="manager", permission_level="manager")
    )
    if demoted.rowcount != 1:
        db.rollback()
        raise ConflictError("Ownership changed while processing the transfer")

    target.role = "account_owner"
    target.permission_level = None

    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="team.ownership.transferred",
        target_type="company_membership",
        target_id=target.id,
        metadata_json={"previous_owner_id": access.user.id, "new_owner_id": new_owner_id},
    )
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Ownership changed while processing the transfer") from exc
    db.refresh(target)
    return target


def delete_member(db: Session, *, access: CompanyAccess, target_user_id: str) -> CompanyMembership:
    """Deactivate a membership. The row, invitations and join requests stay as history."""
    ensure_allowed(access, "delete_members")
    if target_user_id == access.user.id:
        raise ValidationError("You cannot remove yourself from the team")

    target = _active_membership(db, company_id=access.company.id, user_id=target_user_id)
    if is_owner_role(target.role):
        raise AuthorizationError("Account owners cannot be removed")
    if not is_owner_role(access.role) and is_manager_level(target.role, target.permission_level):
        raise AuthorizationError("Only account owners can remove managers")

    target.is_active = False
    target.removed_at = datetime.now(timezone.utc)
    target.removed_by_user_id = access.user.id

    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="team.member.removed",
        target_type="company_membership",
        target_id=target.id,
        metadata_json={
            "user_id": target_user_id,
            "role": target.role,
            "permission_level": target.permission_level,
        },
    )
    db.commit()
    db.refresh(target)
    return target
