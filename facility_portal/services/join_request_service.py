from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from facility_portal.core.errors import ConflictError, NotFoundError
from facility_portal.core.id_utils import generate_shortuuid
from facility_portal.core.permissions import ensure_allowed
from facility_portal.core.security_current import CompanyAccess
from facility_portal.models.company import Company
from facility_portal.models.company_membership import CompanyMembership
from facility_portal.models.join_request import JoinRequest
from facility_portal.models.user import User
from facility_portal.services.audit_service import log_audit_event


def submit_join_request(
    db: Session,
    *,
    user: User,
    company_id: str,
    requested_permission_level: str,
    message: str | None = None,
) -> JoinRequest:
    company = db.get(Company, company_id)
    if not company or not company.is_contractor:
        raise NotFoundError("Contractor company not found")

    already_member = db.execute(
        select(CompanyMembership.id).where(
            CompanyMembership.company_id == company_id,
            CompanyMembership.user_id == user.id,
            CompanyMembership.is_active.is_(True),
        )
    ).first()
    if already_member:
        raise ConflictError("You are already a member of this company")

    pending = db.execute(
        select(JoinRequest.id).where(
            JoinRequest.user_id == user.id,
            JoinRequest.requested_company_id == company_id,
            JoinRequest.status == "pending",
        )
    ).first()
    if pending:
        raise ConflictError("You already have a pending request for this company")

    join_request = JoinRequest(
        id=generate_shortuuid(),
        user_id=user.id,
        requested_company_id=company_id,
        requested_permission_level=requested_permission_level,
        message=message,
        status="pending",
    )
    db.add(join_request)
    log_audit_event(
        db,
        company_id=company_id,
        actor_user_id=user.id,
        action="team.join_request.submitted",
        target_type="join_request",
        target_id=join_request.id,
        metadata_json={"requested_permission_level": requested_permission_level},
    )
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("You already have a pending request for this company") from exc
    db.refresh(join_request)
    return join_request


def _request_in_company(db: Session, *, access: CompanyAccess, request_id: str) -> JoinRequest:
    join_request = db.execute(
        select(JoinRequest).where(
            JoinRequest.id == request_id,
            JoinRequest.requested_company_id == access.company.id,
        )
    ).scalar_one_or_none()
    if not join_request:
        raise NotFoundError("Join request not found")
    if join_request.status != "pending":
        raise ConflictError(f"Join request has already been {join_request.status}")
    return join_request


def _close_request(db: Session, *, join_request: JoinRequest, values: dict) -> None:
    closed = db.execute(
        update(JoinRequest)
        .where(JoinRequest.id == join_request.id, JoinRequest.status == "pending")
        .values(**values)
    )
    if closed.rowcount != 1:
        db.rollback()
        raise ConflictError("Join request has already been reviewed")


def approve_join_request(
    db: Session,
    *,
    access: CompanyAccess,
    request_id: str,
    assigned_permission_level: str | None = None,
) -> JoinRequest:
    ensure_allowed(access, "review_join_requests")
    join_request = _request_in_company(db, access=access, request_id=request_id)
    level = assigned_permission_level or join_request.requested_permission_level

    active_elsewhere = db.execute(
        select(CompanyMembership.id).where(
            CompanyMembership.user_id == join_request.user_id,
            CompanyMembership.is_active.is_(True),
        )
    ).first()
    if active_elsewhere:
        raise ConflictError("Requester already belongs to a contractor company")

    now = datetime.now(timezone.utc)
    _close_request(
        db,
        join_request=join_request,
        values={
            "status": "approved",
            "assigned_permission_level": level,
            "reviewed_by_user_id": access.user.id,
            "reviewed_at": now,
        },
    )

    membership = db.execute(
        select(CompanyMembership).where(
            CompanyMembership.company_id == access.company.id,
            CompanyMembership.user_id == join_request.user_id,
        )
    ).scalar_one_or_none()
    if membership:
        membership.role = "team_member"
        membership.permission_level = level
        membership.is_active = True
        membership.removed_at = None
        membership.removed_by_user_id = None
    else:
        db.add(
            CompanyMembership(
                id=generate_shortuuid(),
                company_id=access.company.id,
                user_id=join_request.user_id,
                role="team_member",
                permission_level=level,
                is_active=True,
            )
        )

    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="team.join_request.approved",
        target_type="join_request",
        target_id=join_request.id,
        metadata_json={
            "user_id": join_request.user_id,
            "requested_permission_level": join_request.requested_permission_level,
            "assigned_permission_level": level,
            "reactivated": membership is not None,
        },
    )
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Requester already belongs to a contractor company") from exc
    db.refresh(join_request)
    return join_request


def reject_join_request(
    db: Session,
    *,
    access: CompanyAccess,
    request_id: str,
    review_notes: str | None = None,
) -> JoinRequest:
    ensure_allowed(access, "review_join_requests")
    join_request = _request_in_company(db, access=access, request_id=request_id)

    _close_request(
        db,
        join_request=join_request,
        values={
            "status": "rejected",
            "review_notes": review_notes,
            "reviewed_by_user_id": access.user.id,
            "reviewed_at": datetime.now(timezone.utc),
        },
    )
    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="team.join_request.rejected",
        target_type="join_request",
        target_id=join_request.id,
        metadata_json={"user_id": join_request.user_id, "review_notes": review_notes},
    )
    db.commit()
    db.refresh(join_request)
    return join_request
