from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session, aliased

from facility_portal.core.api_docs import error_responses
from facility_portal.core.deps import get_db
from facility_portal.core.permissions import require_team_action
from facility_portal.core.security_current import (
    CompanyAccess,
    get_current_company_access,
    get_current_user,
)
from facility_portal.models.company import Company
from facility_portal.models.company_membership import CompanyMembership
from facility_portal.models.join_request import JoinRequest
from facility_portal.models.team_invitation import TeamInvitation
from facility_portal.models.user import User
from facility_portal.schemas.common import SuccessOut, build_pagination
from facility_portal.schemas.join_request import (
    JoinRequestApproveIn,
    JoinRequestCreateIn,
    JoinRequestListOut,
    JoinRequestOut,
    JoinRequestRejectIn,
)
from facility_portal.schemas.team import (
    DeleteMemberIn,
    TeamInvitationListOut,
    TeamInvitationOut,
    TeamInviteIn,
    TeamInviteOut,
    TeamMemberListOut,
    TeamMemberOut,
    TemporaryCredentialsOut,
    TransferOwnershipIn,
    UpdatePermissionsIn,
)
from facility_portal.services import join_request_service, team_service
from facility_portal.services.team_invitation_service import (
    expire_stale_invitations,
    invite_team_member,
)

router = APIRouter(prefix="/api/contractor", tags=["contractor"])


def _member_out(membership: CompanyMembership, user: User) -> TeamMemberOut:
    return TeamMemberOut(
        membership_id=membership.id,
        user_id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=membership.role,
        permission_level=membership.permission_level,
        is_active=membership.is_active,
        is_temporary_password=user.is_temporary_password,
        created_at=membership.created_at,
        removed_at=membership.removed_at,
    )


def _invitation_out(invitation: TeamInvitation) -> TeamInvitationOut:
    return TeamInvitationOut(
        invitation_id=invitation.id,
        company_id=invitation.company_id,
        invited_by_user_id=invitation.invited_by_user_id,
        accepted_by_user_id=invitation.accepted_by_user_id,
        email=invitation.email,
        first_name=invitation.first_name,
        last_name=invitation.last_name,
        permission_level=invitation.permission_level,
        issuance_mode=invitation.issuance_mode,
        status=invitation.status,
        expires_at=invitation.expires_at,
        created_at=invitation.created_at,
        accepted_at=invitation.accepted_at,
    )


def _join_request_out(join_request: JoinRequest, requester: User, company: Company) -> JoinRequestOut:
    return JoinRequestOut(
        id=join_request.id,
        user_id=join_request.user_id,
        requester_email=requester.email,
        requester_name=requester.full_name,
        company_id=company.id,
        company_name=company.name,
        requested_permission_level=join_request.requested_permission_level,
        message=join_request.message,
        status=join_request.status,
        assigned_permission_level=join_request.assigned_permission_level,
        reviewed_by_user_id=join_request.reviewed_by_user_id,
        reviewed_at=join_request.reviewed_at,
        review_notes=join_request.review_notes,
        created_at=join_request.created_at,
    )


def _join_request_page(db: Session, *, filters: list, limit: int, offset: int) -> JoinRequestListOut:
    requester = aliased(User)
    total = int(db.execute(select(func.count(JoinRequest.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(JoinRequest, requester, Company)
        .join(requester, requester.id == JoinRequest.user_id)
        .join(Company, Company.id == JoinRequest.requested_company_id)
        .where(*filters)
        .order_by(JoinRequest.created_at.desc())
        .offset(offset)
        .limit(limit)
    ).all()
    items = [_join_request_out(item, user, company) for item, user, company in rows]
    return JoinRequestListOut(
        items=items,
        pagination=build_pagination(total=total, limit=limit, offset=offset, count=len(items)),
    )


def _join_request_with_context(db: Session, join_request: JoinRequest) -> JoinRequestOut:
    requester = db.get(User, join_request.user_id)
    company = db.get(Company, join_request.requested_company_id)
    return _join_request_out(join_request, requester, company)


@router.get(
    "/team-members",
    response_model=TeamMemberListOut,
    summary="List team members",
    responses={**error_responses(401, 403, 404, 422, 500)},
)
def list_team_members(
    include_inactive: bool = Query(default=False, alias="includeInactive"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_team_action("view_team")),
):
    count_stmt = select(func.count(CompanyMembership.id)).where(
        CompanyMembership.company_id == access.company.id
    )
    data_stmt = (
        select(CompanyMembership, User)
        .join(User, User.id == CompanyMembership.user_id)
        .where(CompanyMembership.company_id == access.company.id)
    )
    if not include_inactive:
        count_stmt = count_stmt.where(CompanyMembership.is_active.is_(True))
        data_stmt = data_stmt.where(CompanyMembership.is_active.is_(True))

    total = int(db.execute(count_stmt).scalar_one())
    rows = db.execute(
        data_stmt.order_by(CompanyMembership.created_at.asc()).offset(offset).limit(limit)
    ).all()
    items = [_member_out(membership, user) for membership, user in rows]
    return TeamMemberListOut(
        items=items,
        pagination=build_pagination(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/team-invitations",
    response_model=TeamInvitationListOut,
    summary="List pending team invitations",
    responses={**error_responses(401, 403, 404, 422, 500)},
)
def list_team_invitations(
    status_filter: str = Query(default="pending", alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_team_action("view_team")),
):
    expire_stale_invitations(db, company_id=access.company.id)
    db.commit()

    normalized_status = status_filter.strip().lower()
    filters = [TeamInvitation.company_id == access.company.id]
    if normalized_status != "all":
        filters.append(TeamInvitation.status == normalized_status)

    total = int(db.execute(select(func.count(TeamInvitation.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(TeamInvitation)
        .where(*filters)
        .order_by(TeamInvitation.created_at.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    items = [_invitation_out(item) for item in rows]
    return TeamInvitationListOut(
        items=items,
        pagination=build_pagination(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.post(
    "/invite-team-member",
    response_model=TeamInviteOut,
    status_code=status.HTTP_201_CREATED,
    summary="Invite a team member",
    description=(
        "Creates a pending invitation. In credentials mode the response carries a temporary "
        "password to hand to the invitee; in token mode the invitee is emailed an accept link."
    ),
    responses={**error_responses(401, 403, 404, 409, 422, 500)},
)
def invite_member(
    payload: TeamInviteIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(get_current_company_access),
):
    issued = invite_team_member(
        db,
        access=access,
        email=payload.email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        permission_level=payload.permission_level,
    )
    credentials = None
    if issued.temporary_password:
        credentials = TemporaryCredentialsOut(
            username=issued.invitation.email,
            password=issued.temporary_password,
        )
    return TeamInviteOut(
        invitation=_invitation_out(issued.invitation),
        credentials=credentials,
        invitation_token=issued.invitation_token,
        email_delivery_status=issued.email_delivery.status if issued.email_delivery else None,
    )


@router.patch(
    "/update-permissions",
    response_model=SuccessOut,
    summary="Change a member's permission level",
    responses={**error_responses(401, 403, 404, 422, 500)},
)
def update_permissions(
    payload: UpdatePermissionsIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(get_current_company_access),
):
    team_service.update_permissions(
        db,
        access=access,
        target_user_id=payload.user_id,
        permission_level=payload.permission_level,
    )
    return SuccessOut(message="Permissions updated")


@router.patch(
    "/transfer-ownership",
    response_model=SuccessOut,
    summary="Transfer company ownership",
    responses={**error_responses(401, 403, 404, 409, 422, 500)},
)
def transfer_ownership(
    payload: TransferOwnershipIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(get_current_company_access),
):
    team_service.transfer_ownership(db, access=access, new_owner_id=payload.new_owner_id)
    return SuccessOut(message="Ownership transferred")


@router.delete(
    "/delete-member",
    response_model=SuccessOut,
    summary="Remove a team member",
    description="Deactivates the membership. Invitation and join-request history is kept.",
    responses={**error_responses(401, 403, 404, 422, 500)},
)
def delete_member(
    payload: DeleteMemberIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(get_current_company_access),
):
    team_service.delete_member(db, access=access, target_user_id=payload.user_id)
    return SuccessOut(message="Team member removed")


@router.get(
    "/join-requests",
    response_model=JoinRequestListOut,
    summary="List join requests for the caller's company",
    responses={**error_responses(401, 403, 404, 422, 500)},
)
def list_join_requests(
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_team_action("review_join_requests")),
):
    filters = [JoinRequest.requested_company_id == access.company.id]
    if status_filter:
        filters.append(JoinRequest.status == status_filter.strip().lower())
    return _join_request_page(db, filters=filters, limit=limit, offset=offset)


@router.post(
    "/join-requests",
    response_model=JoinRequestOut,
    status_code=status.HTTP_201_CREATED,
    summary="Request to join a contractor company",
    responses={**error_responses(401, 404, 409, 422, 500)},
)
def submit_join_request(
    payload: JoinRequestCreateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    join_request = join_request_service.submit_join_request(
        db,
        user=user,
        company_id=payload.company_id,
        requested_permission_level=payload.requested_permission_level,
        message=payload.message,
    )
    return _join_request_with_context(db, join_request)


@router.get(
    "/my-join-requests",
    response_model=JoinRequestListOut,
    summary="List the caller's own join requests",
    responses={**error_responses(401, 422, 500)},
)
def list_my_join_requests(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return _join_request_page(db, filters=[JoinRequest.user_id == user.id], limit=limit, offset=offset)


@router.post(
    "/join-requests/{request_id}/approve",
    response_model=JoinRequestOut,
    summary="Approve a join request",
    responses={**error_responses(401, 403, 404, 409, 422, 500)},
)
def approve_join_request(
    request_id: str,
    payload: JoinRequestApproveIn | None = None,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(get_current_company_access),
):
    join_request = join_request_service.approve_join_request(
        db,
        access=access,
        request_id=request_id,
        assigned_permission_level=payload.assigned_permission_level if payload else None,
    )
    return _join_request_with_context(db, join_request)


@router.post(
    "/join-requests/{request_id}/reject",
    response_model=JoinRequestOut,
    summary="Reject a join request",
    responses={**error_responses(401, 403, 404, 409, 422, 500)},
)
def reject_join_request(
    request_id: str,
    payload: JoinRequestRejectIn | None = None,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(get_current_company_access),
):
    join_request = join_request_service.reject_join_request(
        db,
        access=access,
        request_id=request_id,
        review_notes=payload.review_notes if payload else None,
    )
    return _join_request_with_context(db, join_request)
