from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from facility_portal.core.api_docs import error_responses
from facility_portal.core.deps import get_db
from facility_portal.schemas.common import SuccessOut
from facility_portal.schemas.team import AcceptInvitationIn, InvitationDetailsOut
from facility_portal.services.team_invitation_service import (
    accept_invitation,
    get_invitation_details,
)

router = APIRouter(prefix="/api/team", tags=["team"])


@router.get(
    "/invitations/{token}",
    response_model=InvitationDetailsOut,
    summary="Look up an invitation for the accept page",
    responses={**error_responses(404, 500)},
)
def read_invitation(token: str, db: Session = Depends(get_db)):
    details = get_invitation_details(db, raw_token=token)
    return InvitationDetailsOut(
        email=details.invitation.email,
        first_name=details.invitation.first_name,
        last_name=details.invitation.last_name,
        permission_level=details.invitation.permission_level,
        company_name=details.company.name,
        invited_by_name=details.inviter.full_name,
        status=details.invitation.status,
        expires_at=details.invitation.expires_at,
    )


@router.post(
    "/accept-invitation/{token}",
    response_model=SuccessOut,
    summary="Accept a team invitation",
    description="Sets the invitee's password and activates their membership. Each token works once.",
    responses={**error_responses(404, 409, 410, 422, 500)},
)
def accept_team_invitation(
    token: str,
    payload: AcceptInvitationIn,
    db: Session = Depends(get_db),
):
    accept_invitation(db, raw_token=token, password=payload.password)
    return SuccessOut(message="Invitation accepted. You can now sign in with your new password.")
