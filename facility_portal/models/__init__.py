from facility_portal.models.user import User
from facility_portal.models.company import Company
from facility_portal.models.company_membership import CompanyMembership
from facility_portal.models.team_invitation import TeamInvitation
from facility_portal.models.join_request import JoinRequest
from facility_portal.models.document import Document
from facility_portal.models.audit_log import AuditLog
