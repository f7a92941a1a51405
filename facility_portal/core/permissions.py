from collections.abc import Callable
from typing import Literal

from fastapi import Depends

from facility_portal.core.errors import AuthorizationError
from facility_portal.core.security_current import CompanyAccess, get_current_company_access

OWNER_ROLES = frozenset({"individual", "account_owner"})
TEAM_ROLES = ("individual", "account_owner", "manager", "team_member")
PERMISSION_LEVELS = ("viewer", "editor", "manager")

TeamAction = Literal[
    "invite_members",
    "manage_permissions",
    "delete_members",
    "transfer_ownership",
    "review_join_requests",
    "view_team",
    "upload_documents",
    "view_documents",
]


def is_owner_role(role: str | None) -> bool:
    return (role or "").lower() in OWNER_ROLES


def is_manager_level(role: str | None, permission_level: str | None) -> bool:
    return (role or "").lower() == "manager" or (permission_level or "").lower() == "manager"


def _team_admin(role: str | None, permission_level: str | None) -> bool:
    return is_owner_role(role) or is_manager_level(role, permission_level)


def _owner_only(role: str | None, permission_level: str | None) -> bool:
    return is_owner_role(role)


def _document_editor(role: str | None, permission_level: str | None) -> bool:
    return _team_admin(role, permission_level) or (permission_level or "").lower() == "editor"


def _any_member(role: str | None, permission_level: str | None) -> bool:
    return (role or "").lower() in TEAM_ROLES


ACTION_POLICY: dict[str, Callable[[str | None, str | None], bool]] = {
    "invite_members": _team_admin,
    "manage_permissions": _owner_only,
    "delete_members": _team_admin,
    "transfer_ownership": _owner_only,
    "review_join_requests": _team_admin,
    "view_team": _team_admin,
    "upload_documents": _document_editor,
    "view_documents": _any_member,
}

_DENIED_MESSAGES: dict[str, str] = {
    "invite_members": "Only account owners and managers can invite team members",
    "manage_permissions": "Only account owners can update permissions",
    "delete_members": "Only account owners and managers can remove team members",
    "transfer_ownership": "Only account owners can transfer ownership",
    "review_join_requests": "Only account owners and managers can review join requests",
    "view_team": "Only account owners and managers can view the team",
    "upload_documents": "Viewers cannot upload documents",
    "view_documents": "Insufficient permission for this action",
}

_CAPABILITY_KEYS: dict[str, str] = {
    "canInviteMembers": "invite_members",
    "canManagePermissions": "manage_permissions",
    "canDeleteMembers": "delete_members",
    "canTransferOwnership": "transfer_ownership",
    "canReviewJoinRequests": "review_join_requests",
    "canUploadDocuments": "upload_documents",
}


def is_allowed(*, role: str | None, permission_level: str | None, action: str) -> bool:
    predicate = ACTION_POLICY.get(action)
    if predicate is None:
        raise ValueError(f"Unknown team action: {action}")
    return predicate(role, permission_level)


def capabilities(*, role: str | None, permission_level: str | None) -> dict[str, bool]:
    return {
        key: is_allowed(role=role, permission_level=permission_level, action=action)
        for key, action in _CAPABILITY_KEYS.items()
    }


def ensure_allowed(access: CompanyAccess, action: TeamAction) -> None:
    if not is_allowed(role=access.role, permission_level=access.permission_level, action=action):
        raise AuthorizationError(_DENIED_MESSAGES[action])


def require_team_action(action: TeamAction) -> Callable[[CompanyAccess], CompanyAccess]:
    if action not in ACTION_POLICY:
        raise ValueError(f"Unknown team action: {action}")

    def dependency(access: CompanyAccess = Depends(get_current_company_access)) -> CompanyAccess:
        ensure_allowed(access, action)
        return access

    return dependency
