from typing import Any

from sqlalchemy.orm import Session

from facility_portal.core.id_utils import generate_shortuuid
from facility_portal.models.audit_log import AuditLog


def log_audit_event(
    db: Session,
    *,
    company_id: str,
    actor_user_id: str,
    action: str,
    target_type: str,
    target_id: str | None = None,
    metadata_json: dict[str, Any] | None = None,
) -> AuditLog:
    """Stage an audit row on the caller's session; it commits with the mutation it describes."""
    event = AuditLog(
        id=generate_shortuuid(),
        company_id=company_id,
        actor_user_id=actor_user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        metadata_json=metadata_json,
    )
    db.add(event)
    return event
