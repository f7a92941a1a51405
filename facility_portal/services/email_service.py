import json
import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from typing import Literal

from facility_portal.core.config import settings

logger = logging.getLogger("facility_portal.email")

EmailDeliveryStatus = Literal["sent", "not_configured", "failed"]


@dataclass(frozen=True)
class EmailDeliveryResult:
    status: EmailDeliveryStatus
    detail: str | None = None


def _smtp_configured() -> bool:
    return bool(settings.smtp_host and settings.smtp_sender_email)


def build_invite_link(invitation_token: str) -> str | None:
    if not settings.team_invite_web_base_url:
        return None
    return f"{settings.team_invite_web_base_url.rstrip('/')}/accept-invite/{invitation_token}"


def _build_team_invite_body(
    *,
    first_name: str,
    company_name: str,
    inviter_name: str,
    permission_level: str,
    invitation_token: str,
    expires_at: datetime,
    invite_link: str | None,
) -> str:
    lines = [
        f"Hi {first_name},",
        "",
        f"{inviter_name} has invited you to join the {company_name} contractor team.",
        f"Access level: {permission_level}",
        f"This invitation expires on {expires_at.strftime('%Y-%m-%d %H:%M UTC')}.",
        "",
    ]
    if invite_link:
        lines.append(f"Set your password and join: {invite_link}")
    else:
        lines.append("Use this invitation code on the accept invitation page:")
        lines.append(invitation_token)
    lines.append("")
    lines.append("If you were not expecting this invitation, you can ignore this email.")
    return "\n".join(lines)


def send_team_invitation_email(
    *,
    recipient_email: str,
    first_name: str,
    company_name: str,
    inviter_name: str,
    permission_level: str,
    invitation_token: str,
    expires_at: datetime,
) -> EmailDeliveryResult:
    if not _smtp_configured():
        return EmailDeliveryResult(status="not_configured", detail="SMTP not configured")

    message = EmailMessage()
    message["Subject"] = f"You're invited to join {company_name}"
    message["From"] = settings.smtp_sender_email
    message["To"] = recipient_email
    message.set_content(
        _build_team_invite_body(
            first_name=first_name,
            company_name=company_name,
            inviter_name=inviter_name,
            permission_level=permission_level,
            invitation_token=invitation_token,
            expires_at=expires_at,
            invite_link=build_invite_link(invitation_token),
        )
    )

    try:
        with smtplib.SMTP(
            settings.smtp_host,
            settings.smtp_port,
            timeout=settings.smtp_timeout_seconds,
        ) as server:
            if settings.smtp_use_starttls:
                server.starttls()
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password or "")
            server.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning(
            json.dumps(
                {
                    "event": "team_invite_email_failed",
                    "recipient": recipient_email,
                    "error": str(exc),
                }
            )
        )
        return EmailDeliveryResult(status="failed", detail=str(exc))

    return EmailDeliveryResult(status="sent")
