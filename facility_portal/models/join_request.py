from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from facility_portal.core.id_utils import generate_shortuuid
from facility_portal.db.base import Base


class JoinRequest(Base):
    __tablename__ = "contractor_join_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_shortuuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    requested_company_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("companies.id"), index=True
    )
    requested_permission_level: Mapped[str] = mapped_column(
        String(20), nullable=False, server_default="editor"
    )
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, server_default="pending")
    assigned_permission_level: Mapped[str | None] = mapped_column(String(20), nullable=True)
    reviewed_by_user_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_join_requests_company_status", "requested_company_id", "status"),
        Index(
            "ux_join_requests_user_company_pending",
            "user_id",
            "requested_company_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )
