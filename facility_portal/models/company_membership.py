from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, func, text, true
from sqlalchemy.orm import Mapped, mapped_column

from facility_portal.core.id_utils import generate_shortuuid
from facility_portal.db.base import Base

OWNER_MEMBERSHIP_PREDICATE = "is_active AND role IN ('individual', 'account_owner')"


class CompanyMembership(Base):
    __tablename__ = "company_memberships"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_shortuuid)
    company_id: Mapped[str] = mapped_column(String(36), ForeignKey("companies.id"), index=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default="team_member", server_default="team_member"
    )
    # NULL for owner roles.
    permission_level: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )
    removed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    removed_by_user_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ux_company_memberships_company_user", "company_id", "user_id", unique=True),
        Index(
            "ix_company_memberships_user_active_created_at",
            "user_id",
            "is_active",
            "created_at",
        ),
        # A user belongs to at most one company at a time.
        Index(
            "ux_company_memberships_active_user",
            "user_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
        Index(
            "ux_company_memberships_active_owner",
            "company_id",
            unique=True,
            postgresql_where=text(OWNER_MEMBERSHIP_PREDICATE),
            sqlite_where=text(OWNER_MEMBERSHIP_PREDICATE),
        ),
    )
