from dataclasses import dataclass

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from facility_portal.core.deps import get_db
from facility_portal.core.errors import NotFoundError
from facility_portal.core.security import TokenValidationError, decode_token
from facility_portal.models.company import Company
from facility_portal.models.company_membership import CompanyMembership
from facility_portal.models.user import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")


@dataclass(frozen=True)
class CompanyAccess:
    company: Company
    membership: CompanyMembership
    user: User

    @property
    def role(self) -> str:
        return self.membership.role

    @property
    def permission_level(self) -> str | None:
        return self.membership.permission_level


def resolve_company_access(db: Session, user: User) -> CompanyAccess | None:
    row = db.execute(
        select(CompanyMembership, Company)
        .join(Company, Company.id == CompanyMembership.company_id)
        .where(
            CompanyMembership.user_id == user.id,
            CompanyMembership.is_active.is_(True),
        )
        .order_by(CompanyMembership.created_at.asc())
        .limit(1)
    ).first()
    if not row:
        return None
    membership, company = row
    return CompanyAccess(company=company, membership=membership, user=user)


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    try:
        payload = decode_token(token, expected_type="access")
    except TokenValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    user = db.execute(select(User).where(User.id == payload.get("sub"))).scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_current_company_access(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
) -> CompanyAccess:
    access = resolve_company_access(db, user)
    if not access:
        raise NotFoundError("Contractor company not found")
    return access
