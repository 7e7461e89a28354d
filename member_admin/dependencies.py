"""Shared dependencies: DB session, current member, privilege guards."""
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from member_admin.database import get_db
from member_admin.models.member import Member
from member_admin.privileges import has_requirement
from member_admin.services.auth import decode_token_with_error

security = HTTPBearer(auto_error=False)


def get_current_member(
    db: Session = Depends(get_db),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Member:
    if not credentials:
        raise HTTPException(status_code=401, detail="Mangler tilgang.")
    token_str = (credentials.credentials or "").strip()
    payload, _ = decode_token_with_error(token_str)
    if not payload:
        raise HTTPException(status_code=401, detail="Ugyldig eller utløpt innlogging.")
    member_id = str(payload.get("sub") or "").strip()
    if not member_id:
        raise HTTPException(status_code=401, detail="Ugyldig token.")
    member = db.query(Member).filter(Member.id == member_id).first()
    if not member:
        raise HTTPException(status_code=401, detail="Fant ikke medlem.")
    return member


def require_privilege(requirement: str):
    """Dependency factory: current member must meet PRIVILEGE_REQUIREMENTS[requirement]."""
    def _check(current_member: Member = Depends(get_current_member)) -> Member:
        if not has_requirement(current_member.privilege_type, requirement):
            raise HTTPException(status_code=403, detail="Du har ikke tilgang til denne funksjonen.")
        return current_member

    return _check
