import uuid
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status

from office_app.models import RoleName, UserStatus


@dataclass
class Principal:
    id: uuid.UUID
    email: str
    full_name: str | None
    role: RoleName | None
    status: UserStatus
    must_change_password: bool

    @property
    def active(self) -> bool:
        return self.status == UserStatus.ACTIVE


ADMIN_ROLES = frozenset({RoleName.SUPER_ADMIN, RoleName.ADMIN, RoleName.ADMIN_MANAGER})


def get_authenticated_principal(request: Request) -> Principal:
    principal = getattr(request.state, 'principal', None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Not authenticated')
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Account is not active')
    return principal


def get_current_principal(principal: Principal = Depends(get_authenticated_principal)) -> Principal:
    if principal.must_change_password:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Password change required')
    return principal


def require_role(*allowed: RoleName):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Insufficient role')
        return principal

    return _dep
