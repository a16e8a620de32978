from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from office_app.models import Role, RoleName


# Names offered back to the dashboard when a role cannot be resolved.
ASSIGNABLE_ROLE_NAMES = ('SUPER_ADMIN', 'ADMIN', 'ADMIN_MANAGER', 'STAFF')

ROLE_ALIASES = {
    'adminmanager': RoleName.ADMIN_MANAGER.value,
    'superadmin': RoleName.SUPER_ADMIN.value,
    'member': RoleName.RESIDENT.value,
}
SUPER_ADMIN_VARIANTS = ('SUPER_ADMIN', 'super_admin', 'superadmin')

ROLE_DESCRIPTIONS = {
    RoleName.SUPER_ADMIN: 'Full access, including destructive operations',
    RoleName.ADMIN: 'Office administrator',
    RoleName.ADMIN_MANAGER: 'Administrator with team management',
    RoleName.STAFF: 'Office staff',
    RoleName.COLLECTOR: 'Field collector',
    RoleName.RESIDENT: 'Resident / customer',
}


class RoleNotFoundError(ValueError):
    def __init__(self, requested: str) -> None:
        self.requested = requested
        super().__init__(
            f"Role '{requested}' not found. Available roles: {', '.join(ASSIGNABLE_ROLE_NAMES)}"
        )


def normalize_role_name(raw: str) -> str:
    normalized = raw.strip().lower()
    return ROLE_ALIASES.get(normalized, normalized)


def _role_by_name(db: Session, name: str) -> Role | None:
    return db.execute(select(Role).where(Role.name == name)).scalars().first()


def resolve_role(db: Session, raw: str) -> Role:
    """Find a catalog role for a name typed by an operator.

    Tries the normalized alias first, then the upper-case spelling used by
    older catalogs, then every known spelling of the super-admin role.
    """
    if not raw or not raw.strip():
        raise RoleNotFoundError(raw or '')

    normalized = normalize_role_name(raw)
    role = _role_by_name(db, normalized) or _role_by_name(db, raw.strip().upper())
    if role is None and normalized == RoleName.SUPER_ADMIN.value:
        role = (
            db.execute(select(Role).where(Role.name.in_(SUPER_ADMIN_VARIANTS)).order_by(Role.id.asc()))
            .scalars()
            .first()
        )
    if role is None:
        raise RoleNotFoundError(raw.strip())
    return role


def ensure_role_catalog(db: Session) -> dict[RoleName, Role]:
    existing = {role.name: role for role in db.execute(select(Role)).scalars().all()}
    catalog: dict[RoleName, Role] = {}
    for role_name in RoleName:
        role = existing.get(role_name.value)
        if role is None:
            role = Role(name=role_name.value, description=ROLE_DESCRIPTIONS[role_name])
            db.add(role)
        catalog[role_name] = role
    db.flush()
    return catalog
