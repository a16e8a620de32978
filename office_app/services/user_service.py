from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from office_app.models import Role, RoleName, User, UserStatus
from office_app.security.passwords import generate_temporary_password, hash_password, verify_password
from office_app.services.role_service import resolve_role


MISSING_EMAIL_WARNING = 'Approved but email missing'
EMPLOYEE_NUMBER_PREFIX = 'EMP'
MIN_PASSWORD_LENGTH = 8


class OnboardingConflictError(ValueError):
    pass


@dataclass(frozen=True)
class ApprovalResult:
    user: User
    temp_password: str | None
    warning: str | None = None


@dataclass(frozen=True)
class CreatedUser:
    user: User
    role: Role
    temp_password: str | None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_user_status(raw: str) -> UserStatus:
    try:
        return UserStatus(raw.strip().lower())
    except ValueError as exc:
        allowed = ', '.join(s.value for s in UserStatus)
        raise ValueError(f'Invalid status. Allowed: {allowed}') from exc


def serialize_user(user: User, role_name: str | None) -> dict:
    return {
        'id': str(user.id),
        'email': user.email,
        'full_name': user.full_name,
        'first_name': user.first_name,
        'last_name': user.last_name,
        'phone': user.phone,
        'township': user.township,
        'department': user.department,
        'employee_number': user.employee_number,
        'role_id': user.role_id,
        'role': role_name,
        'status': user.status.value,
        'is_approved': user.is_approved,
        'approval_date': user.approval_date.isoformat() if user.approval_date else None,
        'must_change_password': user.must_change_password,
        'created_at': user.created_at.isoformat() if user.created_at else None,
    }


def get_user(db: Session, *, user_id: uuid.UUID) -> User:
    user = db.get(User, user_id)
    if not user:
        raise LookupError('User not found')
    return user


def list_users(
    db: Session,
    *,
    role: str | None = None,
    status: str | None = None,
    search: str | None = None,
    limit: int = 500,
) -> list[dict]:
    stmt = select(User, Role.name).outerjoin(Role, Role.id == User.role_id)
    if role:
        stmt = stmt.where(Role.id == resolve_role(db, role).id)
    if status:
        stmt = stmt.where(User.status == parse_user_status(status))
    if search:
        pattern = f'%{search.strip()}%'
        stmt = stmt.where(or_(User.email.ilike(pattern), User.full_name.ilike(pattern)))
    rows = db.execute(stmt.order_by(User.created_at.desc()).limit(limit)).all()
    return [serialize_user(user, role_name) for user, role_name in rows]


def list_pending_applicants(db: Session) -> list[dict]:
    return list_users(db, status=UserStatus.PENDING_APPROVAL.value)


def approve_user(db: Session, *, user_id: uuid.UUID) -> ApprovalResult:
    """Activate a pending account and issue a one-time password.

    Status and credential change in the caller's transaction; only the hash
    of the temporary password is stored.
    """
    user = get_user(db, user_id=user_id)
    now = _now()
    user.status = UserStatus.ACTIVE
    user.is_approved = True
    user.approval_date = now
    user.updated_at = now

    if not user.email:
        db.flush()
        return ApprovalResult(user=user, temp_password=None, warning=MISSING_EMAIL_WARNING)

    temp_password = generate_temporary_password()
    user.password_hash = hash_password(temp_password)
    user.must_change_password = True
    db.flush()
    return ApprovalResult(user=user, temp_password=temp_password)


def force_role(
    db: Session,
    *,
    user_id: uuid.UUID,
    role: str | None = None,
    status: str | None = None,
) -> tuple[User, Role]:
    resolved = resolve_role(db, role or 'admin')
    new_status = parse_user_status(status or UserStatus.PENDING_APPROVAL.value)
    user = get_user(db, user_id=user_id)
    user.role_id = resolved.id
    user.status = new_status
    user.updated_at = _now()
    db.flush()
    return user, resolved


def update_user_role(db: Session, *, user_id: uuid.UUID, role: str) -> tuple[User, Role]:
    # Resolve before touching the row so an unknown role leaves it unchanged.
    resolved = resolve_role(db, role)
    user = get_user(db, user_id=user_id)
    user.role_id = resolved.id
    user.updated_at = _now()
    db.flush()
    return user, resolved


def reset_user_password(db: Session, *, user_id: uuid.UUID) -> str:
    user = get_user(db, user_id=user_id)
    if not user.email:
        raise ValueError('User has no email address to sign in with')
    temp_password = generate_temporary_password()
    user.password_hash = hash_password(temp_password)
    user.must_change_password = True
    user.updated_at = _now()
    db.flush()
    return temp_password


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def submit_onboarding(
    db: Session,
    *,
    user_id: uuid.UUID,
    email: str,
    first_name: str | None = None,
    last_name: str | None = None,
    date_of_birth: date | None = None,
    phone: str | None = None,
    address_line1: str | None = None,
    address_line2: str | None = None,
    township: str | None = None,
    suburb: str | None = None,
    city: str | None = None,
    postal_code: str | None = None,
) -> User:
    """Create or refresh an applicant's profile, queued for approval.

    Reviewed accounts (active or suspended) are never reset to pending.
    """
    role = resolve_role(db, RoleName.ADMIN.value)
    user = db.get(User, user_id)
    if user is not None and user.status in (UserStatus.ACTIVE, UserStatus.SUSPENDED):
        raise OnboardingConflictError('Account has already been reviewed')

    normalized_email = email.strip().lower()
    taken = db.execute(
        select(User.id).where(func.lower(User.email) == normalized_email, User.id != user_id)
    ).first()
    if taken:
        raise ValueError('User with this email already exists')

    if user is None:
        user = User(id=user_id)
        db.add(user)

    first_name = _blank_to_none(first_name)
    last_name = _blank_to_none(last_name)
    user.email = normalized_email
    user.first_name = first_name
    user.last_name = last_name
    user.full_name = ' '.join(part for part in (first_name, last_name) if part) or None
    user.date_of_birth = date_of_birth
    user.phone = _blank_to_none(phone)
    user.street_addr = ' '.join(
        part for part in (_blank_to_none(address_line1), _blank_to_none(address_line2)) if part
    ) or None
    user.township = _blank_to_none(township)
    user.subdivision = _blank_to_none(suburb)
    user.city = _blank_to_none(city)
    user.postal_code = _blank_to_none(postal_code)
    user.role_id = role.id
    user.status = UserStatus.PENDING_APPROVAL
    user.is_approved = False
    user.updated_at = _now()
    db.flush()
    return user


def next_employee_number(db: Session) -> str:
    numbers = db.execute(
        select(User.employee_number).where(User.employee_number.like(f'{EMPLOYEE_NUMBER_PREFIX}%'))
    ).scalars().all()
    highest = 0
    for number in numbers:
        suffix = number[len(EMPLOYEE_NUMBER_PREFIX):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f'{EMPLOYEE_NUMBER_PREFIX}{highest + 1:04d}'


def create_staff_user(
    db: Session,
    *,
    first_name: str,
    last_name: str,
    email: str,
    role: str,
    phone: str | None = None,
    department: str | None = None,
    township: str | None = None,
    password: str | None = None,
    send_invite: bool = False,
) -> CreatedUser:
    """Create an active account that must change its password on first login.

    Without a chosen password (or when an invite is requested) a temporary
    password is generated and returned once.
    """
    first_name = (first_name or '').strip()
    last_name = (last_name or '').strip()
    normalized_email = (email or '').strip().lower()
    if not first_name or not last_name or not normalized_email or not (role or '').strip():
        raise ValueError('Missing required fields')
    if not send_invite and not password:
        raise ValueError('Missing required fields')
    if password and not send_invite and len(password.strip()) < MIN_PASSWORD_LENGTH:
        raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')

    resolved = resolve_role(db, role)
    existing = db.execute(select(User.id).where(func.lower(User.email) == normalized_email)).first()
    if existing:
        raise ValueError('User with this email already exists')

    temp_password = generate_temporary_password() if send_invite else None
    now = _now()
    user = User(
        email=normalized_email,
        first_name=first_name,
        last_name=last_name,
        full_name=f'{first_name} {last_name}',
        phone=_blank_to_none(phone),
        department=_blank_to_none(department),
        township=_blank_to_none(township),
        employee_number=next_employee_number(db),
        role_id=resolved.id,
        status=UserStatus.ACTIVE,
        is_approved=True,
        approval_date=now,
        password_hash=hash_password(temp_password or password),
        must_change_password=True,
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    db.flush()
    return CreatedUser(user=user, role=resolved, temp_password=temp_password)


def change_password(
    db: Session,
    *,
    user_id: uuid.UUID,
    current_password: str,
    new_password: str,
) -> User:
    user = get_user(db, user_id=user_id)
    if not verify_password(current_password, user.password_hash):
        raise ValueError('Current password is incorrect')
    if len(new_password.strip()) < 8:
        raise ValueError('New password must be at least 8 characters')
    if new_password == current_password:
        raise ValueError('New password must differ from the current password')

    user.password_hash = hash_password(new_password)
    user.must_change_password = False
    user.updated_at = _now()
    db.flush()
    return user
