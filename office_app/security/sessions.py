from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from office_app.auth import Principal
from office_app.config import Settings
from office_app.models import Role, RoleName, User, UserStatus, WebSession


AUTH_EXEMPT_PATHS = {'/api/auth/login', '/api/admin/onboarding/submit', '/api/health', '/docs', '/openapi.json', '/robots.txt'}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _role_name(name: str | None) -> RoleName | None:
    if not name:
        return None
    try:
        return RoleName(name.lower())
    except ValueError:
        return None


def create_web_session(
    db: Session,
    user_id,
    *,
    ttl_minutes: int,
    ip: str | None,
    user_agent: str | None,
) -> str:
    token = secrets.token_urlsafe(48)
    db.add(
        WebSession(
            session_token=token,
            user_id=user_id,
            ip=ip,
            user_agent=user_agent,
            expires_at=_now() + timedelta(minutes=ttl_minutes),
        )
    )
    db.flush()
    return token


def revoke_web_session(db: Session, token: str) -> None:
    session = db.execute(select(WebSession).where(WebSession.session_token == token)).scalar_one_or_none()
    if not session or session.revoked_at is not None:
        return
    session.revoked_at = _now()


def principal_from_user(user: User, role_name: str | None) -> Principal:
    return Principal(
        id=user.id,
        email=user.email or '',
        full_name=user.full_name,
        role=_role_name(role_name),
        status=user.status,
        must_change_password=user.must_change_password,
    )


def load_principal_from_token(db: Session, token: str | None, *, ttl_minutes: int) -> Principal | None:
    if not token:
        return None

    row = db.execute(
        select(WebSession, User, Role.name)
        .join(User, User.id == WebSession.user_id)
        .outerjoin(Role, Role.id == User.role_id)
        .where(WebSession.session_token == token)
    ).one_or_none()
    if not row:
        return None

    web_session, user, role_name = row
    now = _now()
    if web_session.revoked_at is not None or _as_utc(web_session.expires_at) <= now:
        return None
    if user.status == UserStatus.SUSPENDED:
        return None

    web_session.last_seen_at = now
    web_session.expires_at = now + timedelta(minutes=ttl_minutes)
    return principal_from_user(user, role_name)


def install_auth_session_middleware(app: FastAPI, settings: Settings) -> None:
    def _load(token: str | None) -> Principal | None:
        with app.state.clients.privileged() as db:
            principal = load_principal_from_token(db, token, ttl_minutes=settings.session_ttl_minutes)
            db.commit()
            return principal

    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        token = request.cookies.get(settings.session_cookie_name)
        request.state.principal = await run_in_threadpool(_load, token)

        if request.url.path not in AUTH_EXEMPT_PATHS and request.state.principal is None:
            return JSONResponse({'success': False, 'error': 'Not authenticated'}, status_code=401)

        return await call_next(request)
