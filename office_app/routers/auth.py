from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from office_app.auth import Principal, get_authenticated_principal
from office_app.config import Settings
from office_app.dependencies import get_app_settings, get_client_ip, get_db
from office_app.models import Role, User, UserStatus
from office_app.security.csrf import verify_csrf
from office_app.security.passwords import verify_password
from office_app.security.sessions import create_web_session, revoke_web_session
from office_app.services.audit_service import log_audit, log_auth_event
from office_app.services.user_service import change_password, serialize_user

router = APIRouter(prefix='/api/auth', tags=['auth'])

INVALID_CREDENTIALS = 'Invalid email or password'


class LoginBody(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class ChangePasswordBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(alias='currentPassword')
    new_password: str = Field(alias='newPassword')


def _principal_payload(principal: Principal) -> dict:
    return {
        'id': str(principal.id),
        'email': principal.email,
        'full_name': principal.full_name,
        'role': principal.role.value if principal.role else None,
        'status': principal.status.value,
        'must_change_password': principal.must_change_password,
    }


@router.post('/login')
def login(
    body: LoginBody,
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    _: None = Depends(verify_csrf),
):
    email = body.email.strip().lower()
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')

    row = db.execute(
        select(User, Role.name).outerjoin(Role, Role.id == User.role_id).where(func.lower(User.email) == email)
    ).one_or_none()

    failure_reason = None
    if not row:
        failure_reason = 'UNKNOWN_EMAIL'
    elif row[0].status != UserStatus.ACTIVE:
        failure_reason = 'INACTIVE_USER'
    elif not verify_password(body.password, row[0].password_hash):
        failure_reason = 'BAD_PASSWORD'

    if failure_reason:
        log_auth_event(
            db,
            attempted_email=email,
            success=False,
            failure_reason=failure_reason,
            user_id=row[0].id if row else None,
            ip=ip,
            user_agent=user_agent,
        )
        db.commit()
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)

    user, role_name = row
    token = create_web_session(db, user.id, ttl_minutes=settings.session_ttl_minutes, ip=ip, user_agent=user_agent)
    log_auth_event(db, attempted_email=email, success=True, user_id=user.id, ip=ip, user_agent=user_agent)
    log_audit(db, actor_user_id=user.id, action='AUTH_LOGIN', ip=ip, metadata={'email': email})
    db.commit()

    response = JSONResponse(
        {
            'success': True,
            'user': serialize_user(user, role_name),
            'mustChangePassword': user.must_change_password,
        }
    )
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )
    return response


@router.post('/logout')
def logout(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    _: None = Depends(verify_csrf),
):
    principal = getattr(request.state, 'principal', None)
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        revoke_web_session(db, token)

    log_audit(
        db,
        actor_user_id=principal.id if principal else None,
        action='AUTH_LOGOUT',
        ip=get_client_ip(request),
    )
    db.commit()

    response = JSONResponse({'success': True})
    response.delete_cookie(settings.session_cookie_name)
    return response


@router.get('/me')
def me(principal: Principal = Depends(get_authenticated_principal)):
    return {'user': _principal_payload(principal)}


@router.post('/change-password')
def change_password_route(
    body: ChangePasswordBody,
    request: Request,
    principal: Principal = Depends(get_authenticated_principal),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        change_password(
            db,
            user_id=principal.id,
            current_password=body.current_password,
            new_password=body.new_password,
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    log_audit(db, actor_user_id=principal.id, action='PASSWORD_CHANGED', ip=get_client_ip(request))
    db.commit()
    return {'success': True}
