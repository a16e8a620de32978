from __future__ import annotations

import uuid

from sqlalchemy.orm import Session

from office_app.models import AuditLog, AuthEvent


def log_auth_event(
    db: Session,
    *,
    attempted_email: str,
    success: bool,
    ip: str | None,
    user_agent: str | None,
    user_id: uuid.UUID | None = None,
    failure_reason: str | None = None,
) -> None:
    db.add(
        AuthEvent(
            attempted_email=attempted_email,
            success=success,
            failure_reason=failure_reason,
            user_id=user_id,
            ip=ip,
            user_agent=user_agent,
        )
    )


def log_audit(
    db: Session,
    *,
    actor_user_id: uuid.UUID | None,
    action: str,
    ip: str | None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            actor_user_id=actor_user_id,
            action=action,
            ip=ip,
            meta=_jsonable(metadata or {}),
        )
    )


def _jsonable(metadata: dict) -> dict:
    return {key: str(value) if isinstance(value, uuid.UUID) else value for key, value in metadata.items()}
