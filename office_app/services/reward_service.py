from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from office_app.models import Reward


UPDATABLE_TEXT_FIELDS = ('name', 'description', 'category', 'logo_url')
NULLABLE_URL_FIELDS = ('redeem_url', 'order_url')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def serialize_reward(reward: Reward) -> dict:
    return {
        'id': str(reward.id),
        'name': reward.name,
        'description': reward.description,
        'points_required': reward.points_required,
        'category': reward.category,
        'is_active': reward.is_active,
        'logo_url': reward.logo_url,
        'redeem_url': reward.redeem_url,
        'order_url': reward.order_url,
        'created_at': reward.created_at.isoformat() if reward.created_at else None,
        'updated_at': reward.updated_at.isoformat() if reward.updated_at else None,
    }


def _coerce_points(raw) -> int | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        return None


def list_rewards(db: Session, *, active_only: bool = False) -> list[Reward]:
    stmt = select(Reward)
    if active_only:
        stmt = stmt.where(Reward.is_active.is_(True))
    return db.execute(stmt.order_by(Reward.points_required.asc(), Reward.name.asc())).scalars().all()


def create_reward(db: Session, *, payload: dict) -> Reward:
    name = (payload.get('name') or '').strip()
    category = (payload.get('category') or '').strip()
    points_required = _coerce_points(payload.get('points_required'))
    if not name or not category or points_required is None:
        raise ValueError('Missing required fields')
    if points_required < 0:
        raise ValueError('points_required must not be negative')

    reward = Reward(
        name=name,
        description=payload.get('description') or '',
        points_required=points_required,
        category=category,
        is_active=payload.get('is_active', True) is not False,
        logo_url=payload.get('logo_url') or None,
        redeem_url=payload.get('redeem_url') or None,
        order_url=payload.get('order_url') or None,
    )
    db.add(reward)
    db.flush()
    return reward


def update_reward(db: Session, *, reward_id: uuid.UUID, payload: dict) -> Reward:
    changes: dict = {}
    for field in UPDATABLE_TEXT_FIELDS:
        if isinstance(payload.get(field), str):
            changes[field] = payload[field]
    points_required = _coerce_points(payload.get('points_required'))
    if points_required is not None:
        if points_required < 0:
            raise ValueError('points_required must not be negative')
        changes['points_required'] = points_required
    if isinstance(payload.get('is_active'), bool):
        changes['is_active'] = payload['is_active']
    for field in NULLABLE_URL_FIELDS:
        if field in payload:
            changes[field] = payload[field] or None

    if not changes:
        raise ValueError('No fields to update')

    reward = db.get(Reward, reward_id)
    if not reward:
        raise LookupError('Reward not found')
    for field, value in changes.items():
        setattr(reward, field, value)
    reward.updated_at = _now()
    db.flush()
    return reward


def delete_reward(db: Session, *, reward_id: uuid.UUID) -> None:
    reward = db.get(Reward, reward_id)
    if not reward:
        raise LookupError('Reward not found')
    db.delete(reward)
    db.flush()
