"""Read-only dashboard listings.

Each endpoint is assembled from independent slices. Slices run concurrently
on worker threads, each with its own session, and the batch is raced against
a timeout. A slice that fails contributes its empty value; a batch that times
out contributes nothing but the error marker. Work that loses the race is not
cancelled server-side.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session, aliased, sessionmaker

from office_app.models import (
    Collection,
    CollectionMaterial,
    CollectionStatus,
    Material,
    PointsTransaction,
    User,
    UserStatus,
    WalletTransaction,
)

logger = logging.getLogger(__name__)

QUERY_TIMEOUT_ERROR = 'Query timeout'
CREDITED_STATUSES = (CollectionStatus.APPROVED, CollectionStatus.COMPLETED)


@dataclass(frozen=True)
class Slice:
    name: str
    query: Callable[[Session], Any]
    empty: Callable[[], Any] = list


@dataclass
class FanOutResult:
    values: dict[str, Any]
    error: str | None = None
    failures: dict[str, str] = field(default_factory=dict)


async def fan_out(session_factory: sessionmaker, slices: list[Slice], *, timeout: float) -> FanOutResult:
    def _run(slice_: Slice):
        with session_factory() as db:
            return slice_.query(db)

    batch = asyncio.gather(*(asyncio.to_thread(_run, s) for s in slices), return_exceptions=True)
    try:
        results = await asyncio.wait_for(batch, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning('listing batch timed out', extra={'slices': [s.name for s in slices], 'timeout': timeout})
        return FanOutResult(values={s.name: s.empty() for s in slices}, error=QUERY_TIMEOUT_ERROR)

    values: dict[str, Any] = {}
    failures: dict[str, str] = {}
    for slice_, result in zip(slices, results):
        if isinstance(result, Exception):
            logger.warning('listing slice failed', extra={'slice': slice_.name, 'error': str(result)})
            failures[slice_.name] = str(result)
            values[slice_.name] = slice_.empty()
        else:
            values[slice_.name] = result
    return FanOutResult(values=values, failures=failures)


def _num(value) -> float:
    return float(value or 0)


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def _uuid(value) -> str | None:
    return str(value) if value else None


# Analytics slices


def system_impact(db: Session) -> dict:
    row = db.execute(
        select(
            func.count(Collection.id),
            func.coalesce(func.sum(Collection.total_weight_kg), 0),
            func.coalesce(func.sum(Collection.computed_value), 0),
        ).where(Collection.status.in_(CREDITED_STATUSES))
    ).one()
    total_collections = db.execute(select(func.count(Collection.id))).scalar_one()
    pending = db.execute(
        select(func.count(Collection.id)).where(
            Collection.status.in_([CollectionStatus.PENDING, CollectionStatus.SUBMITTED])
        )
    ).scalar_one()
    return {
        'total_collections': int(total_collections),
        'approved_collections': int(row[0]),
        'pending_collections': int(pending),
        'total_weight_kg': _num(row[1]),
        'total_value': _num(row[2]),
    }


def material_performance(db: Session, *, limit: int) -> list[dict]:
    total_kg = func.coalesce(func.sum(CollectionMaterial.quantity), 0)
    rows = db.execute(
        select(
            Material.id,
            Material.name,
            total_kg,
            func.coalesce(func.sum(CollectionMaterial.quantity * CollectionMaterial.unit_price), 0),
            func.count(distinct(CollectionMaterial.collection_id)),
        )
        .join(CollectionMaterial, CollectionMaterial.material_id == Material.id)
        .join(Collection, Collection.id == CollectionMaterial.collection_id)
        .where(Collection.status.in_(CREDITED_STATUSES))
        .group_by(Material.id, Material.name)
        .order_by(total_kg.desc())
        .limit(limit)
    ).all()
    return [
        {
            'material_id': material_id,
            'material_name': name,
            'total_kg': _num(kg),
            'total_value': _num(value),
            'collection_count': int(count),
        }
        for material_id, name, kg, value, count in rows
    ]


def _performance_by(db: Session, user_column, *, limit: int) -> list[dict]:
    total_kg = func.coalesce(func.sum(Collection.total_weight_kg), 0)
    rows = db.execute(
        select(
            User.id,
            User.full_name,
            User.email,
            func.count(Collection.id),
            total_kg,
            func.coalesce(func.sum(Collection.computed_value), 0),
        )
        .join(Collection, user_column == User.id)
        .where(Collection.status.in_(CREDITED_STATUSES))
        .group_by(User.id, User.full_name, User.email)
        .order_by(total_kg.desc())
        .limit(limit)
    ).all()
    return [
        {
            'user_id': str(user_id),
            'name': full_name,
            'email': email,
            'collection_count': int(count),
            'total_kg': _num(kg),
            'total_value': _num(value),
        }
        for user_id, full_name, email, count, kg, value in rows
    ]


def collector_performance(db: Session, *, limit: int) -> list[dict]:
    return _performance_by(db, Collection.collector_id, limit=limit)


def customer_performance(db: Session, *, limit: int) -> list[dict]:
    return _performance_by(db, Collection.customer_id, limit=limit)


def active_users_count(db: Session) -> int:
    return int(db.execute(select(func.count(User.id)).where(User.status == UserStatus.ACTIVE)).scalar_one())


def analytics_slices(*, limit: int) -> list[Slice]:
    return [
        Slice('systemImpact', system_impact, empty=lambda: None),
        Slice('materialPerformance', lambda db: material_performance(db, limit=limit)),
        Slice('collectorPerformance', lambda db: collector_performance(db, limit=limit)),
        Slice('customerPerformance', lambda db: customer_performance(db, limit=limit)),
        Slice('activeUsersCount', active_users_count, empty=lambda: 0),
    ]


# Pickups


def list_pickups(db: Session, *, status: CollectionStatus | None, limit: int) -> list[dict]:
    customer = aliased(User)
    collector = aliased(User)
    stmt = (
        select(Collection, customer, collector)
        .outerjoin(customer, customer.id == Collection.customer_id)
        .outerjoin(collector, collector.id == Collection.collector_id)
        .order_by(Collection.created_at.desc())
        .limit(limit)
    )
    if status is not None:
        stmt = stmt.where(Collection.status == status)

    pickups = []
    for collection, customer_row, collector_row in db.execute(stmt).all():
        pickups.append(
            {
                'id': str(collection.id),
                'customer_id': _uuid(collection.customer_id),
                'collector_id': _uuid(collection.collector_id),
                'total_weight_kg': _num(collection.total_weight_kg),
                'computed_value': _num(collection.computed_value),
                'status': collection.status.value,
                'pickup_address': collection.pickup_address,
                'created_at': _iso(collection.created_at),
                'updated_at': _iso(collection.updated_at),
                'customer_name': customer_row.full_name if customer_row else None,
                'customer_email': customer_row.email if customer_row else None,
                'customer_phone': customer_row.phone if customer_row else None,
                'collector_name': collector_row.full_name if collector_row else None,
                'collector_email': collector_row.email if collector_row else None,
                'collector_phone': collector_row.phone if collector_row else None,
            }
        )
    return pickups


# Transactions


def list_points_transactions(db: Session, *, limit: int) -> list[dict]:
    rows = db.execute(
        select(PointsTransaction).order_by(PointsTransaction.created_at.desc()).limit(limit)
    ).scalars().all()
    return [
        {
            'id': str(row.id),
            'user_id': _uuid(row.user_id),
            'points': row.points,
            'transaction_type': row.transaction_type,
            'description': row.description,
            'created_at': _iso(row.created_at),
        }
        for row in rows
    ]


def list_monetary_transactions(db: Session, *, limit: int) -> list[dict]:
    rows = db.execute(
        select(WalletTransaction).order_by(WalletTransaction.created_at.desc()).limit(limit)
    ).scalars().all()
    return [
        {
            'id': str(row.id),
            'user_id': _uuid(row.user_id),
            'amount': _num(row.amount),
            'points': row.points,
            'transaction_type': row.transaction_type,
            'source_type': row.source_type,
            'source_id': _uuid(row.source_id),
            'reference_id': _uuid(row.reference_id),
            'description': row.description,
            'created_at': _iso(row.created_at),
        }
        for row in rows
    ]
