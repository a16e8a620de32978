from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import delete, inspect, select
from sqlalchemy.orm import Session

from office_app.models import (
    Collection,
    CollectionMaterial,
    CollectionStatus,
    DeletedTransaction,
    GreenScholarTransaction,
    GreenScholarTransactionType,
    WalletTransaction,
)
from office_app.services.green_scholar_service import COLLECTION_SOURCE_TYPE


# Statuses an administrator may set from the review screen.
REVIEWABLE_STATUSES = (
    CollectionStatus.APPROVED,
    CollectionStatus.REJECTED,
    CollectionStatus.PENDING,
    CollectionStatus.SUBMITTED,
)
DEFAULT_DELETION_REASON = 'Deleted by super admin'


class RestoreConflictError(ValueError):
    pass


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _json_value(value):
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, 'value'):
        return value.value
    return value


def row_snapshot(row) -> dict:
    """Column-by-column copy of a mapped row, driven by the mapper.

    Adding a column to the model adds it to every archive written after that.
    """
    mapper = inspect(row).mapper
    return {attr.key: _json_value(getattr(row, attr.key)) for attr in mapper.column_attrs}


def _restore_value(column, raw):
    if raw is None:
        return None
    python_type = column.type.python_type
    if python_type is uuid.UUID:
        return uuid.UUID(raw)
    if python_type is Decimal:
        return Decimal(raw)
    if python_type is datetime:
        return datetime.fromisoformat(raw)
    if isinstance(python_type, type) and issubclass(python_type, CollectionStatus):
        return CollectionStatus(raw)
    return raw


def _from_snapshot(model, data: dict):
    mapper = inspect(model)
    values = {}
    for attr in mapper.column_attrs:
        if attr.key not in data:
            continue
        values[attr.key] = _restore_value(attr.columns[0], data[attr.key])
    return model(**values)


def serialize_collection(collection: Collection) -> dict:
    return {
        'id': str(collection.id),
        'customer_id': str(collection.customer_id) if collection.customer_id else None,
        'collector_id': str(collection.collector_id) if collection.collector_id else None,
        'pickup_address': collection.pickup_address,
        'total_weight_kg': float(collection.total_weight_kg or 0),
        'computed_value': float(collection.computed_value or 0),
        'status': collection.status.value,
        'admin_notes': collection.admin_notes,
        'created_at': collection.created_at.isoformat() if collection.created_at else None,
        'updated_at': collection.updated_at.isoformat() if collection.updated_at else None,
    }


def parse_review_status(raw: str | None) -> CollectionStatus:
    try:
        parsed = CollectionStatus((raw or '').strip().lower())
    except ValueError as exc:
        raise ValueError('Invalid status') from exc
    if parsed not in REVIEWABLE_STATUSES:
        raise ValueError('Invalid status')
    return parsed


def update_collection_status(
    db: Session,
    *,
    collection_id: uuid.UUID,
    status: CollectionStatus,
    admin_notes: str | None,
) -> Collection:
    collection = db.get(Collection, collection_id)
    if not collection:
        raise LookupError('Collection not found')
    collection.status = status
    collection.admin_notes = admin_notes or None
    collection.updated_at = _now()
    db.flush()
    return collection


def soft_delete_collection(
    db: Session,
    *,
    collection_id: uuid.UUID,
    deleted_by: uuid.UUID | None,
    reason: str | None,
) -> DeletedTransaction:
    """Archive a collection into ``deleted_transactions`` and remove it.

    Archive and removal happen in the caller's transaction: either both are
    committed or neither is.
    """
    collection = db.get(Collection, collection_id)
    if not collection:
        raise LookupError('Collection not found')

    lines = db.execute(
        select(CollectionMaterial)
        .where(CollectionMaterial.collection_id == collection_id)
        .order_by(CollectionMaterial.id.asc())
    ).scalars().all()

    archived = DeletedTransaction(
        original_collection_id=collection_id,
        original_data={
            'collection': row_snapshot(collection),
            'materials': [row_snapshot(line) for line in lines],
        },
        deleted_by=deleted_by,
        deletion_reason=reason or DEFAULT_DELETION_REASON,
    )
    db.add(archived)

    db.execute(delete(CollectionMaterial).where(CollectionMaterial.collection_id == collection_id))
    db.execute(delete(WalletTransaction).where(WalletTransaction.source_id == collection_id))
    db.execute(
        delete(GreenScholarTransaction).where(
            GreenScholarTransaction.source_type == COLLECTION_SOURCE_TYPE,
            GreenScholarTransaction.source_id == collection_id,
            GreenScholarTransaction.transaction_type == GreenScholarTransactionType.PET_CONTRIBUTION,
        )
    )
    db.delete(collection)
    db.flush()
    return archived


def list_deleted_transactions(db: Session, *, limit: int = 200) -> list[dict]:
    rows = db.execute(
        select(DeletedTransaction).order_by(DeletedTransaction.deleted_at.desc()).limit(limit)
    ).scalars().all()
    return [
        {
            'id': str(row.id),
            'original_collection_id': str(row.original_collection_id),
            'deleted_by': str(row.deleted_by) if row.deleted_by else None,
            'deletion_reason': row.deletion_reason,
            'deleted_at': row.deleted_at.isoformat() if row.deleted_at else None,
            'original_data': row.original_data,
        }
        for row in rows
    ]


def restore_deleted_collection(db: Session, *, deleted_transaction_id: uuid.UUID) -> Collection:
    archived = db.get(DeletedTransaction, deleted_transaction_id)
    if not archived:
        raise LookupError('Deleted transaction not found')
    if db.get(Collection, archived.original_collection_id) is not None:
        raise RestoreConflictError('A collection with this id already exists')

    data = archived.original_data or {}
    collection = _from_snapshot(Collection, data.get('collection') or {})
    collection.updated_at = _now()
    db.add(collection)
    db.flush()
    for line_data in data.get('materials') or []:
        line = _from_snapshot(CollectionMaterial, line_data)
        line.id = None
        db.add(line)

    db.delete(archived)
    db.flush()
    return collection
