from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from office_app.models import (
    Collection,
    CollectionMaterial,
    CollectionStatus,
    GreenScholarTransaction,
    GreenScholarTransactionType,
    Material,
    User,
    WalletTransaction,
)


COLLECTION_SOURCE_TYPE = 'collection'
PET_NAME_MARKER = 'pet'
CENTS = Decimal('0.01')


@dataclass(frozen=True)
class PetContributionResult:
    created: bool
    amount: Decimal


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == 'postgresql':
        return pg_insert
    if dialect == 'sqlite':
        return sqlite_insert
    raise RuntimeError(f'Unsupported database dialect for idempotent insert: {dialect}')


def pet_weight_kg(db: Session, *, collection_id: uuid.UUID) -> Decimal:
    # Matches by name fragment, e.g. "PET Bottles", "PET Clear".
    rows = db.execute(
        select(CollectionMaterial.quantity, Material.name)
        .join(Material, Material.id == CollectionMaterial.material_id)
        .where(CollectionMaterial.collection_id == collection_id)
    ).all()
    total = Decimal('0')
    for quantity, name in rows:
        if PET_NAME_MARKER in (name or '').lower():
            total += Decimal(quantity or 0)
    return total


def record_pet_contribution(db: Session, *, collection_id: uuid.UUID, rate_per_kg: Decimal) -> PetContributionResult:
    """Credit the Green Scholar fund for the PET weight of a collection.

    At most one ``pet_contribution`` row exists per collection. The unique
    constraint on (source_type, source_id, transaction_type) arbitrates
    concurrent calls; the loser sees ``created=False``.
    """
    kg = pet_weight_kg(db, collection_id=collection_id)
    amount = (kg * rate_per_kg).quantize(CENTS, rounding=ROUND_HALF_UP)
    if amount <= 0:
        return PetContributionResult(created=False, amount=Decimal('0'))

    insert = _insert_for(db)
    stmt = (
        insert(GreenScholarTransaction)
        .values(
            id=uuid.uuid4(),
            transaction_type=GreenScholarTransactionType.PET_CONTRIBUTION,
            amount=amount,
            source_type=COLLECTION_SOURCE_TYPE,
            source_id=collection_id,
            description=f'PET contribution from collection {collection_id} @ C{rate_per_kg:.2f}/kg',
        )
        .on_conflict_do_nothing(index_elements=['source_type', 'source_id', 'transaction_type'])
    )
    result = db.execute(stmt)
    db.flush()
    return PetContributionResult(created=result.rowcount == 1, amount=amount)


def fund_summary(db: Session) -> dict:
    rows = db.execute(
        select(GreenScholarTransaction.transaction_type, func.coalesce(func.sum(GreenScholarTransaction.amount), 0))
        .group_by(GreenScholarTransaction.transaction_type)
    ).all()
    totals = {t.value: Decimal('0') for t in GreenScholarTransactionType}
    for transaction_type, total in rows:
        totals[transaction_type.value] = Decimal(total)

    balance = (
        totals[GreenScholarTransactionType.PET_CONTRIBUTION.value]
        + totals[GreenScholarTransactionType.DONATION.value]
        - totals[GreenScholarTransactionType.DISTRIBUTION.value]
        - totals[GreenScholarTransactionType.EXPENSE.value]
    )
    return {
        'petContributions': float(totals[GreenScholarTransactionType.PET_CONTRIBUTION.value]),
        'donations': float(totals[GreenScholarTransactionType.DONATION.value]),
        'distributions': float(totals[GreenScholarTransactionType.DISTRIBUTION.value]),
        'expenses': float(totals[GreenScholarTransactionType.EXPENSE.value]),
        'balance': float(balance),
    }


def scholar_summary(db: Session, *, user_id: uuid.UUID) -> dict:
    user = db.get(User, user_id)
    if not user:
        raise LookupError('Scholar not found')

    recycled_kg = db.execute(
        select(func.coalesce(func.sum(Collection.total_weight_kg), 0)).where(
            Collection.customer_id == user_id,
            Collection.status.in_([CollectionStatus.APPROVED, CollectionStatus.COMPLETED]),
        )
    ).scalar_one()
    points = db.execute(
        select(func.coalesce(func.sum(WalletTransaction.points), 0)).where(WalletTransaction.user_id == user_id)
    ).scalar_one()
    funds_received = db.execute(
        select(func.coalesce(func.sum(GreenScholarTransaction.amount), 0)).where(
            GreenScholarTransaction.beneficiary_id == user_id,
            GreenScholarTransaction.transaction_type == GreenScholarTransactionType.DISTRIBUTION,
        )
    ).scalar_one()
    return {
        'id': str(user.id),
        'name': user.full_name,
        'email': user.email,
        'totalRecycledKg': float(recycled_kg),
        'points': int(points),
        'fundsReceived': float(funds_received),
    }
