from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.orm import Session

from office_app.models import User, UserWallet, WalletTransaction, WithdrawalRequest, WithdrawalStatus


WITHDRAWAL_SOURCE_TYPE = 'withdrawal'
PROCESSED_STATUSES = {WithdrawalStatus.APPROVED, WithdrawalStatus.PROCESSING, WithdrawalStatus.COMPLETED}
MISSING_WALLET_WARNING = 'Withdrawal approved but wallet balance not updated'


@dataclass(frozen=True)
class WithdrawalUpdate:
    withdrawal: WithdrawalRequest
    new_balance: Decimal | None = None
    warning: str | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_withdrawal_status(raw: str | None) -> WithdrawalStatus:
    try:
        return WithdrawalStatus((raw or '').strip().lower())
    except ValueError as exc:
        allowed = ', '.join(s.value for s in WithdrawalStatus)
        raise ValueError(f'Invalid status. Allowed: {allowed}') from exc


def serialize_withdrawal(withdrawal: WithdrawalRequest, *, user: User | None = None) -> dict:
    payload = {
        'id': str(withdrawal.id),
        'user_id': str(withdrawal.user_id),
        'amount': float(withdrawal.amount),
        'status': withdrawal.status.value,
        'payout_method': withdrawal.payout_method,
        'notes': withdrawal.notes,
        'processed_at': withdrawal.processed_at.isoformat() if withdrawal.processed_at else None,
        'created_at': withdrawal.created_at.isoformat() if withdrawal.created_at else None,
        'updated_at': withdrawal.updated_at.isoformat() if withdrawal.updated_at else None,
    }
    if user is not None:
        payload['user_name'] = user.full_name
        payload['user_email'] = user.email
    return payload


def list_withdrawals(db: Session, *, status: str | None = None, limit: int = 500) -> list[dict]:
    stmt = select(WithdrawalRequest, User).outerjoin(User, User.id == WithdrawalRequest.user_id)
    if status and status != 'all':
        stmt = stmt.where(WithdrawalRequest.status == parse_withdrawal_status(status))
    rows = db.execute(stmt.order_by(WithdrawalRequest.created_at.desc()).limit(limit)).all()
    return [serialize_withdrawal(withdrawal, user=user) for withdrawal, user in rows]


def linked_wallet_transactions_clause(withdrawal_id: uuid.UUID):
    # Ledger rows have referenced withdrawals through each of these columns.
    return or_(
        WalletTransaction.source_id == withdrawal_id,
        and_(
            WalletTransaction.source_id == withdrawal_id,
            WalletTransaction.source_type == WITHDRAWAL_SOURCE_TYPE,
        ),
        WalletTransaction.reference_id == withdrawal_id,
    )


def update_withdrawal_status(
    db: Session,
    *,
    withdrawal_id: uuid.UUID,
    status: WithdrawalStatus,
    admin_notes: str | None,
    payout_method: str | None,
) -> WithdrawalUpdate:
    withdrawal = db.get(WithdrawalRequest, withdrawal_id)
    if not withdrawal:
        raise LookupError('Withdrawal not found')

    previous_status = withdrawal.status
    now = _now()
    withdrawal.status = status
    withdrawal.notes = admin_notes or None
    withdrawal.updated_at = now
    if status in PROCESSED_STATUSES:
        withdrawal.processed_at = now
    if payout_method:
        withdrawal.payout_method = payout_method

    if status != WithdrawalStatus.APPROVED or previous_status == WithdrawalStatus.APPROVED:
        db.flush()
        return WithdrawalUpdate(withdrawal=withdrawal)

    wallet = db.execute(
        select(UserWallet).where(UserWallet.user_id == withdrawal.user_id).with_for_update()
    ).scalar_one_or_none()
    if wallet is None:
        db.flush()
        return WithdrawalUpdate(withdrawal=withdrawal, warning=MISSING_WALLET_WARNING)

    amount = Decimal(withdrawal.amount)
    if Decimal(wallet.balance) < amount:
        raise ValueError('Insufficient wallet balance for this withdrawal')

    wallet.balance = Decimal(wallet.balance) - amount
    wallet.updated_at = now
    db.add(
        WalletTransaction(
            user_id=withdrawal.user_id,
            amount=-amount,
            transaction_type='withdrawal',
            source_type=WITHDRAWAL_SOURCE_TYPE,
            source_id=withdrawal.id,
            description=f'Withdrawal {withdrawal.id} approved',
        )
    )
    db.flush()
    return WithdrawalUpdate(withdrawal=withdrawal, new_balance=wallet.balance)


def delete_withdrawal(db: Session, *, withdrawal_id: uuid.UUID) -> int:
    """Remove a withdrawal and every ledger row that points at it.

    Runs in the caller's transaction; returns how many wallet transactions
    were removed.
    """
    withdrawal = db.get(WithdrawalRequest, withdrawal_id)
    if not withdrawal:
        raise LookupError('Withdrawal not found')

    result = db.execute(delete(WalletTransaction).where(linked_wallet_transactions_clause(withdrawal_id)))
    db.delete(withdrawal)
    db.flush()
    return result.rowcount or 0
