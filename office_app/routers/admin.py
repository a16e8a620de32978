from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from office_app.auth import Principal, require_role
from office_app.config import Settings
from office_app.db import ServiceClients
from office_app.dependencies import get_app_settings, get_client_ip, get_clients, get_db, get_restricted_db
from office_app.models import CollectionStatus, RoleName
from office_app.security.csrf import verify_csrf
from office_app.services import listing_service
from office_app.services.audit_service import log_audit
from office_app.services.collection_service import (
    RestoreConflictError,
    list_deleted_transactions,
    parse_review_status,
    restore_deleted_collection,
    serialize_collection,
    soft_delete_collection,
    update_collection_status,
)
from office_app.services.green_scholar_service import record_pet_contribution
from office_app.services.reward_service import (
    create_reward,
    delete_reward,
    list_rewards,
    serialize_reward,
    update_reward,
)
from office_app.services.role_service import RoleNotFoundError
from office_app.services.user_service import (
    OnboardingConflictError,
    approve_user,
    create_staff_user,
    force_role,
    list_pending_applicants,
    list_users,
    reset_user_password,
    serialize_user,
    submit_onboarding,
    update_user_role,
)
from office_app.services.withdrawal_service import (
    delete_withdrawal,
    list_withdrawals,
    parse_withdrawal_status,
    serialize_withdrawal,
    update_withdrawal_status,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/api/admin', tags=['admin'])
admin_access = require_role(RoleName.SUPER_ADMIN, RoleName.ADMIN, RoleName.ADMIN_MANAGER)
super_admin_access = require_role(RoleName.SUPER_ADMIN)

ANALYTICS_CACHE_CONTROL = 'public, s-maxage=30, stale-while-revalidate=60'
LISTING_CACHE_CONTROL = 'public, s-maxage=20, stale-while-revalidate=40'


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ApproveUserBody(CamelModel):
    user_id: uuid.UUID = Field(alias='userId')
    reason: str | None = None


class ForceRoleBody(CamelModel):
    user_id: uuid.UUID = Field(alias='userId')
    role: str | None = None
    status: str | None = None


class UpdateUserRoleBody(CamelModel):
    user_id: uuid.UUID = Field(alias='userId')
    role: str = Field(min_length=1)


class ResetPasswordBody(CamelModel):
    user_id: uuid.UUID = Field(alias='userId')


class OnboardingBody(CamelModel):
    user_id: uuid.UUID | None = Field(default=None, alias='userId')
    email: str | None = None
    first_name: str | None = Field(default=None, alias='firstName')
    last_name: str | None = Field(default=None, alias='lastName')
    date_of_birth: date | None = Field(default=None, alias='dateOfBirth')
    phone: str | None = None
    address_line1: str | None = Field(default=None, alias='addressLine1')
    address_line2: str | None = Field(default=None, alias='addressLine2')
    township: str | None = Field(default=None, alias='townshipId')
    suburb: str | None = None
    city: str | None = None
    postal_code: str | None = Field(default=None, alias='postalCode')


class CreateUserBody(CamelModel):
    first_name: str | None = Field(default=None, alias='firstName')
    last_name: str | None = Field(default=None, alias='lastName')
    email: str | None = None
    phone: str | None = None
    role: str | None = None
    department: str | None = None
    township: str | None = None
    password: str | None = None
    send_invite: bool = Field(default=False, alias='sendInvite')


class CollectionStatusBody(BaseModel):
    status: str | None = None
    admin_notes: str | None = None


class DeleteCollectionBody(CamelModel):
    collection_id: uuid.UUID = Field(alias='collectionId')
    reason: str | None = None


class DeleteWithdrawalBody(CamelModel):
    withdrawal_id: uuid.UUID = Field(alias='withdrawalId')


class WithdrawalStatusBody(CamelModel):
    status: str | None = None
    admin_notes: str | None = Field(default=None, alias='adminNotes')
    payout_method: str | None = Field(default=None, alias='payoutMethod')


def _bad_request(exc: Exception) -> HTTPException:
    return HTTPException(status_code=400, detail=str(exc))


def _not_found(exc: LookupError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(exc.args[0]) if exc.args else 'Not found')


# Users


@router.get('/users')
def users_list(
    role: str | None = None,
    status: str | None = None,
    search: str | None = None,
    _: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    try:
        users = list_users(db, role=role, status=status, search=search)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return {'users': users, 'count': len(users)}


@router.get('/pending-applicants')
def pending_applicants(_: Principal = Depends(admin_access), db: Session = Depends(get_db)):
    applicants = list_pending_applicants(db)
    return {'applicants': applicants, 'count': len(applicants)}


@router.post('/approve-user')
def approve_user_route(
    body: ApproveUserBody,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        result = approve_user(db, user_id=body.user_id)
    except LookupError as exc:
        raise _not_found(exc) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='USER_APPROVED',
        ip=get_client_ip(request),
        metadata={'user_id': body.user_id, 'reason': body.reason},
    )
    db.commit()

    if result.temp_password is None:
        return {'success': True, 'warning': result.warning}
    return {'success': True, 'tempPassword': result.temp_password}


@router.post('/force-role')
def force_role_route(
    body: ForceRoleBody,
    request: Request,
    principal: Principal = Depends(super_admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        user, role = force_role(db, user_id=body.user_id, role=body.role, status=body.status)
    except LookupError as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise _bad_request(exc) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='USER_ROLE_FORCED',
        ip=get_client_ip(request),
        metadata={'user_id': user.id, 'role': role.name, 'status': user.status.value},
    )
    db.commit()
    return {'success': True}


@router.post('/update-user-role')
def update_user_role_route(
    body: UpdateUserRoleBody,
    request: Request,
    principal: Principal = Depends(super_admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        user, role = update_user_role(db, user_id=body.user_id, role=body.role)
    except RoleNotFoundError as exc:
        db.rollback()
        raise _bad_request(exc) from exc
    except LookupError as exc:
        raise _not_found(exc) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='USER_ROLE_UPDATED',
        ip=get_client_ip(request),
        metadata={'user_id': user.id, 'role_id': role.id, 'role': role.name},
    )
    db.commit()
    return {
        'success': True,
        'message': f'User role updated to {role.name} successfully',
        'data': {'role_id': role.id, 'role': role.name},
    }


@router.post('/reset-user-password')
def reset_user_password_route(
    body: ResetPasswordBody,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        temp_password = reset_user_password(db, user_id=body.user_id)
    except LookupError as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise _bad_request(exc) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='USER_PASSWORD_RESET',
        ip=get_client_ip(request),
        metadata={'user_id': body.user_id},
    )
    db.commit()
    return {'success': True, 'tempPassword': temp_password}


@router.post('/create-user')
def create_user_route(
    body: CreateUserBody,
    request: Request,
    principal: Principal = Depends(super_admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        created = create_staff_user(
            db,
            first_name=body.first_name,
            last_name=body.last_name,
            email=body.email,
            role=body.role,
            phone=body.phone,
            department=body.department,
            township=body.township,
            password=body.password,
            send_invite=body.send_invite,
        )
    except ValueError as exc:
        raise _bad_request(exc) from exc
    user = created.user
    log_audit(
        db,
        actor_user_id=principal.id,
        action='USER_CREATED',
        ip=get_client_ip(request),
        metadata={'user_id': user.id, 'role': created.role.name, 'employee_number': user.employee_number},
    )
    db.commit()

    data = {
        'user_id': str(user.id),
        'employee_number': user.employee_number,
        'user': serialize_user(user, created.role.name),
        'message': 'User created successfully',
    }
    if created.temp_password is not None:
        data['tempPassword'] = created.temp_password
    return {'success': True, 'data': data}


# Onboarding is submitted by applicants who cannot sign in until approved.
@router.post('/onboarding/submit')
def onboarding_submit(
    body: OnboardingBody,
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    if body.user_id is None or not (body.email or '').strip():
        raise HTTPException(status_code=400, detail='Missing userId or email')
    try:
        user = submit_onboarding(
            db,
            user_id=body.user_id,
            email=body.email,
            first_name=body.first_name,
            last_name=body.last_name,
            date_of_birth=body.date_of_birth,
            phone=body.phone,
            address_line1=body.address_line1,
            address_line2=body.address_line2,
            township=body.township,
            suburb=body.suburb,
            city=body.city,
            postal_code=body.postal_code,
        )
    except OnboardingConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise _bad_request(exc) from exc
    log_audit(
        db,
        actor_user_id=user.id,
        action='ONBOARDING_SUBMITTED',
        ip=get_client_ip(request),
        metadata={'user_id': user.id},
    )
    db.commit()
    return {'success': True}


# Collections


def _contribute_pet_best_effort(clients: ServiceClients, collection_id: uuid.UUID, rate_per_kg: Decimal) -> None:
    try:
        with clients.privileged() as db:
            result = record_pet_contribution(db, collection_id=collection_id, rate_per_kg=rate_per_kg)
            db.commit()
    except Exception:
        logger.warning('PET contribution failed after approval', exc_info=True, extra={'collection_id': str(collection_id)})
        return
    logger.info(
        'PET contribution processed',
        extra={'collection_id': str(collection_id), 'created': result.created, 'amount': str(result.amount)},
    )


@router.patch('/collections/{collection_id}')
def update_collection_route(
    collection_id: uuid.UUID,
    body: CollectionStatusBody,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    clients: ServiceClients = Depends(get_clients),
    settings: Settings = Depends(get_app_settings),
    _: None = Depends(verify_csrf),
):
    try:
        status = parse_review_status(body.status)
        collection = update_collection_status(db, collection_id=collection_id, status=status, admin_notes=body.admin_notes)
    except LookupError as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise _bad_request(exc) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='COLLECTION_STATUS_UPDATED',
        ip=get_client_ip(request),
        metadata={'collection_id': collection_id, 'status': status.value},
    )
    db.commit()
    payload = serialize_collection(collection)

    if status == CollectionStatus.APPROVED:
        _contribute_pet_best_effort(clients, collection_id, Decimal(str(settings.pet_rate_per_kg)))

    return {'collection': payload, 'success': True}


@router.post('/delete-collection')
def delete_collection_route(
    body: DeleteCollectionBody,
    request: Request,
    principal: Principal = Depends(super_admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        archived = soft_delete_collection(
            db,
            collection_id=body.collection_id,
            deleted_by=principal.id,
            reason=body.reason,
        )
    except LookupError as exc:
        raise _not_found(exc) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='COLLECTION_SOFT_DELETED',
        ip=get_client_ip(request),
        metadata={'collection_id': body.collection_id, 'deleted_transaction_id': archived.id},
    )
    db.commit()
    return {'ok': True, 'deletedTransactionId': str(archived.id)}


@router.get('/deleted-transactions')
def deleted_transactions_list(_: Principal = Depends(super_admin_access), db: Session = Depends(get_db)):
    rows = list_deleted_transactions(db)
    return {'deletedTransactions': rows, 'count': len(rows)}


@router.post('/deleted-transactions/{deleted_transaction_id}/restore')
def restore_deleted_transaction_route(
    deleted_transaction_id: uuid.UUID,
    request: Request,
    principal: Principal = Depends(super_admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        collection = restore_deleted_collection(db, deleted_transaction_id=deleted_transaction_id)
    except LookupError as exc:
        raise _not_found(exc) from exc
    except RestoreConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='COLLECTION_RESTORED',
        ip=get_client_ip(request),
        metadata={'collection_id': collection.id, 'deleted_transaction_id': deleted_transaction_id},
    )
    db.commit()
    return {'success': True, 'collection': serialize_collection(collection)}


# Withdrawals


@router.get('/withdrawals')
def withdrawals_list(
    status: str | None = None,
    _: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    try:
        withdrawals = list_withdrawals(db, status=status)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return {'withdrawals': withdrawals, 'count': len(withdrawals)}


@router.patch('/withdrawals/{withdrawal_id}')
def update_withdrawal_route(
    withdrawal_id: uuid.UUID,
    body: WithdrawalStatusBody,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    if not body.status:
        raise HTTPException(status_code=400, detail='Status is required')
    try:
        update = update_withdrawal_status(
            db,
            withdrawal_id=withdrawal_id,
            status=parse_withdrawal_status(body.status),
            admin_notes=body.admin_notes,
            payout_method=body.payout_method,
        )
    except LookupError as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        db.rollback()
        raise _bad_request(exc) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='WITHDRAWAL_STATUS_UPDATED',
        ip=get_client_ip(request),
        metadata={'withdrawal_id': withdrawal_id, 'status': update.withdrawal.status.value},
    )
    db.commit()

    payload: dict = {'success': True, 'withdrawal': serialize_withdrawal(update.withdrawal)}
    if update.new_balance is not None:
        payload['newBalance'] = float(update.new_balance)
    if update.warning:
        payload['warning'] = update.warning
    return payload


@router.post('/delete-withdrawal')
def delete_withdrawal_route(
    body: DeleteWithdrawalBody,
    request: Request,
    principal: Principal = Depends(super_admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        removed = delete_withdrawal(db, withdrawal_id=body.withdrawal_id)
    except LookupError as exc:
        raise _not_found(exc) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='WITHDRAWAL_DELETED',
        ip=get_client_ip(request),
        metadata={'withdrawal_id': body.withdrawal_id, 'removed_transactions': removed},
    )
    db.commit()
    return {'ok': True, 'removedTransactions': removed}


# Rewards


@router.get('/rewards')
def rewards_list(
    active: bool | None = None,
    _: Principal = Depends(admin_access),
    db: Session = Depends(get_restricted_db),
):
    rewards = list_rewards(db, active_only=bool(active))
    return {'data': [serialize_reward(reward) for reward in rewards]}


@router.post('/rewards')
async def rewards_create(
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    payload = await _json_object(request)
    try:
        reward = create_reward(db, payload=payload)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='REWARD_CREATED',
        ip=get_client_ip(request),
        metadata={'reward_id': reward.id, 'name': reward.name},
    )
    db.commit()
    return {'data': serialize_reward(reward)}


@router.patch('/rewards/{reward_id}')
async def rewards_update(
    reward_id: uuid.UUID,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    payload = await _json_object(request)
    try:
        reward = update_reward(db, reward_id=reward_id, payload=payload)
    except LookupError as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise _bad_request(exc) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='REWARD_UPDATED',
        ip=get_client_ip(request),
        metadata={'reward_id': reward_id, 'fields': sorted(payload)},
    )
    db.commit()
    return {'data': serialize_reward(reward)}


@router.delete('/rewards/{reward_id}')
def rewards_delete(
    reward_id: uuid.UUID,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        delete_reward(db, reward_id=reward_id)
    except LookupError as exc:
        raise _not_found(exc) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='REWARD_DELETED',
        ip=get_client_ip(request),
        metadata={'reward_id': reward_id},
    )
    db.commit()
    return {'ok': True}


async def _json_object(request: Request) -> dict:
    try:
        payload = await request.json()
    except ValueError:
        payload = {}
    return payload if isinstance(payload, dict) else {}


# Listings


@router.get('/analytics')
async def analytics(
    _: Principal = Depends(admin_access),
    clients: ServiceClients = Depends(get_clients),
    settings: Settings = Depends(get_app_settings),
):
    result = await listing_service.fan_out(
        clients.privileged,
        listing_service.analytics_slices(limit=settings.analytics_limit),
        timeout=settings.query_timeout_seconds,
    )
    if result.error:
        return {**result.values, 'error': result.error}
    if result.failures:
        return result.values
    return JSONResponse(result.values, headers={'Cache-Control': ANALYTICS_CACHE_CONTROL})


@router.get('/pickups')
async def pickups(
    status: str | None = None,
    _: Principal = Depends(admin_access),
    clients: ServiceClients = Depends(get_clients),
    settings: Settings = Depends(get_app_settings),
):
    status_filter = None
    if status and status != 'all':
        try:
            status_filter = CollectionStatus(status.strip().lower())
        except ValueError as exc:
            raise HTTPException(status_code=400, detail='Invalid status') from exc

    limit = settings.pickups_limit
    result = await listing_service.fan_out(
        clients.privileged,
        [listing_service.Slice('pickups', lambda db: listing_service.list_pickups(db, status=status_filter, limit=limit))],
        timeout=settings.query_timeout_seconds,
    )
    rows = result.values['pickups']
    error = result.error or result.failures.get('pickups')
    if error:
        return {'pickups': [], 'count': 0, 'error': error}
    return JSONResponse({'pickups': rows, 'count': len(rows)}, headers={'Cache-Control': LISTING_CACHE_CONTROL})


@router.get('/transactions')
async def transactions(
    _: Principal = Depends(admin_access),
    clients: ServiceClients = Depends(get_clients),
    settings: Settings = Depends(get_app_settings),
):
    limit = settings.transactions_limit
    result = await listing_service.fan_out(
        clients.privileged,
        [
            listing_service.Slice(
                'pointsTransactions', lambda db: listing_service.list_points_transactions(db, limit=limit)
            ),
            listing_service.Slice(
                'monetaryTransactions', lambda db: listing_service.list_monetary_transactions(db, limit=limit)
            ),
        ],
        timeout=settings.query_timeout_seconds,
    )
    if result.error:
        return {**result.values, 'error': result.error}
    points_rows = result.values['pointsTransactions']
    monetary_rows = result.values['monetaryTransactions']
    payload = {
        'pointsTransactions': points_rows,
        'monetaryTransactions': monetary_rows,
        'count': len(points_rows) + len(monetary_rows),
    }
    if result.failures:
        return payload
    return JSONResponse(payload, headers={'Cache-Control': LISTING_CACHE_CONTROL})
