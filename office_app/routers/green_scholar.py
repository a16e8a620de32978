from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from office_app.auth import ADMIN_ROLES, Principal, get_current_principal, require_role
from office_app.config import Settings
from office_app.dependencies import get_app_settings, get_client_ip, get_db, get_restricted_db
from office_app.models import RoleName
from office_app.security.csrf import verify_csrf
from office_app.services.audit_service import log_audit
from office_app.services.green_scholar_service import fund_summary, record_pet_contribution, scholar_summary

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/api/green-scholar', tags=['green-scholar'])
admin_access = require_role(RoleName.SUPER_ADMIN, RoleName.ADMIN, RoleName.ADMIN_MANAGER)


class PetContributionBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    collection_id: uuid.UUID = Field(alias='collectionId')


@router.post('/pet-bottles-contribution')
def pet_bottles_contribution(
    body: PetContributionBody,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    _: None = Depends(verify_csrf),
):
    result = record_pet_contribution(
        db,
        collection_id=body.collection_id,
        rate_per_kg=Decimal(str(settings.pet_rate_per_kg)),
    )
    if result.created:
        log_audit(
            db,
            actor_user_id=principal.id,
            action='PET_CONTRIBUTION_RECORDED',
            ip=get_client_ip(request),
            metadata={'collection_id': body.collection_id, 'amount': str(result.amount)},
        )
    db.commit()
    logger.info(
        'PET contribution requested',
        extra={'collection_id': str(body.collection_id), 'created': result.created},
    )
    return {'ok': True, 'created': result.created, 'amount': float(result.amount)}


@router.get('/fund')
def fund(_: Principal = Depends(get_current_principal), db: Session = Depends(get_restricted_db)):
    return fund_summary(db)


@router.get('/{user_id}/summary')
def summary(
    user_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_restricted_db),
):
    if principal.id != user_id and principal.role not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail='Insufficient role')
    try:
        return scholar_summary(db, user_id=user_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
