from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from apps.raffles.api.deps import as_http_error, get_current_admin, get_current_user, get_session
from apps.raffles.core import commissions as commission_service
from apps.raffles.core.errors import RaffleCoreError
from apps.raffles.db.models import Commission, User

router = APIRouter(prefix="/api/commissions", tags=["commissions"])


class PayRequest(BaseModel):
    payment_method: str | None = Field(default=None, max_length=32)
    payment_notes: str | None = None


class RevertRequest(BaseModel):
    reason: str = Field(min_length=1)


def _serialize(commission: Commission) -> dict:
    return {
        "id": commission.id,
        "user_id": commission.user_id,
        "source_user_id": commission.source_user_id,
        "raffle_id": commission.raffle_id,
        "level": commission.level,
        "amount": str(commission.amount),
        "status": commission.status,
        "paid_at": commission.paid_at.isoformat() if commission.paid_at else None,
        "revert_notes": commission.revert_notes,
    }


@router.get("/me")
async def my_commission_stats(
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    stats = await commission_service.get_commission_stats(session, user.id)
    rewards = await commission_service.get_pack_rewards(session, user.id)
    return {**stats.to_dict(), "pack_rewards": rewards.to_dict()}


@router.post("/{commission_id}/pay")
async def pay(
    commission_id: int,
    request: PayRequest,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(get_current_admin),
):
    try:
        commission = await commission_service.mark_commission_paid(
            session,
            commission_id,
            admin_id=admin.id,
            payment_method=request.payment_method,
            payment_notes=request.payment_notes,
        )
    except RaffleCoreError as exc:
        raise as_http_error(exc)
    return _serialize(commission)


@router.post("/{commission_id}/revert")
async def revert(
    commission_id: int,
    request: RevertRequest,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(get_current_admin),
):
    try:
        commission = await commission_service.revert_commission(
            session,
            commission_id,
            admin_id=admin.id,
            reason=request.reason,
        )
    except RaffleCoreError as exc:
        raise as_http_error(exc)
    return _serialize(commission)
