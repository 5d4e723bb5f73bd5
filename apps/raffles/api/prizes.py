from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from apps.raffles.api.deps import as_http_error, get_current_admin, get_current_user, get_session
from apps.raffles.core import prizes as prize_service
from apps.raffles.core import roulette as roulette_service
from apps.raffles.core.errors import RaffleCoreError
from apps.raffles.db.models import User

router = APIRouter(prefix="/api", tags=["roulette"])


class RedeemRequest(BaseModel):
    code: str = Field(min_length=1, max_length=32)


@router.get("/raffles/{raffle_id}/chances")
async def chances(
    raffle_id: int,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    return {"raffle_id": raffle_id, "chances": await roulette_service.get_chances(session, user.id, raffle_id)}


@router.post("/raffles/{raffle_id}/spin")
async def spin(
    raffle_id: int,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    try:
        result = await roulette_service.spin(session, user.id, raffle_id)
    except RaffleCoreError as exc:
        raise as_http_error(exc)
    return result.to_dict()


@router.post("/prizes/{user_prize_id}/redeem")
async def redeem(
    user_prize_id: int,
    request: RedeemRequest,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(get_current_admin),
):
    try:
        user_prize = await prize_service.redeem_prize(session, user_prize_id, request.code, admin_id=admin.id)
    except RaffleCoreError as exc:
        raise as_http_error(exc)
    return {"id": user_prize.id, "redeemed": user_prize.redeemed, "prize_name": user_prize.prize_name}
