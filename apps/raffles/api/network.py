from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from apps.raffles.api.deps import as_http_error, get_current_user, get_session
from apps.raffles.core import network as network_service
from apps.raffles.core.errors import RaffleCoreError
from apps.raffles.core.tickets import transfer_tickets
from apps.raffles.db.models import User

router = APIRouter(prefix="/api", tags=["network"])


class TransferRequest(BaseModel):
    ticket_ids: list[int] = Field(min_length=1)
    recipient_email: str = Field(min_length=3)


@router.get("/network/me")
async def my_network(
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    stats = await network_service.get_network_stats(session, user.id)
    return stats.to_dict()


@router.get("/leaderboard")
async def leaderboard(
    by: Literal["direct_sales", "network_sales"] = "direct_sales",
    limit: int = Query(default=10, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    entries = await network_service.get_leaderboard(session, by=by, limit=limit)
    return [entry.to_dict() for entry in entries]


@router.post("/tickets/transfer")
async def transfer(
    request: TransferRequest,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    try:
        recipient = await transfer_tickets(
            session,
            sender_id=user.id,
            ticket_ids=request.ticket_ids,
            recipient_email=request.recipient_email,
        )
    except RaffleCoreError as exc:
        raise as_http_error(exc)
    return {"recipient_id": recipient.id, "transferred": len(request.ticket_ids)}
