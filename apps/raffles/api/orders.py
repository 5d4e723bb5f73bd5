from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, conint
from sqlalchemy.ext.asyncio import AsyncSession

from apps.raffles.api.deps import as_http_error, get_current_admin, get_current_user, get_session
from apps.raffles.core import orders as order_service
from apps.raffles.core.errors import RaffleCoreError
from apps.raffles.db.models import PurchaseOrderStatus, User, UserRole

router = APIRouter(prefix="/api/orders", tags=["orders"])


class CreateOrderRequest(BaseModel):
    raffle_id: int
    quantity: conint(gt=0) | None = None
    pack_id: int | None = None


class MarkPaidRequest(BaseModel):
    payment_method: str | None = Field(default=None, max_length=32)
    payment_notes: str | None = None


class VerifyRequest(BaseModel):
    notes: str | None = None


class RejectRequest(BaseModel):
    reason: str = ""


@router.post("")
async def create_order(
    request: CreateOrderRequest,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    if request.quantity is None and request.pack_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="quantity or pack_id is required")
    try:
        order = await order_service.create_order(
            session,
            user_id=user.id,
            raffle_id=request.raffle_id,
            quantity=request.quantity,
            pack_id=request.pack_id,
        )
    except RaffleCoreError as exc:
        raise as_http_error(exc)
    return order_service.serialize_order(order)


@router.get("")
async def search_orders(
    code: str | None = None,
    status_filter: PurchaseOrderStatus | None = None,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    # Regular users only ever see their own orders.
    user_id = None if user.role == UserRole.ADMIN.value else user.id
    orders = await order_service.search_orders(session, code=code, status=status_filter, user_id=user_id)
    return [order_service.serialize_order(order) for order in orders]


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: int,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    owner_id = None if user.role == UserRole.ADMIN.value else user.id
    try:
        order = await order_service.cancel_order(session, order_id, user_id=owner_id)
    except RaffleCoreError as exc:
        raise as_http_error(exc)
    return order_service.serialize_order(order)


@router.post("/{order_id}/paid")
async def mark_paid(
    order_id: int,
    request: MarkPaidRequest,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(get_current_admin),
):
    try:
        order = await order_service.mark_order_paid(
            session,
            order_id,
            admin_id=admin.id,
            payment_method=request.payment_method,
            payment_notes=request.payment_notes,
        )
    except RaffleCoreError as exc:
        raise as_http_error(exc)
    return order_service.serialize_order(order)


@router.post("/{order_id}/verify")
async def verify(
    order_id: int,
    request: VerifyRequest,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(get_current_admin),
):
    try:
        result = await order_service.verify_order(session, order_id, admin_id=admin.id, notes=request.notes)
    except RaffleCoreError as exc:
        raise as_http_error(exc)
    return result.to_dict()


@router.post("/{order_id}/reject")
async def reject(
    order_id: int,
    request: RejectRequest,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(get_current_admin),
):
    try:
        order = await order_service.reject_order(session, order_id, admin_id=admin.id, reason=request.reason)
    except RaffleCoreError as exc:
        raise as_http_error(exc)
    return order_service.serialize_order(order)
