"""Transactions API endpoints."""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from auth import get_current_user, require_admin
from errors import ForbiddenError
from transactions import TransactionManager
from ..dependencies import get_transaction_manager

# Create router
router = APIRouter(
    prefix="/transactions",
    tags=["Transactions"]
)

# Reached only through confirm-delivery
BUYER_CONFIRMED_STATUSES = ('delivered', 'completed')


class CreateTransactionRequest(BaseModel):
    """Request model for buying a listing."""
    listing_id: str
    shipping_address: Dict[str, Any]
    payment_method: str
    notes: Optional[str] = Field(None, max_length=1000)


class PaymentRequest(BaseModel):
    payment_details: Dict[str, Any] = Field(default_factory=dict)


class UpdateTransactionRequest(BaseModel):
    """Request model for status and shipping updates; other fields are rejected."""
    model_config = ConfigDict(extra='forbid')

    status: Optional[str] = None
    tracking_number: Optional[str] = None
    shipping_method: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class ResolveDisputeRequest(BaseModel):
    resolution: str


async def _participant_transaction(
    manager: TransactionManager,
    transaction_id: str,
    user_id: str
) -> Dict[str, Any]:
    tx = await manager.get_transaction(transaction_id)
    if user_id not in (tx['buyer_id'], tx['seller_id']):
        raise ForbiddenError("Not a participant in this transaction")
    return tx


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_transaction(
    request: CreateTransactionRequest,
    user_id: str = Depends(get_current_user),
    manager: TransactionManager = Depends(get_transaction_manager)
):
    """Buy a listing."""
    return await manager.create_transaction(
        listing_id=request.listing_id,
        buyer_id=user_id,
        shipping_address=request.shipping_address,
        payment_method=request.payment_method,
        notes=request.notes
    )


@router.get("")
async def list_transactions(
    role: str = Query('all'),
    status_filter: Optional[str] = Query(None, alias='status'),
    user_id: str = Depends(get_current_user),
    manager: TransactionManager = Depends(get_transaction_manager)
):
    """The caller's transactions, newest first."""
    transactions = await manager.get_user_transactions(user_id, role=role, status=status_filter)
    return {'transactions': transactions}


@router.get("/stats")
async def transaction_stats(
    user_id: str = Depends(get_current_user),
    manager: TransactionManager = Depends(get_transaction_manager)
):
    """Sales statistics for the caller as seller."""
    return await manager.get_transaction_stats(seller_id=user_id)


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    user_id: str = Depends(get_current_user),
    manager: TransactionManager = Depends(get_transaction_manager)
):
    return await _participant_transaction(manager, transaction_id, user_id)


@router.get("/{transaction_id}/timeline")
async def get_timeline(
    transaction_id: str,
    user_id: str = Depends(get_current_user),
    manager: TransactionManager = Depends(get_transaction_manager)
):
    tx = await _participant_transaction(manager, transaction_id, user_id)
    return {'timeline': tx['timeline']}


@router.post("/{transaction_id}/payment")
async def process_payment(
    transaction_id: str,
    request: PaymentRequest,
    user_id: str = Depends(get_current_user),
    manager: TransactionManager = Depends(get_transaction_manager)
):
    """Pay for a transaction (buyer only)."""
    tx = await _participant_transaction(manager, transaction_id, user_id)
    if tx['buyer_id'] != user_id:
        raise ForbiddenError("Only the buyer can pay for this transaction")
    return await manager.process_payment(transaction_id, request.payment_details, actor=user_id)


@router.post("/{transaction_id}/payment/settle")
async def settle_payment(
    transaction_id: str,
    user_id: str = Depends(get_current_user),
    manager: TransactionManager = Depends(get_transaction_manager)
):
    """Refresh a pending payment from the provider."""
    await _participant_transaction(manager, transaction_id, user_id)
    return await manager.settle_payment(transaction_id, actor=user_id)


@router.patch("/{transaction_id}")
async def update_transaction(
    transaction_id: str,
    request: UpdateTransactionRequest,
    user_id: str = Depends(get_current_user),
    manager: TransactionManager = Depends(get_transaction_manager)
):
    """Update status or shipping details (seller only)."""
    tx = await _participant_transaction(manager, transaction_id, user_id)
    if tx['seller_id'] != user_id:
        raise ForbiddenError("Only the seller can update this transaction")
    if request.status in BUYER_CONFIRMED_STATUSES:
        raise ForbiddenError("Delivery is confirmed by the buyer")
    patch = request.model_dump(exclude_unset=True)
    return await manager.update_transaction(transaction_id, patch, actor=user_id)


@router.post("/{transaction_id}/confirm-delivery")
async def confirm_delivery(
    transaction_id: str,
    user_id: str = Depends(get_current_user),
    manager: TransactionManager = Depends(get_transaction_manager)
):
    return await manager.confirm_delivery(transaction_id, user_id)


@router.post("/{transaction_id}/cancel")
async def cancel_transaction(
    transaction_id: str,
    request: CancelRequest,
    user_id: str = Depends(get_current_user),
    manager: TransactionManager = Depends(get_transaction_manager)
):
    await _participant_transaction(manager, transaction_id, user_id)
    return await manager.cancel_transaction(transaction_id, request.reason, actor=user_id)


@router.post("/{transaction_id}/resolve-dispute")
async def resolve_dispute(
    transaction_id: str,
    request: ResolveDisputeRequest,
    admin_id: str = Depends(require_admin),
    manager: TransactionManager = Depends(get_transaction_manager)
):
    return await manager.resolve_dispute(transaction_id, request.resolution, actor=admin_id)
