"""Listings API endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from auth import get_current_user, require_admin
from errors import ForbiddenError
from listings import ListingManager
from ..dependencies import get_listing_manager

# Create router
router = APIRouter(
    prefix="/listings",
    tags=["Listings"]
)


class CreateListingRequest(BaseModel):
    """Request model for creating a listing."""
    title: str = Field(..., min_length=1, max_length=255)
    price: Decimal = Field(..., gt=0)
    category: str
    condition: Dict[str, Any]
    shipping: Dict[str, Any] = Field(default_factory=dict)
    item_id: Optional[str] = None
    description: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    location: Dict[str, Any] = Field(default_factory=dict)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    original_price: Optional[Decimal] = Field(None, gt=0)
    status: str = 'active'
    expires_at: Optional[datetime] = None


class UpdateListingRequest(BaseModel):
    """Request model for updating a listing."""
    model_config = ConfigDict(extra='forbid')

    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = None
    original_price: Optional[Decimal] = None
    condition: Optional[Dict[str, Any]] = None
    shipping: Optional[Dict[str, Any]] = None
    images: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    category: Optional[str] = None
    location: Optional[Dict[str, Any]] = None
    expires_at: Optional[datetime] = None


""" Public Endpoints - No Authentication Required """
@router.get("/search")
async def search_listings(
    category: Optional[str] = None,
    brand: Optional[str] = None,
    condition: Optional[List[str]] = Query(None),
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    search: Optional[str] = None,
    seller_id: Optional[str] = None,
    tags: Optional[List[str]] = Query(None),
    sort_by: str = 'newest',
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    manager: ListingManager = Depends(get_listing_manager)
):
    """Search active listings."""
    filters = {
        'category': category,
        'brand': brand,
        'condition': condition,
        'min_price': min_price,
        'max_price': max_price,
        'search': search,
        'seller_id': seller_id,
        'tags': tags,
        'sort_by': sort_by,
    }
    filters = {k: v for k, v in filters.items() if v is not None}
    return await manager.search_listings(filters, limit=limit, offset=offset)


@router.get("/seller/{seller_id}")
async def seller_listings(
    seller_id: str,
    status_filter: Optional[str] = Query(None, alias='status'),
    manager: ListingManager = Depends(get_listing_manager)
):
    return {'listings': await manager.get_seller_listings(seller_id, status=status_filter)}


@router.get("/{listing_id}")
async def get_listing(
    listing_id: str,
    manager: ListingManager = Depends(get_listing_manager)
):
    return await manager.get_listing(listing_id)


@router.post("/{listing_id}/view")
async def record_view(
    listing_id: str,
    manager: ListingManager = Depends(get_listing_manager)
):
    return {'views': await manager.increment_views(listing_id)}


""" Protected Endpoints - Authentication Required """
@router.post("", status_code=status.HTTP_201_CREATED)
async def create_listing(
    request: CreateListingRequest,
    user_id: str = Depends(get_current_user),
    manager: ListingManager = Depends(get_listing_manager)
):
    """Create a listing owned by the caller."""
    return await manager.create_listing(seller_id=user_id, **request.model_dump())


@router.patch("/{listing_id}")
async def update_listing(
    listing_id: str,
    request: UpdateListingRequest,
    user_id: str = Depends(get_current_user),
    manager: ListingManager = Depends(get_listing_manager)
):
    """Edit a listing (seller only)."""
    listing = await manager.get_listing(listing_id)
    if listing['seller_id'] != user_id:
        raise ForbiddenError("Only the seller can edit this listing")
    return await manager.update_listing(listing_id, request.model_dump(exclude_unset=True))


@router.post("/{listing_id}/like")
async def toggle_like(
    listing_id: str,
    user_id: str = Depends(get_current_user),
    manager: ListingManager = Depends(get_listing_manager)
):
    return await manager.toggle_like(listing_id, user_id)


@router.post("/{listing_id}/watch")
async def toggle_watch(
    listing_id: str,
    user_id: str = Depends(get_current_user),
    manager: ListingManager = Depends(get_listing_manager)
):
    return await manager.toggle_watch(listing_id, user_id)


@router.delete("/{listing_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_listing(
    listing_id: str,
    admin_id: str = Depends(require_admin),
    manager: ListingManager = Depends(get_listing_manager)
):
    """Administrative delete."""
    await manager.delete_listing(listing_id)
