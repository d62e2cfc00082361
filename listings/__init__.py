"""Listings module for managing marketplace listings.

This module provides functionality for:
- Creating and editing fashion listings
- Reserving, selling and reopening listings for the transaction workflow
- Searching and filtering listings
- Tracking views, likes and watchers
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Union, Any

import asyncpg
from pydantic import ValidationError as ModelValidationError

from database import get_pool, connection, as_uuid
from errors import InvalidStateError, NotFoundError, ValidationError
from .models import ConditionAssessment, ShippingOptions, CONDITION_STATUSES
from .search import build_search_query, SORT_ORDERS

logger = logging.getLogger(__name__)

LISTING_STATUSES = (
    'draft', 'active', 'reserved', 'sold', 'expired', 'removed', 'under_review'
)

# User-mutable fields for listings, mapped to their columns
MUTABLE_FIELDS = {
    'title': 'title',
    'description': 'description',
    'price': 'price',
    'original_price': 'original_price',
    'condition': 'condition_info',
    'shipping': 'shipping_options',
    'images': 'images',
    'tags': 'tags',
    'category': 'category',
    'location': 'location',
    'expires_at': 'expires_at',
}

# Sentinel so update_status can tell "leave buyer_id alone" from "clear it"
_KEEP = object()


class ListingError(ValidationError):
    """Raised when listing input is invalid."""
    pass


class ListingNotFoundError(NotFoundError):
    """Raised when a listing is not found."""
    pass


def _validate_condition(condition: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return ConditionAssessment(**(condition or {})).model_dump()
    except ModelValidationError as e:
        raise ListingError(f"Invalid condition assessment: {e}")


def _validate_shipping(shipping: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return ShippingOptions(**(shipping or {})).model_dump(mode='json', exclude_none=True)
    except ModelValidationError as e:
        raise ListingError(f"Invalid shipping options: {e}")


def _validate_price(value: Any, field: str = 'price') -> Decimal:
    try:
        price = Decimal(str(value))
    except (ArithmeticError, ValueError):
        raise ListingError(f"Invalid {field}: {value}")
    if not price.is_finite() or price <= 0:
        raise ListingError(f"{field} must be positive")
    return price


def listing_from_row(row) -> Dict[str, Any]:
    """Convert a listings row into the dict returned to callers."""
    data = dict(row)
    return {
        'id': str(data['id']),
        'item_id': data.get('item_id'),
        'seller_id': data['seller_id'],
        'buyer_id': data.get('buyer_id'),
        'title': data['title'],
        'description': data.get('description'),
        'price': data['price'],
        'original_price': data.get('original_price'),
        'currency': data['currency'],
        'condition': data.get('condition_info') or {},
        'shipping': data.get('shipping_options') or {},
        'images': list(data.get('images') or []),
        'category': data['category'],
        'tags': list(data.get('tags') or []),
        'location': data.get('location') or {},
        'status': data['status'],
        'views': data.get('views', 0),
        'likes': data.get('likes', 0),
        'watchers': data.get('watchers', 0),
        'expires_at': data['expires_at'].isoformat() if data.get('expires_at') else None,
        'created_at': data['created_at'].isoformat() if data.get('created_at') else None,
        'updated_at': data['updated_at'].isoformat() if data.get('updated_at') else None,
    }


class ListingManager:
    """Manager class for handling listing operations.

    Every method accepts an optional ``conn`` so the transaction workflow can
    read and write listings inside its own database transaction.
    """

    def __init__(self, pool=None, default_currency: Optional[str] = None):
        """Initialize the listing manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
            default_currency: Currency for new listings, defaults to the configured one
        """
        self.pool = pool
        self.default_currency = default_currency

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    def _currency(self) -> str:
        if self.default_currency is None:
            from config import settings_conf
            self.default_currency = settings_conf.get('default_currency', 'BRL')
        return self.default_currency

    async def create_listing(
        self,
        seller_id: str,
        title: str,
        price: Union[Decimal, str, float],
        category: str,
        condition: Dict[str, Any],
        shipping: Optional[Dict[str, Any]] = None,
        item_id: Optional[str] = None,
        description: Optional[str] = None,
        images: Optional[List[str]] = None,
        tags: Optional[List[str]] = None,
        location: Optional[Dict[str, Any]] = None,
        currency: Optional[str] = None,
        original_price: Optional[Union[Decimal, str, float]] = None,
        status: str = 'active',
        expires_at: Optional[datetime] = None,
        conn=None
    ) -> Dict[str, Any]:
        """Create a new listing.

        Args:
            seller_id: Owner of the listing
            title: Listing title
            price: Asking price, must be positive
            category: Catalog category
            condition: Condition assessment, see ConditionAssessment
            shipping: Shipping options, see ShippingOptions
            item_id: Opaque reference to the catalog item
            description: Optional description
            images: Image URLs
            tags: Free-form tags (brand names live here)
            location: Seller location snapshot
            currency: Defaults to the configured currency
            original_price: Retail price for display
            status: Initial status, usually ``active`` or ``draft``
            expires_at: Optional listing expiry

        Returns:
            Dict containing the created listing

        Raises:
            ListingError: If any field is invalid
        """
        if not title or not title.strip():
            raise ListingError("Title is required")
        if not category:
            raise ListingError("Category is required")
        if status not in LISTING_STATUSES:
            raise ListingError(f"Invalid listing status: {status}")

        price = _validate_price(price)
        if original_price is not None:
            original_price = _validate_price(original_price, 'original_price')

        if conn is None:
            await self.ensure_pool()
        async with connection(self.pool, conn) as conn:
            row = await conn.fetchrow(
                '''
                INSERT INTO listings (
                    item_id, seller_id, title, description, price, original_price,
                    currency, condition_info, shipping_options, images, category,
                    tags, location, status, expires_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
                RETURNING *
                ''',
                item_id,
                seller_id,
                title.strip(),
                description,
                price,
                original_price,
                currency or self._currency(),
                _validate_condition(condition),
                _validate_shipping(shipping),
                list(images or []),
                category,
                list(tags or []),
                location or {},
                status,
                expires_at
            )

        logger.info(f"Created listing {row['id']} for seller {seller_id}")
        return listing_from_row(row)

    async def get_listing(
        self,
        listing_id: Union[str, uuid.UUID],
        conn=None,
        for_update: bool = False
    ) -> Dict[str, Any]:
        """Get a listing by id.

        Args:
            listing_id: The listing UUID
            conn: Optional connection to run on
            for_update: Lock the row until the surrounding transaction ends

        Returns:
            Dict containing listing details

        Raises:
            ListingNotFoundError: If listing doesn't exist
        """
        key = as_uuid(listing_id)
        if key is None:
            raise ListingNotFoundError(f"Listing {listing_id} not found")

        lock = ' FOR UPDATE' if for_update else ''
        if conn is None:
            await self.ensure_pool()
        async with connection(self.pool, conn) as conn:
            row = await conn.fetchrow(f'SELECT * FROM listings WHERE id = $1{lock}', key)

        if not row:
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        return listing_from_row(row)

    async def update_listing(
        self,
        listing_id: Union[str, uuid.UUID],
        updates: Dict[str, Any],
        conn=None
    ) -> Dict[str, Any]:
        """Update a listing's user-editable fields.

        Args:
            listing_id: The listing UUID
            updates: Fields to change, keys from MUTABLE_FIELDS

        Returns:
            Updated listing details

        Raises:
            ListingNotFoundError: If listing doesn't exist
            ListingError: If update contains invalid fields or values
        """
        if not updates:
            raise ListingError("No fields to update")

        invalid_fields = set(updates) - set(MUTABLE_FIELDS)
        if invalid_fields:
            raise ListingError(f"Cannot update fields: {sorted(invalid_fields)}")

        values = dict(updates)
        if 'price' in values:
            values['price'] = _validate_price(values['price'])
        if values.get('original_price') is not None:
            values['original_price'] = _validate_price(values['original_price'], 'original_price')
        if 'condition' in values:
            values['condition'] = _validate_condition(values['condition'])
        if 'shipping' in values:
            values['shipping'] = _validate_shipping(values['shipping'])
        if 'title' in values and not (values['title'] or '').strip():
            raise ListingError("Title is required")

        key = as_uuid(listing_id)
        if key is None:
            raise ListingNotFoundError(f"Listing {listing_id} not found")

        fields = []
        params = []
        for field, value in values.items():
            params.append(value)
            fields.append(f"{MUTABLE_FIELDS[field]} = ${len(params)}")
        params.append(key)

        if conn is None:
            await self.ensure_pool()
        async with connection(self.pool, conn) as conn:
            row = await conn.fetchrow(
                f'''
                UPDATE listings
                SET {', '.join(fields)}
                WHERE id = ${len(params)}
                RETURNING *
                ''',
                *params
            )

        if not row:
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        logger.info(f"Updated listing {listing_id}: {sorted(values)}")
        return listing_from_row(row)

    async def update_status(
        self,
        listing_id: Union[str, uuid.UUID],
        status: str,
        conn=None,
        buyer_id: Any = _KEEP
    ) -> Dict[str, Any]:
        """Set a listing's status.

        This is the boundary the transaction workflow uses to reserve, sell
        and reopen listings. The write is unconditional; callers hold the
        listing lock when ordering matters.

        Args:
            listing_id: The listing UUID
            status: New listing status
            conn: Optional connection to run on
            buyer_id: New buyer id; None clears it, omitted leaves it unchanged

        Raises:
            ListingNotFoundError: If listing doesn't exist
            ListingError: If status is not a listing status
        """
        if status not in LISTING_STATUSES:
            raise ListingError(f"Invalid listing status: {status}")

        key = as_uuid(listing_id)
        if key is None:
            raise ListingNotFoundError(f"Listing {listing_id} not found")

        if conn is None:
            await self.ensure_pool()
        async with connection(self.pool, conn) as conn:
            if buyer_id is _KEEP:
                row = await conn.fetchrow(
                    'UPDATE listings SET status = $1 WHERE id = $2 RETURNING *',
                    status, key
                )
            else:
                row = await conn.fetchrow(
                    'UPDATE listings SET status = $1, buyer_id = $2 WHERE id = $3 RETURNING *',
                    status, buyer_id, key
                )

        if not row:
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        logger.info(f"Listing {listing_id} status set to {status}")
        return listing_from_row(row)

    async def search_listings(
        self,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Dict[str, Any]:
        """Search listings.

        Args:
            filters: category, brand, condition, min_price, max_price, search,
                seller_id, tags, statuses and sort_by
            limit: Maximum number of results to return
            offset: Number of results to skip

        Returns:
            Dict with ``listings`` and ``total``

        Raises:
            ListingError: If a filter is invalid
        """
        filters = dict(filters or {})
        if limit < 1 or limit > 100:
            raise ListingError("limit must be between 1 and 100")
        if offset < 0:
            raise ListingError("offset must not be negative")

        for value in filters.get('condition') or []:
            if value not in CONDITION_STATUSES:
                raise ListingError(f"Invalid condition filter: {value}")
        for value in filters.get('statuses') or []:
            if value not in LISTING_STATUSES:
                raise ListingError(f"Invalid status filter: {value}")
        if filters.get('sort_by') and filters['sort_by'] not in SORT_ORDERS:
            raise ListingError(f"Invalid sort option: {filters['sort_by']}")

        try:
            query, count_query, params = build_search_query(filters)
        except ValueError as e:
            raise ListingError(str(e))

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            total = await conn.fetchval(count_query, *params)
            rows = await conn.fetch(query, *params, limit, offset)

        return {
            'listings': [listing_from_row(row) for row in rows],
            'total': total or 0,
        }

    async def get_seller_listings(
        self,
        seller_id: str,
        status: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Get a seller's listings, newest first, optionally by status."""
        if status is not None and status not in LISTING_STATUSES:
            raise ListingError(f"Invalid listing status: {status}")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            if status:
                rows = await conn.fetch(
                    '''
                    SELECT * FROM listings
                    WHERE seller_id = $1 AND status = $2
                    ORDER BY created_at DESC
                    ''',
                    seller_id, status
                )
            else:
                rows = await conn.fetch(
                    'SELECT * FROM listings WHERE seller_id = $1 ORDER BY created_at DESC',
                    seller_id
                )
        return [listing_from_row(row) for row in rows]

    async def increment_views(self, listing_id: Union[str, uuid.UUID]) -> int:
        """Count a listing view and return the new total."""
        key = as_uuid(listing_id)
        if key is None:
            raise ListingNotFoundError(f"Listing {listing_id} not found")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            views = await conn.fetchval(
                'UPDATE listings SET views = views + 1 WHERE id = $1 RETURNING views',
                key
            )
        if views is None:
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        return views

    async def toggle_like(self, listing_id: Union[str, uuid.UUID], user_id: str) -> Dict[str, Any]:
        """Like a listing, or remove the like when it already exists.

        Returns:
            Dict with ``liked`` and the listing's ``likes`` count
        """
        liked, count = await self._toggle(listing_id, user_id, 'listing_likes', 'likes')
        return {'liked': liked, 'likes': count}

    async def toggle_watch(self, listing_id: Union[str, uuid.UUID], user_id: str) -> Dict[str, Any]:
        """Watch a listing, or stop watching it.

        Returns:
            Dict with ``watching`` and the listing's ``watchers`` count
        """
        watching, count = await self._toggle(listing_id, user_id, 'listing_watchers', 'watchers')
        return {'watching': watching, 'watchers': count}

    async def _toggle(self, listing_id, user_id: str, table: str, counter: str):
        key = as_uuid(listing_id)
        if key is None:
            raise ListingNotFoundError(f"Listing {listing_id} not found")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                exists = await conn.fetchval(
                    'SELECT EXISTS(SELECT 1 FROM listings WHERE id = $1)', key
                )
                if not exists:
                    raise ListingNotFoundError(f"Listing {listing_id} not found")

                inserted = await conn.fetchval(
                    f'''
                    INSERT INTO {table} (listing_id, user_id) VALUES ($1, $2)
                    ON CONFLICT DO NOTHING
                    RETURNING listing_id
                    ''',
                    key, user_id
                )
                if inserted is not None:
                    delta = 1
                else:
                    await conn.execute(
                        f'DELETE FROM {table} WHERE listing_id = $1 AND user_id = $2',
                        key, user_id
                    )
                    delta = -1

                count = await conn.fetchval(
                    f'''
                    UPDATE listings SET {counter} = GREATEST({counter} + $1, 0)
                    WHERE id = $2
                    RETURNING {counter}
                    ''',
                    delta, key
                )
        return delta > 0, count

    async def delete_listing(self, listing_id: Union[str, uuid.UUID]) -> None:
        """Delete a listing and its likes and watchers.

        Raises:
            ListingNotFoundError: If listing doesn't exist
        """
        key = as_uuid(listing_id)
        if key is None:
            raise ListingNotFoundError(f"Listing {listing_id} not found")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            try:
                result = await conn.execute('DELETE FROM listings WHERE id = $1', key)
            except asyncpg.ForeignKeyViolationError:
                raise InvalidStateError(f"Listing {listing_id} has transactions and cannot be deleted")
        if result == 'DELETE 0':
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        logger.info(f"Deleted listing {listing_id}")


__all__ = [
    'ListingManager',
    'ListingError',
    'ListingNotFoundError',
    'ConditionAssessment',
    'ShippingOptions',
    'LISTING_STATUSES',
    'MUTABLE_FIELDS',
    'listing_from_row',
]
