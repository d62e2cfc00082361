"""Transactions module for buyer/seller sales.

This module handles transaction creation, payment, shipping, delivery
confirmation, cancellation and dispute resolution. Every status change is
checked against the transition table in ``transactions.state`` and runs inside
one database transaction that holds the transaction row lock.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional, Union
from uuid import UUID

from asyncpg.exceptions import PostgresError, InterfaceError, UniqueViolationError

from config import settings_conf
from database import get_pool
from database.exceptions import DatabaseError
from errors import (
    ForbiddenError,
    InvalidStateError,
    MarketplaceError,
    NotFoundError,
    UpstreamFailure,
    ValidationError,
)
from listings import ListingManager
from payments import (
    PaymentGateway,
    PaymentStatus,
    calculate_fees,
    create_gateway,
    ensure_payment_method,
    get_available_payment_methods,
    to_cents,
)
from .state import (
    CANCELLED,
    CAPTURED_STATUSES,
    COMPLETED,
    DELIVERED,
    DISPUTED,
    OPEN_STATUSES,
    PAYMENT_CONFIRMED,
    PENDING_PAYMENT,
    REFUNDED,
    SHIPPED,
    TERMINAL_STATUSES,
    TRANSACTION_STATUSES,
    TRANSITIONS,
    can_transition,
    check_transition,
    is_terminal,
)
from .store import TransactionStore, compute_net_amount

logger = logging.getLogger(__name__)

# Keys update_transaction accepts
PATCHABLE_FIELDS = {
    'status',
    'tracking_number',
    'shipping_method',
    'estimated_delivery',
    'actual_delivery',
}
DATETIME_FIELDS = {'estimated_delivery', 'actual_delivery'}

# Provider statuses that leave a charge open
UNSETTLED_PAYMENT_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PROCESSING)

DISPUTE_RESOLUTIONS = (COMPLETED, CANCELLED, REFUNDED)
USER_ROLES = ('buyer', 'seller', 'all')


class TransactionNotFoundError(NotFoundError):
    """Raised when a transaction is not found."""
    pass


def _parse_datetime(field: str, value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO 8601 timestamp")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _money(value: Decimal) -> str:
    return str(to_cents(value))


class TransactionManager:
    """Manages transaction operations and state transitions."""

    def __init__(
        self,
        pool=None,
        payments: Optional[PaymentGateway] = None,
        listings: Optional[ListingManager] = None,
        store: Optional[TransactionStore] = None,
        record_noop_status_events: Optional[bool] = None,
        platform_fee_rate: Optional[Decimal] = None,
        pix_key: Optional[str] = None,
        pending_payment_expiration_minutes: Optional[int] = None
    ) -> None:
        """Initialize transaction manager.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
            payments: Payment gateway, defaults to the configured gateway
            listings: Listing store, defaults to a ListingManager on the same pool
            store: Transaction store
            record_noop_status_events: Append a timeline event when a patch
                keeps the current status
            platform_fee_rate: Platform share of the listing price
            pix_key: PIX key shown in payment instructions
            pending_payment_expiration_minutes: Age after which unpaid
                transactions are cancelled
        """
        self.pool = pool
        self.payments = payments if payments is not None else create_gateway(settings_conf)
        self.listings = listings if listings is not None else ListingManager(pool)
        self.store = store if store is not None else TransactionStore()

        if record_noop_status_events is None:
            record_noop_status_events = settings_conf['record_noop_status_events']
        self.record_noop_status_events = record_noop_status_events
        self.platform_fee_rate = (
            platform_fee_rate if platform_fee_rate is not None
            else settings_conf['platform_fee_rate']
        )
        self.pix_key = pix_key if pix_key is not None else settings_conf['pix_key']
        self.pending_payment_expiration_minutes = (
            pending_payment_expiration_minutes if pending_payment_expiration_minutes is not None
            else settings_conf['pending_payment_expiration_minutes']
        )

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    @asynccontextmanager
    async def _db(self, atomic: bool = True) -> AsyncIterator[Any]:
        """Yield a connection, inside a database transaction when atomic.

        Database failures surface as DatabaseError. Any exception rolls the
        transaction back.
        """
        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                if atomic:
                    async with conn.transaction():
                        yield conn
                else:
                    yield conn
        except UniqueViolationError as e:
            logger.warning(f"Unique constraint rejected transaction write: {e}")
            raise InvalidStateError("Listing already has an open transaction")
        except (PostgresError, InterfaceError, OSError) as e:
            logger.error(f"Database error in transaction workflow: {e}")
            raise DatabaseError(f"Database operation failed: {e}")

    async def _get_locked(self, conn, transaction_id: Union[str, UUID]) -> Dict[str, Any]:
        tx = await self.store.get(conn, transaction_id, for_update=True)
        if tx is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        return tx

    async def _transition(
        self,
        conn,
        tx: Dict[str, Any],
        new_status: str,
        actor: Optional[str],
        fields: Optional[Dict[str, Any]] = None,
        event_payload: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Apply one checked status change and record it on the timeline."""
        check_transition(tx['status'], new_status)
        updated = await self.store.update_status(conn, tx['id'], tx['status'], new_status, fields)
        payload = {'from': tx['status'], 'to': new_status}
        payload.update(event_payload or {})
        await self.store.add_event(
            conn, tx['id'], 'status_updated',
            f"Status changed from {tx['status']} to {new_status}",
            payload, actor
        )
        return updated

    async def create_transaction(
        self,
        listing_id: Union[str, UUID],
        buyer_id: str,
        shipping_address: Dict[str, Any],
        payment_method: Union[str, Dict[str, Any]],
        notes: Optional[str] = None
    ) -> Dict[str, Any]:
        """Open a transaction for a listing and reserve the listing.

        Args:
            listing_id: Listing being bought
            buyer_id: Buyer user id
            shipping_address: Address snapshot stored with the transaction
            payment_method: Method type, or a dict with ``type``
            notes: Optional buyer notes, kept on the creation event

        Returns:
            Dict with ``transaction``, ``payment_required`` and ``payment_instructions``

        Raises:
            ListingNotFoundError: If the listing doesn't exist
            InvalidStateError: If the listing is not active
            ForbiddenError: If the buyer is the seller
            ValidationError: If the payment method or address is invalid
        """
        method = payment_method.get('type') if isinstance(payment_method, dict) else payment_method
        supported = {m['type'] for m in get_available_payment_methods() if m['supported']}
        if method not in supported:
            raise ValidationError(f"Unsupported payment method: {method}")
        if not shipping_address or not isinstance(shipping_address, dict):
            raise ValidationError("Shipping address is required")

        async with self._db() as conn:
            listing = await self.listings.get_listing(listing_id, conn=conn, for_update=True)
            if listing['status'] != 'active':
                raise InvalidStateError(f"Listing {listing_id} is not available for purchase")
            if listing['seller_id'] == buyer_id:
                raise ForbiddenError("Sellers cannot buy their own listings")

            price = to_cents(listing['price'])
            domestic = (listing.get('shipping') or {}).get('domestic') or {}
            shipping_fee = to_cents(domestic.get('cost') or 0)
            fees = calculate_fees(price, method, self.platform_fee_rate)

            tx = await self.store.insert(conn, {
                'listing_id': listing['id'],
                'buyer_id': buyer_id,
                'seller_id': listing['seller_id'],
                'amount': price + shipping_fee,
                'currency': listing['currency'],
                'fees': {
                    'platform_fee': fees['platform_fee'],
                    'payment_fee': fees['payment_fee'],
                    'shipping_fee': shipping_fee,
                },
                'payment_method': method,
                'shipping_address': shipping_address,
            })
            await self.store.add_event(
                conn, tx['id'], 'transaction_created',
                'Transaction created, awaiting payment',
                {'amount': _money(tx['amount']), 'notes': notes},
                buyer_id
            )
            await self.listings.update_status(listing['id'], 'reserved', conn=conn, buyer_id=buyer_id)

        logger.info(f"Created transaction {tx['id']} for listing {listing['id']} by buyer {buyer_id}")
        return {
            'transaction': tx,
            'payment_required': True,
            'payment_instructions': self._payment_instructions(tx),
        }

    def _payment_instructions(self, tx: Dict[str, Any]) -> Dict[str, Any]:
        instructions = {
            'type': tx['payment_method'],
            'amount': tx['amount'],
            'currency': tx['currency'],
        }
        if tx['payment_method'] == 'pix':
            expires_at = datetime.now(timezone.utc) + timedelta(
                minutes=self.pending_payment_expiration_minutes
            )
            instructions.update({
                'qr_code': f"pix_qr_{tx['id']}",
                'pix_key': self.pix_key,
                'expires_at': expires_at.isoformat(),
            })
        return instructions

    async def process_payment(
        self,
        transaction_id: Union[str, UUID],
        payment_details: Optional[Dict[str, Any]] = None,
        actor: Optional[str] = None
    ) -> Dict[str, Any]:
        """Charge the buyer through the payment gateway.

        A decline is not an error: it is recorded as ``payment_failed`` and
        reported with ``success=False`` while the transaction stays
        ``pending_payment``. Gateway outages raise and nothing is written.
        When a charge is already open with the provider it is settled
        instead of charging again.

        Args:
            transaction_id: Transaction to pay
            payment_details: Method-specific details (card data, bank code)
            actor: User performing the payment

        Returns:
            Dict with ``success``, ``transaction`` and either ``payment_id``
            and ``status`` or ``error_message``

        Raises:
            TransactionNotFoundError: If transaction doesn't exist
            InvalidTransitionError: If the transaction cannot be paid
            ValidationError: If payment details are incomplete
            UpstreamFailure: If the gateway is unavailable
        """
        payment_details = payment_details or {}

        async with self._db() as conn:
            tx = await self._get_locked(conn, transaction_id)
            check_transition(tx['status'], PAYMENT_CONFIRMED)
            if tx.get('payment_id'):
                return await self._settle(conn, tx, actor)

            ensure_payment_method({'type': tx['payment_method'], 'details': payment_details})

            result = await self.payments.process_payment({
                'transaction_id': tx['id'],
                'amount': tx['amount'],
                'currency': tx['currency'],
                'payment_method': tx['payment_method'],
                'payment_details': payment_details,
            })

            if not result.success or result.status not in (
                    PaymentStatus.COMPLETED, PaymentStatus.PENDING, PaymentStatus.PROCESSING):
                message = result.error_message or f"Payment {result.status}"
                await self.store.add_event(
                    conn, tx['id'], 'payment_failed', f"Payment failed: {message}",
                    {'status': result.status}, actor
                )
                logger.info(f"Payment for transaction {tx['id']} declined: {message}")
                return {'success': False, 'error_message': message, 'transaction': tx}

            if result.transaction_fee is not None and \
                    to_cents(result.transaction_fee) != tx['fees']['payment_fee']:
                fees = dict(tx['fees'], payment_fee=to_cents(result.transaction_fee))
                tx = await self.store.set_fees(conn, tx['id'], fees)
                logger.info(f"Payment fee for transaction {tx['id']} adjusted to {fees['payment_fee']}")

            if result.status == PaymentStatus.COMPLETED:
                tx = await self._confirm_payment(conn, tx, result.payment_id, actor)
            else:
                tx = await self.store.update_fields(conn, tx['id'], {'payment_id': result.payment_id})
                await self.store.add_event(
                    conn, tx['id'], 'payment_pending', 'Payment submitted, awaiting settlement',
                    {'payment_id': result.payment_id, 'status': result.status}, actor
                )

        logger.info(f"Payment {result.payment_id} for transaction {tx['id']} is {result.status}")
        return {
            'success': True,
            'payment_id': result.payment_id,
            'status': result.status,
            'transaction': tx,
        }

    async def _confirm_payment(
        self,
        conn,
        tx: Dict[str, Any],
        payment_id: str,
        actor: Optional[str]
    ) -> Dict[str, Any]:
        tx = await self._transition(
            conn, tx, PAYMENT_CONFIRMED, actor,
            fields={'payment_id': payment_id},
            event_payload={'payment_id': payment_id}
        )
        await self.store.add_event(
            conn, tx['id'], 'payment_confirmed', 'Payment confirmed',
            {'payment_id': payment_id, 'amount': _money(tx['amount'])}, actor
        )
        return tx

    async def _settle(self, conn, tx: Dict[str, Any], actor: Optional[str]) -> Dict[str, Any]:
        """Poll the provider for an open charge and apply its outcome.

        Settled charges confirm the payment. Charges the provider dropped are
        cleared so the buyer can pay again.
        """
        payment_id = tx['payment_id']
        status = await self.payments.get_payment_status(payment_id)

        if status == PaymentStatus.COMPLETED:
            tx = await self._confirm_payment(conn, tx, payment_id, actor)
            logger.info(f"Payment {payment_id} for transaction {tx['id']} settled")
        elif status not in UNSETTLED_PAYMENT_STATUSES:
            tx = await self.store.update_fields(conn, tx['id'], {'payment_id': None})
            await self.store.add_event(
                conn, tx['id'], 'payment_failed', f"Payment {status}",
                {'payment_id': payment_id, 'status': status}, actor
            )
            logger.info(f"Payment {payment_id} for transaction {tx['id']} is {status}")
            return {'success': False, 'error_message': f"Payment {status}", 'transaction': tx}

        return {
            'success': True,
            'payment_id': payment_id,
            'status': status,
            'transaction': tx,
        }

    async def settle_payment(
        self,
        transaction_id: Union[str, UUID],
        actor: Optional[str] = None
    ) -> Dict[str, Any]:
        """Check an open charge with the provider; never charges again.

        Raises:
            TransactionNotFoundError: If transaction doesn't exist
            InvalidTransitionError: If the transaction is past payment
            InvalidStateError: If no charge is awaiting settlement
            UpstreamFailure: If the gateway is unavailable
        """
        async with self._db() as conn:
            tx = await self._get_locked(conn, transaction_id)
            check_transition(tx['status'], PAYMENT_CONFIRMED)
            if not tx.get('payment_id'):
                raise InvalidStateError(f"Transaction {transaction_id} has no payment awaiting settlement")
            return await self._settle(conn, tx, actor)

    async def update_transaction(
        self,
        transaction_id: Union[str, UUID],
        patch: Dict[str, Any],
        actor: Optional[str] = None
    ) -> Dict[str, Any]:
        """Update status and shipping details.

        Args:
            transaction_id: Transaction to update
            patch: Keys from PATCHABLE_FIELDS
            actor: User performing the update

        Returns:
            The updated transaction

        Raises:
            ValidationError: If the patch is empty or has non-patchable keys
            TransactionNotFoundError: If transaction doesn't exist
            InvalidStateError: If the patch would confirm a payment
            InvalidTransitionError: If the status change is not allowed
        """
        if not patch:
            raise ValidationError("No fields to update")
        invalid = set(patch) - PATCHABLE_FIELDS
        if invalid:
            raise ValidationError(f"Cannot update fields: {sorted(invalid)}")

        requested = patch.get('status')
        if 'status' in patch and requested not in TRANSACTION_STATUSES:
            raise ValidationError(f"Unknown transaction status: {requested}")

        fields = {k: v for k, v in patch.items() if k != 'status'}
        for name in DATETIME_FIELDS & set(fields):
            fields[name] = _parse_datetime(name, fields[name])

        async with self._db() as conn:
            tx = await self._get_locked(conn, transaction_id)
            current = tx['status']

            if requested is None or requested == current:
                if fields:
                    tx = await self.store.update_fields(conn, tx['id'], fields)
                if requested is not None and self.record_noop_status_events:
                    await self.store.add_event(
                        conn, tx['id'], 'status_updated',
                        f"Status unchanged ({current})",
                        {'from': current, 'to': current}, actor
                    )
            elif requested == PAYMENT_CONFIRMED:
                raise InvalidStateError("Payment is confirmed by the payment gateway, not by an update")
            elif requested == DELIVERED:
                check_transition(current, DELIVERED)
                tx = await self._complete_delivery(conn, tx, actor, fields)
            elif requested == CANCELLED:
                check_transition(current, CANCELLED)
                if fields:
                    tx = await self.store.update_fields(conn, tx['id'], fields)
                tx = await self._cancel(conn, tx, 'Cancelled by update', actor)
            elif requested == COMPLETED:
                tx = await self._transition(conn, tx, COMPLETED, actor, fields)
                await self.listings.update_status(tx['listing_id'], 'sold', conn=conn)
            else:
                tx = await self._transition(conn, tx, requested, actor, fields)

        return tx

    async def _complete_delivery(
        self,
        conn,
        tx: Dict[str, Any],
        actor: Optional[str],
        fields: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """delivered, funds released, completed, listing sold; one unit of work."""
        fields = dict(fields or {})
        if not fields.get('actual_delivery'):
            fields['actual_delivery'] = datetime.now(timezone.utc)

        tx = await self._transition(conn, tx, DELIVERED, actor, fields)
        await self.store.add_event(
            conn, tx['id'], 'funds_released', 'Funds released to seller',
            {'amount': _money(tx['net_amount']), 'seller_id': tx['seller_id']}, actor
        )
        tx = await self._transition(conn, tx, COMPLETED, actor)
        await self.listings.update_status(tx['listing_id'], 'sold', conn=conn)
        logger.info(f"Transaction {tx['id']} completed, listing {tx['listing_id']} sold")
        return tx

    async def confirm_delivery(
        self,
        transaction_id: Union[str, UUID],
        caller_id: str
    ) -> Dict[str, Any]:
        """Buyer confirms receipt; completes the sale.

        Raises:
            TransactionNotFoundError: If transaction doesn't exist
            ForbiddenError: If the caller is not the buyer
            InvalidStateError: If the transaction is not shipped
        """
        async with self._db() as conn:
            tx = await self._get_locked(conn, transaction_id)
            if tx['buyer_id'] != caller_id:
                raise ForbiddenError("Only the buyer can confirm delivery")
            if tx['status'] != SHIPPED:
                raise InvalidStateError(
                    f"Transaction must be shipped to confirm delivery (is {tx['status']})"
                )
            tx = await self._complete_delivery(conn, tx, caller_id)
        return tx

    async def _refund(self, conn, tx: Dict[str, Any], actor: Optional[str]) -> Dict[str, Any]:
        refund = await self.payments.refund_payment(
            tx['id'], amount=tx['amount'], payment_id=tx.get('payment_id')
        )
        if not refund.success:
            logger.error(f"Refund for transaction {tx['id']} declined: {refund.error_message}")
            raise UpstreamFailure(
                f"Refund failed: {refund.error_message or refund.status}",
                {'transaction_id': tx['id']}
            )
        await self.store.add_event(
            conn, tx['id'], 'payment_refunded', 'Payment refunded to buyer',
            {'refund_id': refund.refund_id, 'amount': _money(refund.amount or tx['amount'])},
            actor
        )
        return {'refund_id': refund.refund_id, 'amount': refund.amount}

    async def _cancel(
        self,
        conn,
        tx: Dict[str, Any],
        reason: str,
        actor: Optional[str]
    ) -> Dict[str, Any]:
        """Refund captured or open charges, cancel and reopen the listing."""
        check_transition(tx['status'], CANCELLED)
        if tx['status'] in CAPTURED_STATUSES or tx.get('payment_id'):
            await self._refund(conn, tx, actor)

        previous = tx['status']
        tx = await self.store.update_status(conn, tx['id'], previous, CANCELLED)
        await self.store.add_event(
            conn, tx['id'], 'transaction_cancelled', f"Transaction cancelled: {reason}",
            {'reason': reason, 'from': previous}, actor
        )
        await self.listings.update_status(tx['listing_id'], 'active', conn=conn, buyer_id=None)
        logger.info(f"Transaction {tx['id']} cancelled from {previous}: {reason}")
        return tx

    async def cancel_transaction(
        self,
        transaction_id: Union[str, UUID],
        reason: str,
        actor: Optional[str] = None
    ) -> Dict[str, Any]:
        """Cancel a transaction, refunding the buyer when money was captured.

        Concurrent cancels serialize on the row lock; the later one sees a
        cancelled transaction and fails.

        Raises:
            TransactionNotFoundError: If transaction doesn't exist
            InvalidTransitionError: If the transaction cannot be cancelled
            UpstreamFailure: If the refund is declined or the gateway is down
        """
        async with self._db() as conn:
            tx = await self._get_locked(conn, transaction_id)
            tx = await self._cancel(conn, tx, reason or 'No reason given', actor)
        return tx

    async def resolve_dispute(
        self,
        transaction_id: Union[str, UUID],
        resolution: str,
        actor: Optional[str] = None
    ) -> Dict[str, Any]:
        """Close a disputed transaction.

        ``completed`` sells the listing; ``cancelled`` and ``refunded`` refund
        the buyer and reopen the listing.

        Raises:
            ValidationError: If the resolution is unknown
            TransactionNotFoundError: If transaction doesn't exist
            InvalidStateError: If the transaction is not disputed
            UpstreamFailure: If the refund fails
        """
        if resolution not in DISPUTE_RESOLUTIONS:
            raise ValidationError(f"Invalid dispute resolution: {resolution}")

        async with self._db() as conn:
            tx = await self._get_locked(conn, transaction_id)
            if tx['status'] != DISPUTED:
                raise InvalidStateError(f"Transaction {transaction_id} is not disputed")

            refund = None
            if resolution != COMPLETED:
                refund = await self._refund(conn, tx, actor)

            tx = await self._transition(conn, tx, resolution, actor)
            await self.store.add_event(
                conn, tx['id'], 'dispute_resolved', f"Dispute resolved as {resolution}",
                {'resolution': resolution, 'refund_id': refund['refund_id'] if refund else None},
                actor
            )
            if resolution == COMPLETED:
                await self.listings.update_status(tx['listing_id'], 'sold', conn=conn)
            else:
                await self.listings.update_status(tx['listing_id'], 'active', conn=conn, buyer_id=None)

        logger.info(f"Dispute on transaction {tx['id']} resolved as {resolution}")
        return tx

    async def expire_stale_transactions(self, older_than_minutes: Optional[int] = None) -> int:
        """Cancel unpaid transactions older than the payment window.

        Open charges are settled first: one the provider completed confirms
        the payment instead, any other is voided by the cancellation.

        Returns:
            Number of transactions expired
        """
        minutes = (
            older_than_minutes if older_than_minutes is not None
            else self.pending_payment_expiration_minutes
        )
        async with self._db(atomic=False) as conn:
            stale_ids = await self.store.find_stale_pending(conn, minutes)

        expired = 0
        for transaction_id in stale_ids:
            try:
                async with self._db() as conn:
                    tx = await self.store.get(conn, transaction_id, for_update=True)
                    # Paid or cancelled since the scan
                    if tx is None or tx['status'] != PENDING_PAYMENT:
                        continue
                    if tx.get('payment_id'):
                        tx = (await self._settle(conn, tx, 'system'))['transaction']
                        if tx['status'] == PAYMENT_CONFIRMED:
                            continue
                    await self._cancel(
                        conn, tx, f"Payment not received within {minutes} minutes", 'system'
                    )
                expired += 1
            except MarketplaceError as e:
                logger.error(f"Failed to expire transaction {transaction_id}: {e}")

        if expired:
            logger.info(f"Expired {expired} pending transactions older than {minutes} minutes")
        return expired

    async def get_transaction(self, transaction_id: Union[str, UUID]) -> Dict[str, Any]:
        """Get a transaction with its timeline.

        Raises:
            TransactionNotFoundError: If transaction doesn't exist
        """
        async with self._db(atomic=False) as conn:
            tx = await self.store.get(conn, transaction_id)
            if tx is None:
                raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
            tx['timeline'] = await self.store.get_events(conn, transaction_id)
        return tx

    async def get_timeline(self, transaction_id: Union[str, UUID]) -> List[Dict[str, Any]]:
        """Timeline events, oldest first."""
        async with self._db(atomic=False) as conn:
            if await self.store.get(conn, transaction_id) is None:
                raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
            return await self.store.get_events(conn, transaction_id)

    async def get_user_transactions(
        self,
        user_id: str,
        role: str = 'all',
        status: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Transactions the user takes part in, newest first.

        Raises:
            ValidationError: If role or status is unknown
        """
        if role not in USER_ROLES:
            raise ValidationError(f"Invalid role: {role}")
        if status is not None and status not in TRANSACTION_STATUSES:
            raise ValidationError(f"Unknown transaction status: {status}")

        async with self._db(atomic=False) as conn:
            return await self.store.find_for_user(conn, user_id, role, status)

    async def get_transaction_stats(self, seller_id: Optional[str] = None) -> Dict[str, Any]:
        """Aggregate counts and revenue, optionally for one seller."""
        async with self._db(atomic=False) as conn:
            rows = await self.store.status_counts(conn, seller_id)

        breakdown = {status: 0 for status in TRANSACTION_STATUSES}
        revenue = Decimal('0')
        for row in rows:
            breakdown[row['status']] = row['count']
            if row['status'] == COMPLETED:
                revenue = Decimal(str(row['amount']))

        total = sum(breakdown.values())
        completed = breakdown[COMPLETED]
        return {
            'total_transactions': total,
            'total_revenue': to_cents(revenue),
            'average_order_value': to_cents(revenue / completed) if completed else Decimal('0.00'),
            'completion_rate': round(completed / total, 4) if total else 0.0,
            'status_breakdown': breakdown,
        }


__all__ = [
    'TransactionManager',
    'TransactionStore',
    'TransactionNotFoundError',
    'TRANSITIONS',
    'TRANSACTION_STATUSES',
    'OPEN_STATUSES',
    'TERMINAL_STATUSES',
    'can_transition',
    'check_transition',
    'is_terminal',
    'compute_net_amount',
]
