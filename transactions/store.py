"""SQL access for transactions and their timeline.

Every method takes the connection to run on; the workflow service owns the
database transaction and the row locks.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from database import as_uuid
from errors import InvalidStateError, ValidationError
from payments import to_cents

logger = logging.getLogger(__name__)

# Non-status columns the workflow may write
WRITABLE_FIELDS = (
    'payment_id',
    'shipping_method',
    'tracking_number',
    'estimated_delivery',
    'actual_delivery',
)

FEE_KEYS = ('platform_fee', 'payment_fee', 'shipping_fee')


def compute_net_amount(amount: Any, fees: Dict[str, Any]) -> Decimal:
    """Seller payout: amount minus platform and payment fees."""
    return to_cents(
        Decimal(str(amount))
        - Decimal(str(fees.get('platform_fee') or 0))
        - Decimal(str(fees.get('payment_fee') or 0))
    )


def normalize_fees(fees: Dict[str, Any]) -> Dict[str, Decimal]:
    return {key: to_cents(fees.get(key) or 0) for key in FEE_KEYS}


def _iso(value):
    return value.isoformat() if value is not None else None


def transaction_from_row(row) -> Dict[str, Any]:
    """Convert a transactions row into the dict returned to callers."""
    data = dict(row)
    return {
        'id': str(data['id']),
        'listing_id': str(data['listing_id']),
        'buyer_id': data['buyer_id'],
        'seller_id': data['seller_id'],
        'amount': data['amount'],
        'currency': data['currency'],
        'fees': normalize_fees(data.get('fees') or {}),
        'net_amount': data['net_amount'],
        'status': data['status'],
        'payment_method': data['payment_method'],
        'payment_id': data.get('payment_id'),
        'shipping_address': data.get('shipping_address') or {},
        'shipping_method': data.get('shipping_method'),
        'tracking_number': data.get('tracking_number'),
        'estimated_delivery': _iso(data.get('estimated_delivery')),
        'actual_delivery': _iso(data.get('actual_delivery')),
        'version': data.get('version', 1),
        'created_at': _iso(data.get('created_at')),
        'updated_at': _iso(data.get('updated_at')),
    }


def event_from_row(row) -> Dict[str, Any]:
    data = dict(row)
    return {
        'id': str(data['id']),
        'transaction_id': str(data['transaction_id']),
        'event_type': data['event_type'],
        'description': data['description'],
        'payload': data.get('payload') or {},
        'actor': data.get('actor'),
        'created_at': _iso(data.get('created_at')),
    }


class TransactionStore:
    """Reads and writes the transactions and transaction_events tables."""

    async def insert(self, conn, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a pending_payment transaction.

        ``net_amount`` is derived from ``amount`` and ``fees``; callers cannot
        supply it.
        """
        if 'net_amount' in data:
            raise ValidationError("net_amount is computed and cannot be set")

        fees = normalize_fees(data['fees'])
        amount = to_cents(data['amount'])
        row = await conn.fetchrow(
            '''
            INSERT INTO transactions (
                listing_id, buyer_id, seller_id, amount, currency, fees,
                net_amount, status, payment_method, shipping_address
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, 'pending_payment', $8, $9)
            RETURNING *
            ''',
            as_uuid(data['listing_id']),
            data['buyer_id'],
            data['seller_id'],
            amount,
            data['currency'],
            fees,
            compute_net_amount(amount, fees),
            data['payment_method'],
            data['shipping_address']
        )
        return transaction_from_row(row)

    async def get(self, conn, transaction_id: Any,
                  for_update: bool = False) -> Optional[Dict[str, Any]]:
        """Fetch a transaction, optionally locking its row."""
        key = as_uuid(transaction_id)
        if key is None:
            return None
        lock = ' FOR UPDATE' if for_update else ''
        row = await conn.fetchrow(f'SELECT * FROM transactions WHERE id = $1{lock}', key)
        return transaction_from_row(row) if row else None

    async def update_status(
        self,
        conn,
        transaction_id: Any,
        expected_status: str,
        new_status: str,
        fields: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Move a transaction from expected_status to new_status.

        The update only matches while the row still has expected_status and
        bumps ``version``.

        Raises:
            InvalidStateError: If the row changed since it was read
        """
        fields = dict(fields or {})
        invalid = set(fields) - set(WRITABLE_FIELDS)
        if invalid:
            raise ValidationError(f"Cannot write fields: {sorted(invalid)}")

        params: List[Any] = [new_status]
        sets = ['status = $1', 'version = version + 1']
        for field, value in fields.items():
            params.append(value)
            sets.append(f"{field} = ${len(params)}")
        params.append(as_uuid(transaction_id))
        id_param = len(params)
        params.append(expected_status)

        row = await conn.fetchrow(
            f'''
            UPDATE transactions
            SET {', '.join(sets)}
            WHERE id = ${id_param} AND status = ${len(params)}
            RETURNING *
            ''',
            *params
        )
        if not row:
            raise InvalidStateError(
                f"Transaction {transaction_id} is no longer {expected_status}"
            )
        logger.info(f"Transaction {transaction_id} moved from {expected_status} to {new_status}")
        return transaction_from_row(row)

    async def update_fields(self, conn, transaction_id: Any,
                            fields: Dict[str, Any]) -> Dict[str, Any]:
        """Write non-status fields and bump ``version``."""
        if not fields:
            raise ValidationError("No fields to update")
        invalid = set(fields) - set(WRITABLE_FIELDS)
        if invalid:
            raise ValidationError(f"Cannot write fields: {sorted(invalid)}")

        params: List[Any] = []
        sets = ['version = version + 1']
        for field, value in fields.items():
            params.append(value)
            sets.append(f"{field} = ${len(params)}")
        params.append(as_uuid(transaction_id))

        row = await conn.fetchrow(
            f'''
            UPDATE transactions
            SET {', '.join(sets)}
            WHERE id = ${len(params)}
            RETURNING *
            ''',
            *params
        )
        if not row:
            raise InvalidStateError(f"Transaction {transaction_id} disappeared during update")
        return transaction_from_row(row)

    async def set_fees(self, conn, transaction_id: Any,
                       fees: Dict[str, Any]) -> Dict[str, Any]:
        """Replace the fee breakdown and recompute ``net_amount`` in SQL."""
        fees = normalize_fees(fees)
        row = await conn.fetchrow(
            '''
            UPDATE transactions
            SET fees = $1,
                net_amount = amount - $2::numeric - $3::numeric,
                version = version + 1
            WHERE id = $4
            RETURNING *
            ''',
            fees,
            fees['platform_fee'],
            fees['payment_fee'],
            as_uuid(transaction_id)
        )
        if not row:
            raise InvalidStateError(f"Transaction {transaction_id} disappeared during update")
        return transaction_from_row(row)

    async def add_event(
        self,
        conn,
        transaction_id: Any,
        event_type: str,
        description: str,
        payload: Optional[Dict[str, Any]] = None,
        actor: Optional[str] = None
    ) -> Dict[str, Any]:
        """Append a timeline event."""
        row = await conn.fetchrow(
            '''
            INSERT INTO transaction_events (transaction_id, event_type, description, payload, actor)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING *
            ''',
            as_uuid(transaction_id),
            event_type,
            description,
            payload or {},
            actor
        )
        return event_from_row(row)

    async def get_events(self, conn, transaction_id: Any) -> List[Dict[str, Any]]:
        """Timeline events, oldest first."""
        key = as_uuid(transaction_id)
        if key is None:
            return []
        rows = await conn.fetch(
            '''
            SELECT * FROM transaction_events
            WHERE transaction_id = $1
            ORDER BY created_at ASC, id ASC
            ''',
            key
        )
        return [event_from_row(row) for row in rows]

    async def find_for_user(self, conn, user_id: str, role: str = 'all',
                            status: Optional[str] = None) -> List[Dict[str, Any]]:
        """Transactions where the user is buyer, seller or either, newest first."""
        if role == 'buyer':
            where = 'buyer_id = $1'
        elif role == 'seller':
            where = 'seller_id = $1'
        else:
            where = '(buyer_id = $1 OR seller_id = $1)'

        params: List[Any] = [user_id]
        if status:
            params.append(status)
            where += f' AND status = ${len(params)}'

        rows = await conn.fetch(
            f'SELECT * FROM transactions WHERE {where} ORDER BY created_at DESC',
            *params
        )
        return [transaction_from_row(row) for row in rows]

    async def status_counts(self, conn, seller_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Per-status count and amount sum, optionally for one seller."""
        if seller_id:
            rows = await conn.fetch(
                '''
                SELECT status, COUNT(*) AS count, COALESCE(SUM(amount), 0) AS amount
                FROM transactions
                WHERE seller_id = $1
                GROUP BY status
                ''',
                seller_id
            )
        else:
            rows = await conn.fetch(
                '''
                SELECT status, COUNT(*) AS count, COALESCE(SUM(amount), 0) AS amount
                FROM transactions
                GROUP BY status
                '''
            )
        return [
            {'status': row['status'], 'count': row['count'], 'amount': row['amount']}
            for row in rows
        ]

    async def find_stale_pending(self, conn, older_than_minutes: int) -> List[str]:
        """Ids of pending_payment transactions older than the given window."""
        rows = await conn.fetch(
            '''
            SELECT id FROM transactions
            WHERE status = 'pending_payment'
            AND created_at < now() - make_interval(mins => $1)
            ORDER BY created_at
            ''',
            older_than_minutes
        )
        return [str(row['id']) for row in rows]
