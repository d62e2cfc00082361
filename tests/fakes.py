"""In-memory stand-ins for the database pool, the stores and the payment gateway.

FakeDatabase behaves like an asyncpg pool for the workflow service:
``conn.transaction()`` rolls back every write made inside it when an
exception escapes, and rows locked with ``for_update`` stay locked until the
transaction ends, so concurrent callers queue up the way they would on
PostgreSQL.
"""

import asyncio
import copy
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from errors import InvalidStateError, UpstreamFailure, ValidationError
from listings import LISTING_STATUSES, ListingError, ListingNotFoundError, listing_from_row
from payments import PaymentGateway, PaymentResult, RefundResult, PaymentStatus, to_cents
from transactions.store import (
    WRITABLE_FIELDS,
    compute_net_amount,
    event_from_row,
    normalize_fees,
    transaction_from_row,
)
from transactions.state import TERMINAL_STATUSES

_KEEP = object()


class FakeTransaction:
    def __init__(self, conn: 'FakeConnection'):
        self.conn = conn

    async def __aenter__(self):
        self.conn.undo = []
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None:
            for restore in reversed(self.conn.undo):
                restore()
        self.conn.undo = None
        for lock in self.conn.held:
            lock.release()
        self.conn.held = []
        return False


class FakeConnection:
    def __init__(self, db: 'FakeDatabase'):
        self.db = db
        self.undo: Optional[List] = None
        self.held: List[asyncio.Lock] = []

    def transaction(self) -> FakeTransaction:
        return FakeTransaction(self)

    async def lock(self, table: str, key: str) -> None:
        # Outside a transaction FOR UPDATE releases immediately, as in autocommit
        if self.undo is None:
            return
        lock = self.db.lock_for(table, key)
        if lock in self.held:
            return
        await lock.acquire()
        self.held.append(lock)

    def write(self, table: str, key: str, row: Dict[str, Any]) -> None:
        rows = self.db.tables[table]
        if self.undo is not None:
            if key in rows:
                previous = rows[key]
                self.undo.append(lambda: rows.__setitem__(key, previous))
            else:
                self.undo.append(lambda: rows.pop(key, None))
        rows[key] = row

    def append_event(self, event: Dict[str, Any]) -> None:
        events = self.db.events
        events.append(event)
        if self.undo is not None:
            self.undo.append(lambda: events.remove(event))


class FakeDatabase:
    """Pool-like object handing out FakeConnections."""

    def __init__(self):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {'transactions': {}, 'listings': {}}
        self.events: List[Dict[str, Any]] = []
        self._locks: Dict[tuple, asyncio.Lock] = {}

    def lock_for(self, table: str, key: str) -> asyncio.Lock:
        return self._locks.setdefault((table, key), asyncio.Lock())

    @asynccontextmanager
    async def acquire(self):
        conn = FakeConnection(self)
        yield conn

    def row(self, table: str, key: str) -> Optional[Dict[str, Any]]:
        row = self.tables[table].get(str(key))
        return copy.deepcopy(row) if row is not None else None

    def events_for(self, transaction_id: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e['transaction_id'] == str(transaction_id)]


class FakeListingManager:
    """ListingManager with rows kept in a FakeDatabase."""

    def __init__(self, db: FakeDatabase, fail_on_status: Optional[str] = None):
        self.db = db
        self.fail_on_status = fail_on_status
        self.status_calls: List[tuple] = []

    def add_listing(self, **overrides) -> str:
        now = datetime.now(timezone.utc)
        row = {
            'id': str(uuid.uuid4()),
            'item_id': None,
            'seller_id': 'seller-1',
            'buyer_id': None,
            'title': 'Vintage denim jacket',
            'description': 'Light wash, size M',
            'price': Decimal('250.00'),
            'original_price': None,
            'currency': 'BRL',
            'condition_info': {'status': 'excellent', 'authenticity': 'guaranteed'},
            'shipping_options': {'domestic': {'available': True, 'cost': '15.00'}},
            'images': ['https://img.example/jacket.jpg'],
            'category': 'outerwear',
            'tags': ['levis'],
            'location': {},
            'status': 'active',
            'views': 0,
            'likes': 0,
            'watchers': 0,
            'expires_at': None,
            'created_at': now,
            'updated_at': now,
        }
        row.update(overrides)
        self.db.tables['listings'][row['id']] = row
        return row['id']

    async def get_listing(self, listing_id, conn=None, for_update: bool = False) -> Dict[str, Any]:
        if conn is not None and for_update:
            await conn.lock('listings', str(listing_id))
        row = self.db.row('listings', listing_id)
        if row is None:
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        return listing_from_row(row)

    async def update_status(self, listing_id, status: str, conn=None, buyer_id: Any = _KEEP) -> Dict[str, Any]:
        if status not in LISTING_STATUSES:
            raise ListingError(f"Invalid listing status: {status}")
        if self.fail_on_status == status:
            raise UpstreamFailure(f"Listing store unavailable while setting {status}")

        row = self.db.row('listings', listing_id)
        if row is None:
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        row['status'] = status
        if buyer_id is not _KEEP:
            row['buyer_id'] = buyer_id
        if conn is not None:
            conn.write('listings', row['id'], row)
        else:
            self.db.tables['listings'][row['id']] = row
        self.status_calls.append((str(listing_id), status))
        return listing_from_row(row)


class FakeTransactionStore:
    """TransactionStore with rows kept in a FakeDatabase."""

    def __init__(self, db: FakeDatabase):
        self.db = db
        self._sequence = 0

    def add_transaction(self, **overrides) -> str:
        """Seed a transaction row directly."""
        now = datetime.now(timezone.utc)
        row = {
            'id': str(uuid.uuid4()),
            'listing_id': None,
            'buyer_id': 'buyer-1',
            'seller_id': 'seller-1',
            'amount': Decimal('265.00'),
            'currency': 'BRL',
            'fees': {'platform_fee': '12.50', 'payment_fee': '7.69', 'shipping_fee': '15.00'},
            'status': 'pending_payment',
            'payment_method': 'pix',
            'payment_id': None,
            'shipping_address': {'city': 'São Paulo', 'postal_code': '01000-000'},
            'shipping_method': None,
            'tracking_number': None,
            'estimated_delivery': None,
            'actual_delivery': None,
            'version': 1,
            'created_at': now,
            'updated_at': now,
        }
        row.update(overrides)
        row['net_amount'] = compute_net_amount(row['amount'], row['fees'])
        self.db.tables['transactions'][row['id']] = row
        return row['id']

    def _row(self, transaction_id) -> Optional[Dict[str, Any]]:
        return self.db.row('transactions', transaction_id)

    def _save(self, conn, row: Dict[str, Any]) -> Dict[str, Any]:
        row['updated_at'] = datetime.now(timezone.utc)
        conn.write('transactions', row['id'], row)
        return transaction_from_row(row)

    async def insert(self, conn, data: Dict[str, Any]) -> Dict[str, Any]:
        if 'net_amount' in data:
            raise ValidationError("net_amount is computed and cannot be set")
        for existing in self.db.tables['transactions'].values():
            if existing['listing_id'] == str(data['listing_id']) and \
                    existing['status'] not in TERMINAL_STATUSES:
                raise InvalidStateError("Listing already has an open transaction")

        now = datetime.now(timezone.utc)
        fees = normalize_fees(data['fees'])
        row = {
            'id': str(uuid.uuid4()),
            'listing_id': str(data['listing_id']),
            'buyer_id': data['buyer_id'],
            'seller_id': data['seller_id'],
            'amount': to_cents(data['amount']),
            'currency': data['currency'],
            'fees': fees,
            'net_amount': compute_net_amount(data['amount'], fees),
            'status': 'pending_payment',
            'payment_method': data['payment_method'],
            'payment_id': None,
            'shipping_address': data['shipping_address'],
            'shipping_method': None,
            'tracking_number': None,
            'estimated_delivery': None,
            'actual_delivery': None,
            'version': 1,
            'created_at': now,
            'updated_at': now,
        }
        conn.write('transactions', row['id'], row)
        return transaction_from_row(row)

    async def get(self, conn, transaction_id, for_update: bool = False) -> Optional[Dict[str, Any]]:
        if for_update:
            await conn.lock('transactions', str(transaction_id))
        row = self._row(transaction_id)
        return transaction_from_row(row) if row else None

    async def update_status(self, conn, transaction_id, expected_status: str, new_status: str,
                            fields: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        fields = dict(fields or {})
        if set(fields) - set(WRITABLE_FIELDS):
            raise ValidationError(f"Cannot write fields: {sorted(set(fields) - set(WRITABLE_FIELDS))}")
        row = self._row(transaction_id)
        if row is None or row['status'] != expected_status:
            raise InvalidStateError(f"Transaction {transaction_id} is no longer {expected_status}")
        row.update(fields)
        row['status'] = new_status
        row['version'] += 1
        return self._save(conn, row)

    async def update_fields(self, conn, transaction_id, fields: Dict[str, Any]) -> Dict[str, Any]:
        if not fields:
            raise ValidationError("No fields to update")
        if set(fields) - set(WRITABLE_FIELDS):
            raise ValidationError(f"Cannot write fields: {sorted(set(fields) - set(WRITABLE_FIELDS))}")
        row = self._row(transaction_id)
        if row is None:
            raise InvalidStateError(f"Transaction {transaction_id} disappeared during update")
        row.update(fields)
        row['version'] += 1
        return self._save(conn, row)

    async def set_fees(self, conn, transaction_id, fees: Dict[str, Any]) -> Dict[str, Any]:
        row = self._row(transaction_id)
        if row is None:
            raise InvalidStateError(f"Transaction {transaction_id} disappeared during update")
        row['fees'] = normalize_fees(fees)
        row['net_amount'] = compute_net_amount(row['amount'], row['fees'])
        row['version'] += 1
        return self._save(conn, row)

    async def add_event(self, conn, transaction_id, event_type: str, description: str,
                        payload: Optional[Dict[str, Any]] = None,
                        actor: Optional[str] = None) -> Dict[str, Any]:
        self._sequence += 1
        event = {
            'id': str(uuid.uuid4()),
            'transaction_id': str(transaction_id),
            'event_type': event_type,
            'description': description,
            'payload': copy.deepcopy(payload or {}),
            'actor': actor,
            'created_at': datetime.now(timezone.utc),
            'sequence': self._sequence,
        }
        conn.append_event(event)
        return event_from_row(event)

    async def get_events(self, conn, transaction_id) -> List[Dict[str, Any]]:
        events = sorted(self.db.events_for(transaction_id), key=lambda e: e['sequence'])
        return [event_from_row(e) for e in events]

    async def find_for_user(self, conn, user_id: str, role: str = 'all',
                            status: Optional[str] = None) -> List[Dict[str, Any]]:
        rows = []
        for row in self.db.tables['transactions'].values():
            if role == 'buyer' and row['buyer_id'] != user_id:
                continue
            if role == 'seller' and row['seller_id'] != user_id:
                continue
            if role == 'all' and user_id not in (row['buyer_id'], row['seller_id']):
                continue
            if status and row['status'] != status:
                continue
            rows.append(row)
        rows.sort(key=lambda r: r['created_at'], reverse=True)
        return [transaction_from_row(r) for r in rows]

    async def status_counts(self, conn, seller_id: Optional[str] = None) -> List[Dict[str, Any]]:
        counts: Dict[str, Dict[str, Any]] = {}
        for row in self.db.tables['transactions'].values():
            if seller_id and row['seller_id'] != seller_id:
                continue
            entry = counts.setdefault(row['status'], {'status': row['status'], 'count': 0, 'amount': Decimal('0')})
            entry['count'] += 1
            entry['amount'] += row['amount']
        return list(counts.values())

    async def find_stale_pending(self, conn, older_than_minutes: int) -> List[str]:
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
        return [
            row['id'] for row in self.db.tables['transactions'].values()
            if row['status'] == 'pending_payment' and row['created_at'] < cutoff
        ]


class FakePaymentGateway(PaymentGateway):
    """Scripted gateway that records every call."""

    def __init__(self, payment_status: str = PaymentStatus.COMPLETED, decline: bool = False,
                 refund_success: bool = True, transaction_fee: Optional[Decimal] = None,
                 error: Optional[Exception] = None, settled_status: Optional[str] = None):
        self.payment_status = payment_status
        self.decline = decline
        self.refund_success = refund_success
        self.transaction_fee = transaction_fee
        self.error = error
        self.settled_status = settled_status
        self.payments: List[Dict[str, Any]] = []
        self.refunds: List[Dict[str, Any]] = []
        self.status_checks: List[str] = []

    async def process_payment(self, request: Dict[str, Any]) -> PaymentResult:
        await asyncio.sleep(0)
        self.payments.append(request)
        if self.error is not None:
            raise self.error
        if self.decline:
            return PaymentResult(success=False, status=PaymentStatus.FAILED,
                                 error_message='Insufficient funds')
        return PaymentResult(
            success=True,
            payment_id=f"pay_{len(self.payments)}",
            status=self.payment_status,
            transaction_fee=self.transaction_fee,
        )

    async def refund_payment(self, transaction_ref: str, amount: Optional[Decimal] = None,
                             payment_id: Optional[str] = None) -> RefundResult:
        # Yield so a concurrent caller gets a chance to run mid-refund
        await asyncio.sleep(0)
        self.refunds.append({'transaction_id': transaction_ref, 'amount': amount, 'payment_id': payment_id})
        if self.error is not None:
            raise self.error
        if not self.refund_success:
            return RefundResult(success=False, status=PaymentStatus.FAILED,
                                error_message='Refund window closed')
        return RefundResult(success=True, refund_id=f"ref_{len(self.refunds)}",
                            amount=amount, status=PaymentStatus.COMPLETED)

    async def get_payment_status(self, payment_id: str) -> str:
        self.status_checks.append(payment_id)
        return self.settled_status or self.payment_status
