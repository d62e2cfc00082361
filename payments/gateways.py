"""Payment gateway implementations.

The workflow service only talks to ``PaymentGateway``; concrete gateways are
chosen by ``payments.create_gateway`` from settings.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)


class PaymentStatus:
    """Provider-side payment statuses."""
    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'
    REFUNDED = 'refunded'


@dataclass
class PaymentResult:
    success: bool
    payment_id: Optional[str] = None
    status: str = PaymentStatus.PENDING
    transaction_fee: Optional[Decimal] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RefundResult:
    success: bool
    refund_id: Optional[str] = None
    amount: Optional[Decimal] = None
    status: str = PaymentStatus.PENDING
    error_message: Optional[str] = None


class PaymentGateway:
    """Interface every payment gateway implements."""

    async def process_payment(self, request: Dict[str, Any]) -> PaymentResult:
        """Charge the buyer.

        Args:
            request: Dict with transaction_id, amount, currency,
                payment_method and payment_details

        Returns:
            PaymentResult; declines are ``success=False``, not exceptions
        """
        raise NotImplementedError

    async def refund_payment(
        self,
        transaction_ref: str,
        amount: Optional[Decimal] = None,
        payment_id: Optional[str] = None
    ) -> RefundResult:
        """Refund a captured payment, fully when amount is None."""
        raise NotImplementedError

    async def get_payment_status(self, payment_id: str) -> str:
        raise NotImplementedError


class SandboxPaymentGateway(PaymentGateway):
    """In-process gateway for development.

    Payments succeed unless ``payment_details['simulate_decline']`` is set.
    Card payments report ``completed``; bank transfers report ``pending`` and
    settle the first time their status is checked.
    """

    def __init__(self) -> None:
        self._payments: Dict[str, Dict[str, Any]] = {}

    async def process_payment(self, request: Dict[str, Any]) -> PaymentResult:
        # Imported here to avoid a cycle with the package module
        from . import payment_processing_fee

        method = request.get('payment_method', '')
        details = request.get('payment_details') or {}
        amount = Decimal(str(request['amount']))

        if details.get('simulate_decline'):
            logger.info(f"Sandbox declined payment for {request.get('transaction_id')}")
            return PaymentResult(
                success=False,
                status=PaymentStatus.FAILED,
                error_message='Payment declined by issuer'
            )

        payment_id = f"{method}_{uuid.uuid4().hex[:16]}"
        status = PaymentStatus.PENDING if method == 'bank_transfer' else PaymentStatus.COMPLETED
        self._payments[payment_id] = {
            'transaction_id': request.get('transaction_id'),
            'amount': amount,
            'status': status,
        }

        return PaymentResult(
            success=True,
            payment_id=payment_id,
            status=status,
            transaction_fee=payment_processing_fee(amount, method),
        )

    async def refund_payment(
        self,
        transaction_ref: str,
        amount: Optional[Decimal] = None,
        payment_id: Optional[str] = None
    ) -> RefundResult:
        payment = self._payments.get(payment_id) if payment_id else None
        if payment is not None:
            payment['status'] = PaymentStatus.REFUNDED
            if amount is None:
                amount = payment['amount']

        return RefundResult(
            success=True,
            refund_id=f"refund_{uuid.uuid4().hex[:16]}",
            amount=amount,
            status=PaymentStatus.COMPLETED,
        )

    async def get_payment_status(self, payment_id: str) -> str:
        payment = self._payments.get(payment_id)
        if payment is None:
            return PaymentStatus.FAILED
        if payment['status'] == PaymentStatus.PENDING:
            payment['status'] = PaymentStatus.COMPLETED
        return payment['status']


class HttpPaymentGateway(PaymentGateway):
    """Client for a remote payment provider speaking JSON over HTTP."""

    def __init__(self, base_url: str, api_key: Optional[str] = None,
                 timeout: float = 10, session: Optional[requests.Session] = None) -> None:
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        if api_key:
            self.session.headers['Authorization'] = f'Bearer {api_key}'

    async def _call(self, method: str, path: str,
                    payload: Optional[Dict[str, Any]] = None) -> requests.Response:
        """Run a blocking request in a worker thread."""
        # Imported here to avoid a cycle with the package module
        from . import PaymentGatewayError

        url = f"{self.base_url}{path}"
        try:
            response = await asyncio.to_thread(
                self.session.request, method, url, json=payload, timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Payment gateway request {method} {url} failed: {e}")
            raise PaymentGatewayError(f"Payment gateway unavailable: {e}")

        # 402 is a business decline, the caller reads it from the body
        if response.status_code >= 400 and response.status_code != 402:
            logger.error(f"Payment gateway returned {response.status_code} for {method} {url}")
            raise PaymentGatewayError(
                f"Payment gateway error: HTTP {response.status_code}",
                {'status_code': response.status_code}
            )
        return response

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        from . import PaymentGatewayError

        try:
            data = response.json()
        except ValueError:
            raise PaymentGatewayError("Payment gateway returned invalid JSON")
        if not isinstance(data, dict):
            raise PaymentGatewayError("Payment gateway returned an unexpected payload")
        return data

    async def process_payment(self, request: Dict[str, Any]) -> PaymentResult:
        payload = dict(request)
        payload['amount'] = str(payload['amount'])
        response = await self._call('POST', '/payments', payload)
        data = self._json(response)

        if response.status_code == 402 or not data.get('success', True):
            return PaymentResult(
                success=False,
                status=data.get('status', PaymentStatus.FAILED),
                error_message=data.get('error_message') or 'Payment declined'
            )

        fee = data.get('transaction_fee')
        return PaymentResult(
            success=True,
            payment_id=data.get('payment_id'),
            status=data.get('status', PaymentStatus.PENDING),
            transaction_fee=Decimal(str(fee)) if fee is not None else None,
            metadata=data.get('metadata') or {},
        )

    async def refund_payment(
        self,
        transaction_ref: str,
        amount: Optional[Decimal] = None,
        payment_id: Optional[str] = None
    ) -> RefundResult:
        payload = {
            'transaction_id': transaction_ref,
            'payment_id': payment_id,
            'amount': str(amount) if amount is not None else None,
        }
        response = await self._call('POST', '/refunds', payload)
        data = self._json(response)

        if response.status_code == 402 or not data.get('success', True):
            return RefundResult(
                success=False,
                status=data.get('status', PaymentStatus.FAILED),
                error_message=data.get('error_message') or 'Refund declined'
            )

        refunded = data.get('amount')
        return RefundResult(
            success=True,
            refund_id=data.get('refund_id'),
            amount=Decimal(str(refunded)) if refunded is not None else amount,
            status=data.get('status', PaymentStatus.COMPLETED),
        )

    async def get_payment_status(self, payment_id: str) -> str:
        response = await self._call('GET', f'/payments/{payment_id}')
        return self._json(response).get('status', PaymentStatus.PENDING)
