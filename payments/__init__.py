"""Payments module: the gateway collaborator used by the transaction workflow.

This module provides:
- Fee computation for each payment method
- Payment method validation
- A sandbox gateway for development and a remote HTTP gateway client
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from errors import UpstreamFailure, ValidationError
from .gateways import (
    PaymentGateway,
    SandboxPaymentGateway,
    HttpPaymentGateway,
    PaymentResult,
    RefundResult,
    PaymentStatus,
)

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
DEFAULT_PLATFORM_FEE_RATE = Decimal('0.05')

PAYMENT_METHODS: List[Dict[str, Any]] = [
    {
        'type': 'pix',
        'name': 'PIX',
        'description': 'Instant payment system',
        'processing_time': 'Instant',
        'fees': '1% (max R$10)',
        'supported': True,
    },
    {
        'type': 'credit_card',
        'name': 'Credit Card',
        'description': 'Visa, Mastercard, Elo',
        'processing_time': '1-2 business days',
        'fees': '2.9% + R$0.30',
        'supported': True,
    },
    {
        'type': 'debit_card',
        'name': 'Debit Card',
        'description': 'Visa Debit, Mastercard Debit',
        'processing_time': '1 business day',
        'fees': '2.9% + R$0.30',
        'supported': True,
    },
    {
        'type': 'bank_transfer',
        'name': 'Bank Transfer',
        'description': 'TED/DOC transfer',
        'processing_time': '1-3 business days',
        'fees': '1.5% (max R$15)',
        'supported': True,
    },
    {
        'type': 'digital_wallet',
        'name': 'Digital Wallet',
        'description': 'PicPay, Mercado Pago',
        'processing_time': 'Instant',
        'fees': '2.5%',
        'supported': False,
    },
]


class PaymentGatewayError(UpstreamFailure):
    """Raised when the payment gateway cannot be reached or answers garbage."""
    pass


def to_cents(value: Any) -> Decimal:
    """Round a money value half-up to cents."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def payment_processing_fee(amount: Decimal, payment_method: str) -> Decimal:
    """Fee charged by the payment provider for the given method."""
    amount = Decimal(str(amount))
    if payment_method == 'pix':
        fee = min(amount * Decimal('0.01'), Decimal('10'))
    elif payment_method in ('credit_card', 'debit_card'):
        fee = amount * Decimal('0.029') + Decimal('0.30')
    elif payment_method == 'bank_transfer':
        fee = min(amount * Decimal('0.015'), Decimal('15'))
    else:
        fee = amount * Decimal('0.025')
    return to_cents(fee)


def calculate_fees(
    amount: Any,
    payment_method: str,
    platform_fee_rate: Optional[Decimal] = None
) -> Dict[str, Decimal]:
    """Calculate the platform and payment fees for a sale.

    Args:
        amount: Listing price the fees are computed on
        payment_method: Payment method type
        platform_fee_rate: Fraction kept by the platform (defaults to 5%)

    Returns:
        Dict with platform_fee, payment_fee, total_fees and net_amount
    """
    amount = to_cents(amount)
    rate = DEFAULT_PLATFORM_FEE_RATE if platform_fee_rate is None else Decimal(str(platform_fee_rate))

    platform_fee = to_cents(amount * rate)
    payment_fee = payment_processing_fee(amount, payment_method)
    total_fees = platform_fee + payment_fee

    return {
        'platform_fee': platform_fee,
        'payment_fee': payment_fee,
        'total_fees': total_fees,
        'net_amount': amount - total_fees,
    }


def get_available_payment_methods() -> List[Dict[str, Any]]:
    """List the payment methods offered to buyers."""
    return [dict(method) for method in PAYMENT_METHODS]


def validate_payment_method(payment_method: Dict[str, Any]) -> List[str]:
    """Validate a payment method and its details.

    Args:
        payment_method: Dict with ``type`` and optional ``details``

    Returns:
        List of validation error messages, empty when valid
    """
    errors: List[str] = []
    method_type = (payment_method or {}).get('type')
    details = (payment_method or {}).get('details') or {}

    if not method_type:
        errors.append('Payment method type is required')
        return errors

    supported = {m['type'] for m in PAYMENT_METHODS if m['supported']}
    if method_type not in supported:
        errors.append(f'Unsupported payment method type: {method_type}')
        return errors

    if method_type in ('credit_card', 'debit_card'):
        if not details.get('card_number') and not details.get('card_token'):
            errors.append('Card number is required')
        if not details.get('card_token') and (
                not details.get('expiry_month') or not details.get('expiry_year')):
            errors.append('Card expiry date is required')
        if not details.get('card_token') and not details.get('cvv'):
            errors.append('CVV is required')
    elif method_type == 'bank_transfer':
        if not details.get('bank_code'):
            errors.append('Bank code is required for bank transfer')

    return errors


def ensure_payment_method(payment_method: Dict[str, Any]) -> str:
    """Validate a payment method and return its type, or raise ValidationError."""
    errors = validate_payment_method(payment_method)
    if errors:
        raise ValidationError('Invalid payment method', {'errors': errors})
    return payment_method['type']


def create_gateway(settings: Optional[Dict[str, Any]] = None) -> PaymentGateway:
    """Build the configured payment gateway.

    Args:
        settings: Settings dict; defaults to the loaded settings.conf

    Returns:
        A PaymentGateway implementation
    """
    if settings is None:
        from config import settings_conf
        settings = settings_conf

    kind = settings.get('payment_gateway', 'sandbox')
    if kind == 'http':
        logger.info(f"Using HTTP payment gateway at {settings['payment_gateway_url']}")
        return HttpPaymentGateway(
            base_url=settings['payment_gateway_url'],
            api_key=settings.get('payment_gateway_key') or None,
            timeout=settings.get('payment_timeout_seconds', 10),
        )
    logger.info("Using sandbox payment gateway")
    return SandboxPaymentGateway()


__all__ = [
    'PaymentGateway',
    'SandboxPaymentGateway',
    'HttpPaymentGateway',
    'PaymentResult',
    'RefundResult',
    'PaymentStatus',
    'PaymentGatewayError',
    'calculate_fees',
    'payment_processing_fee',
    'to_cents',
    'get_available_payment_methods',
    'validate_payment_method',
    'ensure_payment_method',
    'create_gateway',
]
