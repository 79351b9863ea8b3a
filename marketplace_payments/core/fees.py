"""
Processing fee calculation.

Fees are pure functions of (method, amount) and are computed with ``Decimal``
so the stored ``fees`` and ``net_amount`` columns are exact.
"""
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Union

from marketplace_payments.core.enums import PaymentMethod
from marketplace_payments.core.exceptions import PaymentValidationError, UnsupportedMethodError

CENT = Decimal("0.01")

AmountLike = Union[Decimal, int, str]


def _orange_money_fee(amount: Decimal) -> Decimal:
    # 1.5% + 50, never more than 2%
    return min(amount * Decimal("0.015") + Decimal("50"), amount * Decimal("0.02"))


def _bank_transfer_fee(amount: Decimal) -> Decimal:
    # 1% + 100, capped at 500
    return min(amount * Decimal("0.01") + Decimal("100"), Decimal("500"))


def _cash_on_delivery_fee(amount: Decimal) -> Decimal:
    return Decimal("0")


FEE_RULES: Dict[PaymentMethod, Callable[[Decimal], Decimal]] = {
    PaymentMethod.ORANGE_MONEY: _orange_money_fee,
    PaymentMethod.BANK_TRANSFER: _bank_transfer_fee,
    PaymentMethod.CASH_ON_DELIVERY: _cash_on_delivery_fee,
}


def to_amount(value: AmountLike) -> Decimal:
    """
    Normalize a monetary value to a two-decimal ``Decimal``.

    Raises:
        PaymentValidationError: If the value is not a number
    """
    if isinstance(value, float):
        value = str(value)
    try:
        parsed = Decimal(value)
    except (ArithmeticError, TypeError, ValueError) as e:
        raise PaymentValidationError(f"Invalid amount: {value}") from e
    if not parsed.is_finite():
        raise PaymentValidationError(f"Invalid amount: {value}")
    return parsed.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_fee(method: Union[PaymentMethod, str], amount: AmountLike) -> Decimal:
    """
    Calculate the processing fee for a payment.

    The fee is capped at the amount itself so that ``net_amount`` is never
    negative.

    Args:
        method: Payment method
        amount: Payment amount (must be positive)

    Returns:
        Decimal: Fee rounded to two decimals

    Raises:
        UnsupportedMethodError: If the method is unknown
        PaymentValidationError: If the amount is not positive
    """
    try:
        rule = FEE_RULES[PaymentMethod(method)]
    except (ValueError, KeyError) as e:
        raise UnsupportedMethodError(method) from e

    value = to_amount(amount)
    if value <= 0:
        raise PaymentValidationError("Amount must be positive")

    fee = min(rule(value), value)
    return fee.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_net_amount(amount: AmountLike, fees: AmountLike) -> Decimal:
    """Net amount credited to the merchant."""
    return (to_amount(amount) - to_amount(fees)).quantize(CENT, rounding=ROUND_HALF_UP)
