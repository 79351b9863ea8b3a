"""Input validation helpers for payment requests."""
import re
from typing import Optional, Union

from marketplace_payments.core.enums import PaymentMethod
from marketplace_payments.core.exceptions import PaymentValidationError, UnsupportedMethodError

# Burkina Faso numbers: +226 followed by exactly eight digits
PHONE_PATTERN = re.compile(r"^\+226\d{8}$")

# Methods that settle against the customer's phone number
PHONE_REQUIRED_METHODS = frozenset({PaymentMethod.ORANGE_MONEY})


def is_valid_phone(phone: Optional[str]) -> bool:
    """Check a phone number against the +226XXXXXXXX format."""
    return bool(phone) and PHONE_PATTERN.fullmatch(phone) is not None


def parse_method(method: Union[PaymentMethod, str]) -> PaymentMethod:
    """
    Parse a payment method value.

    Raises:
        UnsupportedMethodError: If the method is unknown
    """
    try:
        return PaymentMethod(method)
    except ValueError as e:
        raise UnsupportedMethodError(method) from e


def validate_customer_phone(method: PaymentMethod, phone: Optional[str]) -> None:
    """
    Apply the method-specific phone rule.

    Mobile-money payments need a well-formed phone. For the other methods the
    phone is optional and a malformed one is left to fraud screening.

    Raises:
        PaymentValidationError: If the phone is missing or malformed for a
            method that requires it
    """
    if method not in PHONE_REQUIRED_METHODS:
        return
    if not phone:
        raise PaymentValidationError(f"Phone number is required for {method.value}")
    if not is_valid_phone(phone):
        raise PaymentValidationError("Phone number must match +226XXXXXXXX")
