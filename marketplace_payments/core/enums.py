"""Enumerations shared across the payment core."""
from enum import Enum


class PaymentStatus(str, Enum):
    """
    Payment lifecycle states.

    State machine:
    PENDING → PROCESSING → COMPLETED → REFUNDED
       ↓          ↓
    EXPIRED    FAILED / CANCELLED
       (PENDING may also go straight to FAILED or CANCELLED)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    """Supported settlement methods."""

    ORANGE_MONEY = "orange_money"
    BANK_TRANSFER = "bank_transfer"
    CASH_ON_DELIVERY = "cash_on_delivery"


class FraudRecommendation(str, Enum):
    """Outcome of fraud screening."""

    APPROVE = "approve"
    REVIEW = "review"
    BLOCK = "block"
