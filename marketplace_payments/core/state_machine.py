"""
Payment state machine.

The allowed-transition table is the single source of truth for status changes.
``PaymentStore.transition`` consults it before every write.
"""
from typing import Dict, FrozenSet, Optional, Union

from marketplace_payments.core.enums import PaymentStatus
from marketplace_payments.core.exceptions import InvalidTransitionError, PaymentValidationError

StatusLike = Union[PaymentStatus, str]

ALLOWED_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {
            PaymentStatus.PROCESSING,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELLED,
            PaymentStatus.EXPIRED,
        }
    ),
    PaymentStatus.PROCESSING: frozenset(
        {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
    ),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.EXPIRED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

# Column written alongside the status when a payment enters each state.
STATUS_TIMESTAMP_FIELDS: Dict[PaymentStatus, str] = {
    PaymentStatus.PROCESSING: "initiated_at",
    PaymentStatus.COMPLETED: "completed_at",
    PaymentStatus.FAILED: "failed_at",
    PaymentStatus.CANCELLED: "cancelled_at",
    PaymentStatus.EXPIRED: "expired_at",
    PaymentStatus.REFUNDED: "refunded_at",
}

RETRYABLE_STATUSES: FrozenSet[PaymentStatus] = frozenset(
    {PaymentStatus.FAILED, PaymentStatus.EXPIRED, PaymentStatus.CANCELLED}
)


def coerce_status(status: StatusLike) -> PaymentStatus:
    """
    Convert a raw status value to ``PaymentStatus``.

    Raises:
        PaymentValidationError: If the value is not a known status
    """
    try:
        return PaymentStatus(status)
    except ValueError as e:
        raise PaymentValidationError(f"Unknown payment status: {status}") from e


def can_transition(from_status: StatusLike, to_status: StatusLike) -> bool:
    """Check whether ``from_status → to_status`` is in the allowed table."""
    return coerce_status(to_status) in ALLOWED_TRANSITIONS[coerce_status(from_status)]


def validate_transition(from_status: StatusLike, to_status: StatusLike) -> None:
    """
    Ensure a status change is allowed.

    Args:
        from_status: Current status
        to_status: Requested status

    Raises:
        InvalidTransitionError: If the pair is not in the allowed table
    """
    source = coerce_status(from_status)
    target = coerce_status(to_status)
    if target not in ALLOWED_TRANSITIONS[source]:
        raise InvalidTransitionError(source.value, target.value)


def is_terminal(status: StatusLike) -> bool:
    """Terminal statuses have no outgoing transitions."""
    return not ALLOWED_TRANSITIONS[coerce_status(status)]


def can_retry(status: StatusLike) -> bool:
    """Only failed, expired or cancelled payments may be retried."""
    return coerce_status(status) in RETRYABLE_STATUSES


def timestamp_field(status: StatusLike) -> Optional[str]:
    """Name of the timestamp column set on entry into ``status``, if any."""
    return STATUS_TIMESTAMP_FIELDS.get(coerce_status(status))
