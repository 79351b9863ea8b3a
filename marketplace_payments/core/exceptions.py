"""
Payment error taxonomy.

Every error carries a stable machine-readable ``code`` and a human-readable
``message``; ``http_status`` is the status the API layer answers with.
"""
from typing import Any, Optional


class PaymentError(Exception):
    """Base exception for payment processing errors."""

    code = "payment_error"
    http_status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        """Serialize for an API error body."""
        return {"error": self.code, "message": self.message}


class PaymentValidationError(PaymentError):
    """Raised when payment input validation fails."""

    code = "validation_error"
    http_status = 400


class UnsupportedMethodError(PaymentValidationError):
    """Raised for a payment method with no registered gateway."""

    code = "unsupported_method"

    def __init__(self, method: Any) -> None:
        super().__init__(f"Unsupported payment method: {method}")
        self.method = method


class NotFoundError(PaymentError):
    """Raised when an order, payment or reference does not exist."""

    code = "not_found"
    http_status = 404


class InvalidTransitionError(PaymentError):
    """Raised when a status change is not allowed from the current status."""

    code = "invalid_transition"
    http_status = 409

    def __init__(self, from_status: Optional[str], to_status: str) -> None:
        super().__init__(f"Cannot transition payment from {from_status} to {to_status}")
        self.from_status = from_status
        self.to_status = to_status

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body.update(from_status=self.from_status, to_status=self.to_status)
        return body


class FraudBlockedError(PaymentError):
    """Raised when fraud screening blocks a payment."""

    code = "fraud_blocked"
    http_status = 402

    def __init__(self, reference: str, risk_score: int, flags: list[str]) -> None:
        super().__init__("Payment blocked by fraud screening")
        self.reference = reference
        self.risk_score = risk_score
        self.flags = flags


class GatewayError(PaymentError):
    """Raised when a settlement gateway times out or fails unexpectedly."""

    code = "gateway_error"
    http_status = 502

    def __init__(self, message: str, reference: Optional[str] = None) -> None:
        super().__init__(message)
        self.reference = reference


class SignatureInvalidError(PaymentError):
    """Raised when a webhook fails authentication. Deliberately uninformative."""

    code = "signature_invalid"
    http_status = 401

    def __init__(self) -> None:
        super().__init__("Webhook rejected")
