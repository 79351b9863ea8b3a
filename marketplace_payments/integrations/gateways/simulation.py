"""
Simulated Orange Money provider.

The outcome of a simulated payment is chosen by a named policy so tests and
demos can swap the rule without touching the gateway.
"""
import uuid
from enum import Enum
from typing import Any, Dict, Optional, Protocol

import structlog

from marketplace_payments.database.models import Payment

logger = structlog.get_logger(__name__)


class SimulatedOutcome(str, Enum):
    """What the simulated provider answers."""

    APPROVED = "approved"
    OTP_REQUIRED = "otp_required"
    INVALID_OTP = "invalid_otp"
    INSUFFICIENT_BALANCE = "insufficient_balance"


class SimulationPolicy(Protocol):
    """Decides the simulated outcome for a payment attempt."""

    name: str

    def decide(self, phone: Optional[str], otp_code: Optional[str]) -> SimulatedOutcome:
        ...


class LastDigitSimulationPolicy:
    """
    Outcome keyed on the last digit of the customer's phone.

    - ``decline_digit`` → insufficient balance
    - ``otp_digit`` → OTP challenge; the configured code approves, any other
      supplied code is rejected
    - anything else → approved
    """

    name = "last_digit"

    def __init__(
        self, valid_otp: str = "1234", decline_digit: str = "0", otp_digit: str = "9"
    ) -> None:
        self.valid_otp = valid_otp
        self.decline_digit = decline_digit
        self.otp_digit = otp_digit

    def decide(self, phone: Optional[str], otp_code: Optional[str]) -> SimulatedOutcome:
        last_digit = phone[-1] if phone else ""
        if last_digit == self.decline_digit:
            return SimulatedOutcome.INSUFFICIENT_BALANCE
        if last_digit == self.otp_digit:
            if otp_code is None:
                return SimulatedOutcome.OTP_REQUIRED
            if otp_code != self.valid_otp:
                return SimulatedOutcome.INVALID_OTP
        return SimulatedOutcome.APPROVED


class MobileMoneyProvider(Protocol):
    """Client for a mobile-money provider's payment API."""

    async def request_payment(
        self, payment: Payment, otp_code: Optional[str] = None
    ) -> Dict[str, Any]:
        ...


class SimulatedOrangeMoneyProvider:
    """In-process stand-in for the Orange Money web payment API."""

    def __init__(self, policy: SimulationPolicy, payment_url_base: str) -> None:
        self.policy = policy
        self.payment_url_base = payment_url_base.rstrip("/")

    async def request_payment(
        self, payment: Payment, otp_code: Optional[str] = None
    ) -> Dict[str, Any]:
        """Answer with a provider-shaped response dict."""
        outcome = self.policy.decide(payment.customer_phone, otp_code)

        logger.info(
            "orange_money_simulated_request",
            payment_reference=payment.payment_reference,
            policy=self.policy.name,
            outcome=outcome.value,
        )

        if outcome == SimulatedOutcome.INSUFFICIENT_BALANCE:
            return {
                "status": "FAILED",
                "error_code": "insufficient_balance",
                "message": "Insufficient balance",
            }
        if outcome == SimulatedOutcome.INVALID_OTP:
            return {
                "status": "FAILED",
                "error_code": "invalid_otp",
                "message": "Invalid OTP code",
            }

        pay_token = f"OMTK{uuid.uuid4().hex[:16].upper()}"
        if outcome == SimulatedOutcome.OTP_REQUIRED:
            return {
                "status": "OTP_REQUIRED",
                "pay_token": pay_token,
                "message": "OTP code required",
            }

        return {
            "status": "INITIATED",
            "txnid": f"OM{uuid.uuid4().hex[:12].upper()}",
            "pay_token": pay_token,
            "payment_url": f"{self.payment_url_base}/{payment.payment_reference}",
            "message": "Payment initiated",
        }
