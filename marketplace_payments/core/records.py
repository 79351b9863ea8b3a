"""
Structured records stored in a payment's JSON columns.

``error_details`` holds one of the failure/closure records below; core code
builds them through these models so the fields it later reads are checked.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class FraudRejection(BaseModel):
    """Payment blocked by fraud screening."""

    reason: Literal["fraud_detected"] = "fraud_detected"
    risk_score: int
    flags: List[str] = Field(default_factory=list)


class GatewayFailure(BaseModel):
    """Settlement failed at (or while waiting on) the gateway."""

    reason: str  # insufficient_balance, invalid_otp, gateway_timeout, gateway_error, ...
    error_code: Optional[str] = None
    message: Optional[str] = None


class CancellationRecord(BaseModel):
    """Payment cancelled by the customer or an operator."""

    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None


class RefundRecord(BaseModel):
    """Refund issued against a completed payment."""

    refund_amount: Decimal
    refund_reason: Optional[str] = None
    refunded_by: Optional[str] = None
    refunded_at: datetime


class BankTransferInstructions(BaseModel):
    """Details the customer needs to wire the funds."""

    bank_name: str
    account_name: str
    account_number: str
    swift_code: str
    reference: str
    amount: Decimal
    currency: str


class WebhookNotification(BaseModel):
    """Provider callback payload; extra provider fields are kept."""

    model_config = ConfigDict(extra="allow")

    reference: Optional[str] = None
    transaction_id: Optional[str] = None
    status: str
    authorization_code: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: Optional[float] = None

    @model_validator(mode="after")
    def check_identifier(self) -> "WebhookNotification":
        if not self.reference and not self.transaction_id:
            raise ValueError("reference or transaction_id is required")
        return self


def dump_record(record: BaseModel) -> Dict[str, Any]:
    """JSON-safe dict for a JSON column."""
    return record.model_dump(mode="json", exclude_none=True)
