"""
Pydantic schemas for API request/response models.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class InitiatePaymentRequest(BaseModel):
    """Request schema for initiating a payment."""

    order_id: str = Field(..., min_length=1, max_length=64, description="Order being paid")
    payment_method: str = Field(
        ..., description="orange_money, bank_transfer or cash_on_delivery"
    )
    customer_phone: Optional[str] = Field(
        default=None, description="Customer phone (+226XXXXXXXX); required for orange_money"
    )
    customer_name: Optional[str] = Field(default=None, max_length=255, description="Customer name")
    customer_email: Optional[str] = Field(
        default=None, max_length=255, description="Customer email"
    )
    otp_code: Optional[str] = Field(default=None, description="One-time code, if already known")

    @field_validator("payment_method")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        """Normalize method spelling."""
        return v.strip().lower()

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order_id": "ORD-2026-000123",
                    "payment_method": "orange_money",
                    "customer_phone": "+22670000001",
                    "customer_name": "Awa Ouedraogo",
                    "customer_email": "awa@example.com",
                }
            ]
        }
    }


class PaymentResponse(BaseModel):
    """Public view of a payment."""

    id: str = Field(..., description="Payment ID")
    payment_reference: str = Field(..., description="Payment reference")
    order_id: str = Field(..., description="Order ID")
    retry_of_id: Optional[str] = Field(default=None, description="Payment this one retries")
    attempt_number: int = Field(default=1, description="Attempt number within the order")
    amount: str = Field(..., description="Amount")
    currency: str = Field(..., description="Currency code")
    fees: str = Field(..., description="Processing fees")
    net_amount: str = Field(..., description="Amount minus fees")
    payment_method: str = Field(..., description="Payment method")
    status: str = Field(..., description="Payment status")
    customer_phone: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    external_transaction_id: Optional[str] = None
    payment_url: Optional[str] = None
    authorization_code: Optional[str] = None
    risk_score: int = 0
    fraud_flags: List[str] = Field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    expires_at: Optional[str] = None
    initiated_at: Optional[str] = None
    completed_at: Optional[str] = None
    failed_at: Optional[str] = None
    cancelled_at: Optional[str] = None
    expired_at: Optional[str] = None
    refunded_at: Optional[str] = None


class InitiatePaymentResponse(PaymentResponse):
    """Response schema for payment initiation."""

    success: bool = Field(..., description="False when the gateway declined the payment")
    message: str = Field(..., description="Gateway message")
    requires_otp: bool = Field(default=False, description="OTP must be submitted to continue")
    payment_token: Optional[str] = Field(default=None, description="Token of the OTP challenge")
    transfer_details: Optional[Dict[str, Any]] = Field(
        default=None, description="Bank transfer instructions"
    )
    error_code: Optional[str] = Field(default=None, description="Gateway decline code")


class PaymentDetailResponse(PaymentResponse):
    """Privileged view including provider payloads."""

    gateway_response: Optional[Dict[str, Any]] = None
    webhook_data: Optional[Dict[str, Any]] = None
    error_details: Optional[Dict[str, Any]] = None
    payment_token: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None


class PaymentListResponse(BaseModel):
    """Payments of one order, newest first."""

    order_id: str
    payments: List[PaymentResponse]


class CancelPaymentRequest(BaseModel):
    """Request schema for cancelling a payment."""

    reason: Optional[str] = Field(default=None, max_length=500, description="Cancellation reason")


class RetryPaymentRequest(BaseModel):
    """Request schema for retrying a payment."""

    otp_code: Optional[str] = Field(default=None, description="One-time code, if already known")


class SubmitOtpRequest(BaseModel):
    """Request schema for the second phase of an OTP payment."""

    otp_code: str = Field(..., min_length=1, max_length=12, description="One-time code")


class RefundRequest(BaseModel):
    """Request schema for refunding a payment."""

    amount: Optional[Decimal] = Field(
        default=None, gt=0, description="Partial refund amount (full refund if not specified)"
    )
    reason: Optional[str] = Field(default=None, max_length=500, description="Refund reason")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"amount": "5000", "reason": "requested_by_customer"},
                {"reason": "duplicate"},
            ]
        }
    }


class CompletePaymentRequest(BaseModel):
    """Request schema for confirming settlement out of band."""

    external_transaction_id: Optional[str] = Field(
        default=None, max_length=128, description="Bank or courier transaction reference"
    )
    notes: Optional[str] = Field(default=None, max_length=500, description="Operator notes")


class WebhookResponse(BaseModel):
    """Response schema for webhook processing."""

    status: str = Field(..., description="processed, duplicate or ignored")
    payment_reference: Optional[str] = Field(default=None, description="Payment reference")
    payment_status: Optional[str] = Field(
        default=None, description="Payment status after processing"
    )


class StatisticsRow(BaseModel):
    """Aggregates for one (method, status) pair."""

    payment_method: str
    status: str
    count: int
    total_amount: str
    average_amount: str
    total_fees: str
    total_net_amount: str


class StatisticsResponse(BaseModel):
    """Response schema for payment statistics."""

    statistics: List[StatisticsRow]


class AuditEntryResponse(BaseModel):
    """One audit log entry."""

    id: int
    payment_id: str
    old_status: Optional[str] = None
    new_status: str
    changed_at: Optional[str] = None
    changed_by: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    notes: Optional[str] = None
    prev_hash: str
    entry_hash: str


class AuditChainReport(BaseModel):
    """Result of recomputing the audit hash chain."""

    valid: bool
    entries: int
    broken_at: Optional[int] = None


class AuditTrailResponse(BaseModel):
    """Response schema for a payment's audit trail."""

    payment_reference: str
    entries: List[AuditEntryResponse]
    chain: AuditChainReport


class CleanupResponse(BaseModel):
    """Response schema for an expiry sweep."""

    affected: int = Field(..., description="Payments expired or failed by the sweep")


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str
    message: Optional[str] = None
    checks: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """Error body returned for domain errors."""

    error: str
    message: str
