"""SQLAlchemy database models for the marketplace payment core."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements INTEGER PRIMARY KEY
AuditIdType = BigInteger().with_variant(Integer(), "sqlite")

SENSITIVE_FIELDS = ("gateway_response", "webhook_data", "error_details", "payment_token")
ACTIVE_STATUS_SQL = "status IN ('pending', 'processing')"


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes read back from SQLite as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Payment(Base):
    """
    Payment records table.

    One row per payment attempt against an order. ``status`` and the lifecycle
    timestamps are written only by ``PaymentStore.transition``.
    """

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payment_reference: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
    order_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    retry_of_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("payments.id"), nullable=True
    )
    attempt_number: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=1)

    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="XOF")
    fees: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    net_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)

    customer_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    external_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(128), unique=True, nullable=True
    )
    payment_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payment_token: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    authorization_code: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    gateway_response: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    webhook_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    error_details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    risk_score: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    fraud_flags: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)

    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    initiated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    expired_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_amount"),
        CheckConstraint("fees >= 0", name="non_negative_fees"),
        CheckConstraint("net_amount >= 0", name="non_negative_net_amount"),
        CheckConstraint("risk_score >= 0 AND risk_score <= 100", name="valid_risk_score"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', "
            "'cancelled', 'expired', 'refunded')",
            name="valid_status",
        ),
        CheckConstraint(
            "payment_method IN ('orange_money', 'bank_transfer', 'cash_on_delivery')",
            name="valid_payment_method",
        ),
        CheckConstraint("length(currency) = 3", name="valid_currency"),
        Index("idx_payments_order_created", "order_id", "created_at"),
        Index("idx_payments_status_expires", "status", "expires_at"),
        # At most one pending or processing payment per order
        Index(
            "uq_payments_order_active",
            "order_id",
            unique=True,
            sqlite_where=text(ACTIVE_STATUS_SQL),
            postgresql_where=text(ACTIVE_STATUS_SQL),
        ),
        UniqueConstraint("order_id", "attempt_number", name="uq_payments_order_attempt"),
    )

    def to_dict(self, include_internal: bool = False) -> Dict[str, Any]:
        """
        Serialize the payment for API responses.

        Args:
            include_internal: Include provider payloads and error details
                (privileged callers only)

        Returns:
            Dict[str, Any]: JSON-safe payment view
        """
        data: Dict[str, Any] = {
            "id": str(self.id),
            "payment_reference": self.payment_reference,
            "order_id": self.order_id,
            "retry_of_id": str(self.retry_of_id) if self.retry_of_id else None,
            "attempt_number": self.attempt_number,
            "amount": str(self.amount),
            "currency": self.currency,
            "fees": str(self.fees),
            "net_amount": str(self.net_amount),
            "payment_method": self.payment_method,
            "status": self.status,
            "customer_phone": self.customer_phone,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "external_transaction_id": self.external_transaction_id,
            "payment_url": self.payment_url,
            "authorization_code": self.authorization_code,
            "risk_score": self.risk_score,
            "fraud_flags": list(self.fraud_flags or []),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "expires_at": _iso(self.expires_at),
            "initiated_at": _iso(self.initiated_at),
            "completed_at": _iso(self.completed_at),
            "failed_at": _iso(self.failed_at),
            "cancelled_at": _iso(self.cancelled_at),
            "expired_at": _iso(self.expired_at),
            "refunded_at": _iso(self.refunded_at),
        }
        if include_internal:
            data.update(
                gateway_response=self.gateway_response,
                webhook_data=self.webhook_data,
                error_details=self.error_details,
                payment_token=self.payment_token,
                ip_address=self.ip_address,
                user_agent=self.user_agent,
                created_by=self.created_by,
                updated_by=self.updated_by,
            )
        return data

    def __repr__(self) -> str:
        """String representation of Payment."""
        return (
            f"<Payment(id={self.id}, reference={self.payment_reference}, "
            f"amount={self.amount}, status={self.status})>"
        )


class PaymentAuditLog(Base):
    """
    Payment status audit trail table.

    Append-only. Each row links to the previous row of the same payment through
    ``prev_hash`` so rewritten history is detectable.
    """

    __tablename__ = "payment_audit_log"

    id: Mapped[int] = mapped_column(AuditIdType, primary_key=True, autoincrement=True)
    payment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("payments.id"), nullable=False
    )
    old_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    changed_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    prev_hash: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        Index("idx_payment_audit_payment_id", "payment_id", "id"),
        Index("idx_payment_audit_changed_at", "changed_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the audit entry."""
        return {
            "id": self.id,
            "payment_id": str(self.payment_id),
            "old_status": self.old_status,
            "new_status": self.new_status,
            "changed_at": _iso(self.changed_at),
            "changed_by": self.changed_by,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "notes": self.notes,
            "prev_hash": self.prev_hash,
            "entry_hash": self.entry_hash,
        }

    def __repr__(self) -> str:
        """String representation of PaymentAuditLog."""
        return (
            f"<PaymentAuditLog(id={self.id}, payment_id={self.payment_id}, "
            f"{self.old_status}->{self.new_status})>"
        )
