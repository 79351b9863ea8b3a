"""
Payment record store with an append-only, hash-chained audit log.

Implements:
- Payment creation (with the initial audit entry) in one transaction
- Lookups by id, reference, provider transaction id and order
- Compare-and-swap status transitions that write the status, the lifecycle
  timestamp, payload columns and the audit entry atomically
- Expiry candidate scans, statistics and audit trail verification
"""
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace_payments.core.enums import PaymentMethod, PaymentStatus
from marketplace_payments.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PaymentValidationError,
)
from marketplace_payments.core.fees import CENT, calculate_net_amount, to_amount
from marketplace_payments.core.signing import chain_hash
from marketplace_payments.core.state_machine import (
    StatusLike,
    coerce_status,
    timestamp_field,
    validate_transition,
)
from marketplace_payments.database.models import Payment, PaymentAuditLog, as_utc, utcnow
from marketplace_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

PaymentId = Union[uuid.UUID, str]

# Non-status columns a transition may write in the same statement
TRANSITION_FIELDS: FrozenSet[str] = frozenset(
    {
        "gateway_response",
        "webhook_data",
        "error_details",
        "external_transaction_id",
        "payment_url",
        "payment_token",
        "authorization_code",
        "risk_score",
        "fraud_flags",
    }
)


@dataclass
class TransitionResult:
    """Outcome of a transition request."""

    payment: Payment
    changed: bool
    previous_status: PaymentStatus

    @property
    def status(self) -> PaymentStatus:
        return PaymentStatus(self.payment.status)


def generate_payment_reference(now: Optional[datetime] = None) -> str:
    """Human-readable unique reference, e.g. ``PAY-20261019-3F9A0C21BE``."""
    now = now or utcnow()
    return f"PAY-{now:%Y%m%d}-{secrets.token_hex(5).upper()}"


def _as_uuid(payment_id: PaymentId) -> uuid.UUID:
    if isinstance(payment_id, uuid.UUID):
        return payment_id
    try:
        return uuid.UUID(str(payment_id))
    except ValueError as e:
        raise NotFoundError(f"Payment not found: {payment_id}") from e


def _audit_entry_fields(entry: PaymentAuditLog) -> Dict[str, Any]:
    changed_at = as_utc(entry.changed_at)
    return {
        "payment_id": str(entry.payment_id),
        "old_status": entry.old_status,
        "new_status": entry.new_status,
        "changed_at": changed_at.isoformat() if changed_at else None,
        "changed_by": entry.changed_by,
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "notes": entry.notes,
    }


def _decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT)


class PaymentStore:
    """
    Persistence for payments and their audit trail.

    ``transition`` is the only code path that writes ``status``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """
        Initialize the store.

        Args:
            session_factory: Factory producing sessions with ``expire_on_commit=False``
        """
        self.session_factory = session_factory

    async def create(
        self,
        *,
        order_id: str,
        amount: Decimal,
        fees: Decimal,
        payment_method: PaymentMethod,
        currency: str,
        expires_at: datetime,
        customer_phone: Optional[str] = None,
        customer_name: Optional[str] = None,
        customer_email: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        created_by: Optional[str] = None,
        retry_of_id: Optional[uuid.UUID] = None,
        payment_reference: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ) -> Payment:
        """
        Insert a pending payment and its initial audit entry.

        ``net_amount`` is derived here and nowhere else. The attempt number is
        assigned in the same transaction; the unique indexes on
        ``(order_id, attempt_number)`` and on active payments per order turn a
        concurrent insert for the same order into a validation error.

        Returns:
            Payment: The persisted payment

        Raises:
            PaymentValidationError: If amounts are inconsistent, the order
                already has an active payment, or ``max_attempts`` is used up
        """
        amount = to_amount(amount)
        fees = to_amount(fees)
        if amount <= 0:
            raise PaymentValidationError("Amount must be positive")
        if fees < 0 or fees > amount:
            raise PaymentValidationError("Fees must be between 0 and the amount")

        now = utcnow()
        payment = Payment(
            id=uuid.uuid4(),
            payment_reference=payment_reference or generate_payment_reference(now),
            order_id=order_id,
            retry_of_id=retry_of_id,
            amount=amount,
            currency=currency,
            fees=fees,
            net_amount=calculate_net_amount(amount, fees),
            payment_method=PaymentMethod(payment_method).value,
            status=PaymentStatus.PENDING.value,
            customer_phone=customer_phone,
            customer_name=customer_name,
            customer_email=customer_email,
            ip_address=ip_address,
            user_agent=user_agent,
            created_by=created_by,
            updated_by=created_by,
            risk_score=0,
            fraud_flags=[],
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
        )

        try:
            async with self.session_factory.begin() as db:
                attempt = await self._next_attempt_number(db, order_id)
                if max_attempts is not None and attempt > max_attempts:
                    raise PaymentValidationError("Maximum payment attempts reached for this order")
                payment.attempt_number = attempt
                db.add(payment)
                await db.flush()
                await self._append_audit(
                    db,
                    payment_id=payment.id,
                    old_status=None,
                    new_status=PaymentStatus.PENDING,
                    changed_at=now,
                    changed_by=created_by,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    notes="payment created",
                )
        except IntegrityError as e:
            # uq_payments_order_active / uq_payments_order_attempt
            if "order" not in str(e.orig):
                raise
            metrics.record_transition_conflict(PaymentStatus.PENDING.value, "concurrent_attempt")
            logger.warning("payment_create_conflict", order_id=order_id)
            raise PaymentValidationError("Order already has a payment in progress") from e

        logger.info(
            "payment_record_created",
            payment_id=str(payment.id),
            payment_reference=payment.payment_reference,
            order_id=order_id,
            payment_method=payment.payment_method,
            amount=str(amount),
        )
        return payment

    async def get_by_id(self, payment_id: PaymentId) -> Optional[Payment]:
        """Fetch a payment by id."""
        async with self.session_factory() as db:
            return await db.get(Payment, _as_uuid(payment_id))

    async def get_by_reference(self, reference: str) -> Optional[Payment]:
        """Fetch a payment by its payment reference."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(Payment).where(Payment.payment_reference == reference)
            )
            return result.scalar_one_or_none()

    async def get_by_transaction_id(self, transaction_id: str) -> Optional[Payment]:
        """Fetch a payment by the provider's transaction id."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(Payment).where(Payment.external_transaction_id == transaction_id)
            )
            return result.scalar_one_or_none()

    async def find(
        self, reference: Optional[str] = None, transaction_id: Optional[str] = None
    ) -> Optional[Payment]:
        """Fetch a payment by reference, falling back to the provider transaction id."""
        conditions = []
        if reference:
            conditions.append(Payment.payment_reference == reference)
        if transaction_id:
            conditions.append(Payment.external_transaction_id == transaction_id)
        if not conditions:
            return None
        async with self.session_factory() as db:
            result = await db.execute(select(Payment).where(or_(*conditions)).limit(1))
            return result.scalar_one_or_none()

    async def require_by_reference(self, reference: str) -> Payment:
        """
        Fetch a payment by reference.

        Raises:
            NotFoundError: If no payment carries the reference
        """
        payment = await self.get_by_reference(reference)
        if payment is None:
            raise NotFoundError(f"Payment not found: {reference}")
        return payment

    async def list_by_order(self, order_id: str) -> List[Payment]:
        """All payments of an order, newest first."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(Payment)
                .where(Payment.order_id == order_id)
                .order_by(Payment.created_at.desc())
            )
            return list(result.scalars().all())

    @staticmethod
    async def _next_attempt_number(db: AsyncSession, order_id: str) -> int:
        stmt = select(func.coalesce(func.max(Payment.attempt_number), 0)).where(
            Payment.order_id == order_id
        )
        return int((await db.execute(stmt)).scalar_one()) + 1

    async def count_by_order(
        self, order_id: str, statuses: Optional[Iterable[PaymentStatus]] = None
    ) -> int:
        """Number of payments on an order, optionally restricted to some statuses."""
        stmt = select(func.count()).select_from(Payment).where(Payment.order_id == order_id)
        if statuses is not None:
            stmt = stmt.where(Payment.status.in_([PaymentStatus(s).value for s in statuses]))
        async with self.session_factory() as db:
            return int((await db.execute(stmt)).scalar_one())

    async def update_pending(self, payment_id: PaymentId, **fields: Any) -> bool:
        """
        Write non-status columns of a payment that is still pending.

        Used for the fraud score and for provider details returned while the
        payment waits (e.g. an OTP challenge token).

        Returns:
            bool: True if the row was updated
        """
        unknown = set(fields) - TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"Fields not writable on a pending payment: {sorted(unknown)}")
        async with self.session_factory.begin() as db:
            result = await db.execute(
                update(Payment)
                .where(
                    Payment.id == _as_uuid(payment_id),
                    Payment.status == PaymentStatus.PENDING.value,
                )
                .values(**fields, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def transition(
        self,
        payment_id: PaymentId,
        to_status: StatusLike,
        *,
        changed_by: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        notes: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None,
    ) -> TransitionResult:
        """
        Move a payment to ``to_status``.

        The write is a compare-and-swap on the observed status, so of two
        concurrent writers exactly one wins. The lifecycle timestamp, any
        ``changes`` and the audit entry are committed in the same transaction.
        A request for the status the payment already has is a no-op.

        Args:
            payment_id: Payment id
            to_status: Target status
            changed_by: Actor recorded in the audit entry
            ip_address: Network origin of the request
            user_agent: Client user agent
            notes: Free-form audit note
            changes: Extra columns to write (see ``TRANSITION_FIELDS``)

        Returns:
            TransitionResult: The refreshed payment and whether anything changed

        Raises:
            NotFoundError: If the payment does not exist
            InvalidTransitionError: If the move is not allowed from the current status
        """
        target = coerce_status(to_status)
        changes = dict(changes or {})
        unknown = set(changes) - TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"Fields not writable by a transition: {sorted(unknown)}")

        pid = _as_uuid(payment_id)

        async with self.session_factory.begin() as db:
            payment = await db.get(Payment, pid)
            if payment is None:
                raise NotFoundError(f"Payment not found: {payment_id}")

            current = PaymentStatus(payment.status)
            if current == target:
                return self._noop(payment, target)

            try:
                validate_transition(current, target)
            except InvalidTransitionError:
                metrics.record_transition_conflict(target.value, "invalid")
                raise

            now = utcnow()
            values: Dict[str, Any] = {
                "status": target.value,
                "updated_at": now,
                "updated_by": changed_by,
                **changes,
            }
            ts_field = timestamp_field(target)
            if ts_field:
                values[ts_field] = now

            result = await db.execute(
                update(Payment)
                .where(Payment.id == pid, Payment.status == current.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )

            if result.rowcount != 1:
                # Another writer moved the payment after we read it
                await db.refresh(payment)
                latest = PaymentStatus(payment.status)
                if latest == target:
                    return self._noop(payment, target)
                metrics.record_transition_conflict(target.value, "invalid")
                logger.warning(
                    "payment_transition_lost_race",
                    payment_id=str(pid),
                    observed_status=current.value,
                    latest_status=latest.value,
                    to_status=target.value,
                )
                raise InvalidTransitionError(latest.value, target.value)

            await self._append_audit(
                db,
                payment_id=pid,
                old_status=current,
                new_status=target,
                changed_at=now,
                changed_by=changed_by,
                ip_address=ip_address,
                user_agent=user_agent,
                notes=notes,
            )
            await db.refresh(payment)

        metrics.record_transition(current.value, target.value)
        logger.info(
            "payment_status_changed",
            payment_id=str(pid),
            payment_reference=payment.payment_reference,
            from_status=current.value,
            to_status=target.value,
            changed_by=changed_by,
        )
        return TransitionResult(payment=payment, changed=True, previous_status=current)

    @staticmethod
    def _noop(payment: Payment, target: PaymentStatus) -> TransitionResult:
        metrics.record_transition_conflict(target.value, "duplicate")
        logger.info(
            "payment_transition_duplicate",
            payment_id=str(payment.id),
            status=target.value,
        )
        return TransitionResult(payment=payment, changed=False, previous_status=target)

    async def _append_audit(
        self,
        db: AsyncSession,
        *,
        payment_id: uuid.UUID,
        old_status: Optional[PaymentStatus],
        new_status: PaymentStatus,
        changed_at: datetime,
        changed_by: Optional[str],
        ip_address: Optional[str],
        user_agent: Optional[str],
        notes: Optional[str],
    ) -> PaymentAuditLog:
        """Append a chained audit entry inside the caller's transaction."""
        prev_hash = (
            await db.execute(
                select(PaymentAuditLog.entry_hash)
                .where(PaymentAuditLog.payment_id == payment_id)
                .order_by(PaymentAuditLog.id.desc())
                .limit(1)
            )
        ).scalar_one_or_none() or ""

        entry = PaymentAuditLog(
            payment_id=payment_id,
            old_status=old_status.value if old_status else None,
            new_status=new_status.value,
            changed_at=changed_at,
            changed_by=changed_by,
            ip_address=ip_address,
            user_agent=user_agent,
            notes=notes,
            prev_hash=prev_hash,
        )
        entry.entry_hash = chain_hash(prev_hash, _audit_entry_fields(entry))
        db.add(entry)
        await db.flush()
        return entry

    async def find_overdue(
        self, now: datetime, statuses: Iterable[PaymentStatus]
    ) -> List[Tuple[uuid.UUID, PaymentStatus]]:
        """Ids and statuses of payments in ``statuses`` whose expiry has passed."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(Payment.id, Payment.status).where(
                    Payment.status.in_([PaymentStatus(s).value for s in statuses]),
                    Payment.expires_at < now,
                )
            )
            return [(row.id, PaymentStatus(row.status)) for row in result.all()]

    async def statistics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        payment_method: Optional[PaymentMethod] = None,
        status: Optional[PaymentStatus] = None,
    ) -> List[Dict[str, Any]]:
        """
        Aggregate payments grouped by method and status.

        Args:
            start_date: Only payments created at or after this time
            end_date: Only payments created at or before this time
            payment_method: Only this method
            status: Only this status

        Returns:
            List[Dict[str, Any]]: One row per (method, status) with count and sums
        """
        stmt = select(
            Payment.payment_method,
            Payment.status,
            func.count(Payment.id).label("count"),
            func.sum(Payment.amount).label("total_amount"),
            func.avg(Payment.amount).label("average_amount"),
            func.sum(Payment.fees).label("total_fees"),
            func.sum(Payment.net_amount).label("total_net_amount"),
        ).group_by(Payment.payment_method, Payment.status)

        if start_date is not None:
            stmt = stmt.where(Payment.created_at >= start_date)
        if end_date is not None:
            stmt = stmt.where(Payment.created_at <= end_date)
        if payment_method is not None:
            stmt = stmt.where(Payment.payment_method == PaymentMethod(payment_method).value)
        if status is not None:
            stmt = stmt.where(Payment.status == PaymentStatus(status).value)

        stmt = stmt.order_by(Payment.payment_method, Payment.status)

        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).all()

        return [
            {
                "payment_method": row.payment_method,
                "status": row.status,
                "count": int(row.count),
                "total_amount": str(_decimal(row.total_amount)),
                "average_amount": str(_decimal(row.average_amount)),
                "total_fees": str(_decimal(row.total_fees)),
                "total_net_amount": str(_decimal(row.total_net_amount)),
            }
            for row in rows
        ]

    async def audit_trail(self, payment_id: PaymentId) -> List[PaymentAuditLog]:
        """Audit entries of a payment, newest first."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(PaymentAuditLog)
                .where(PaymentAuditLog.payment_id == _as_uuid(payment_id))
                .order_by(PaymentAuditLog.id.desc())
            )
            return list(result.scalars().all())

    async def verify_audit_chain(self, payment_id: PaymentId) -> Dict[str, Any]:
        """
        Recompute the hash chain of a payment's audit entries.

        Returns:
            Dict[str, Any]: ``valid``, number of ``entries`` and the id of the
            first entry that does not match (``broken_at``)
        """
        entries = list(reversed(await self.audit_trail(payment_id)))
        prev_hash = ""
        for entry in entries:
            expected = chain_hash(prev_hash, _audit_entry_fields(entry))
            if entry.prev_hash != prev_hash or entry.entry_hash != expected:
                logger.error(
                    "audit_chain_broken",
                    payment_id=str(payment_id),
                    audit_entry_id=entry.id,
                )
                return {"valid": False, "entries": len(entries), "broken_at": entry.id}
            prev_hash = entry.entry_hash
        return {"valid": True, "entries": len(entries), "broken_at": None}
