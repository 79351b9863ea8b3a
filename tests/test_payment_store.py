"""
Tests for the payment store and its audit log.
"""
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace_payments.core.enums import PaymentMethod, PaymentStatus
from marketplace_payments.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PaymentValidationError,
)
from marketplace_payments.core.payment_store import PaymentStore, generate_payment_reference
from marketplace_payments.database.models import Payment, PaymentAuditLog, as_utc, utcnow


async def create_payment(store: PaymentStore, **overrides: Any) -> Payment:
    fields: dict[str, Any] = {
        "order_id": "ORD-1",
        "amount": Decimal("10000"),
        "fees": Decimal("200"),
        "payment_method": PaymentMethod.ORANGE_MONEY,
        "currency": "XOF",
        "expires_at": utcnow() + timedelta(minutes=30),
        "customer_phone": "+22670000001",
        "created_by": "customer-1",
    }
    fields.update(overrides)
    return await store.create(**fields)


class TestCreate:
    """Test suite for payment creation."""

    @pytest.mark.unit
    def test_reference_format(self) -> None:
        reference = generate_payment_reference(datetime(2026, 10, 19))
        assert reference.startswith("PAY-20261019-")
        assert len(reference.split("-")[2]) == 10

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_pending_payment(self, store: PaymentStore) -> None:
        """Test a new payment is pending with derived net amount and one audit entry."""
        payment = await create_payment(store)

        assert payment.status == PaymentStatus.PENDING.value
        assert payment.net_amount == Decimal("9800.00")

        stored = await store.get_by_reference(payment.payment_reference)
        assert stored is not None
        assert stored.id == payment.id
        assert stored.amount == Decimal("10000.00")

        trail = await store.audit_trail(payment.id)
        assert len(trail) == 1
        assert trail[0].old_status is None
        assert trail[0].new_status == "pending"
        assert trail[0].changed_by == "customer-1"
        assert trail[0].prev_hash == ""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_rejects_fees_above_amount(self, store: PaymentStore) -> None:
        with pytest.raises(PaymentValidationError, match="Fees"):
            await create_payment(store, amount=Decimal("100"), fees=Decimal("150"))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_rejects_non_positive_amount(self, store: PaymentStore) -> None:
        with pytest.raises(PaymentValidationError, match="Amount must be positive"):
            await create_payment(store, amount=Decimal("0"), fees=Decimal("0"))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_one_active_payment_per_order(self, store: PaymentStore) -> None:
        """Test the database refuses a second pending or processing payment for an order."""
        active = await create_payment(store)
        await store.transition(active.id, PaymentStatus.PROCESSING)

        with pytest.raises(PaymentValidationError, match="payment in progress"):
            await create_payment(store)

        await store.transition(active.id, PaymentStatus.FAILED)
        replacement = await create_payment(store)

        assert replacement.attempt_number == 2
        assert await store.count_by_order("ORD-1") == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_enforces_attempt_limit(self, store: PaymentStore) -> None:
        first = await create_payment(store, max_attempts=2)
        await store.transition(first.id, PaymentStatus.FAILED)
        second = await create_payment(store, max_attempts=2)
        await store.transition(second.id, PaymentStatus.FAILED)

        with pytest.raises(PaymentValidationError, match="Maximum payment attempts"):
            await create_payment(store, max_attempts=2)

        assert await store.count_by_order("ORD-1") == 2
        assert len(await store.audit_trail(second.id)) == 2


class TestLookups:
    """Test suite for payment lookups."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_reference(self, store: PaymentStore) -> None:
        assert await store.get_by_reference("PAY-NOPE") is None
        with pytest.raises(NotFoundError):
            await store.require_by_reference("PAY-NOPE")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_find_by_transaction_id(self, store: PaymentStore) -> None:
        payment = await create_payment(store)
        await store.transition(
            payment.id,
            PaymentStatus.PROCESSING,
            changes={"external_transaction_id": "OMTX123"},
        )

        found = await store.find(transaction_id="OMTX123")
        assert found is not None
        assert found.id == payment.id
        assert (await store.get_by_transaction_id("OMTX123")).id == payment.id
        assert await store.find() is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_list_by_order_newest_first(self, store: PaymentStore) -> None:
        first = await create_payment(store)
        await store.transition(first.id, PaymentStatus.FAILED)
        second = await create_payment(store)
        await create_payment(store, order_id="ORD-2")

        payments = await store.list_by_order("ORD-1")

        assert [p.id for p in payments] == [second.id, first.id]
        assert [p.attempt_number for p in payments] == [2, 1]
        assert await store.count_by_order("ORD-1") == 2
        assert await store.count_by_order("ORD-1", [PaymentStatus.FAILED]) == 0


class TestTransition:
    """Test suite for compare-and-swap status transitions."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transition_writes_status_timestamp_and_audit(
        self, store: PaymentStore
    ) -> None:
        payment = await create_payment(store)

        result = await store.transition(
            payment.id,
            PaymentStatus.PROCESSING,
            changed_by="system",
            ip_address="10.0.0.1",
            notes="gateway:processing",
            changes={"gateway_response": {"status": "INITIATED"}},
        )

        assert result.changed
        assert result.previous_status == PaymentStatus.PENDING
        assert result.status == PaymentStatus.PROCESSING
        assert result.payment.initiated_at is not None
        assert result.payment.gateway_response == {"status": "INITIATED"}
        assert result.payment.updated_by == "system"

        trail = await store.audit_trail(payment.id)
        assert [entry.new_status for entry in trail] == ["processing", "pending"]
        assert trail[0].old_status == "pending"
        assert trail[0].ip_address == "10.0.0.1"
        assert trail[0].notes == "gateway:processing"
        assert trail[0].prev_hash == trail[1].entry_hash

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_same_status_is_noop(self, store: PaymentStore) -> None:
        """Test a repeated transition changes nothing and writes no audit entry."""
        payment = await create_payment(store)
        await store.transition(payment.id, PaymentStatus.PROCESSING)
        first = await store.transition(payment.id, PaymentStatus.COMPLETED)

        repeat = await store.transition(payment.id, PaymentStatus.COMPLETED)

        assert not repeat.changed
        assert repeat.status == PaymentStatus.COMPLETED
        assert as_utc(repeat.payment.completed_at) == as_utc(first.payment.completed_at)
        assert len(await store.audit_trail(payment.id)) == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalid_transition_leaves_payment_untouched(
        self, store: PaymentStore
    ) -> None:
        payment = await create_payment(store)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await store.transition(payment.id, PaymentStatus.REFUNDED)

        assert exc_info.value.from_status == "pending"
        stored = await store.get_by_id(payment.id)
        assert stored.status == "pending"
        assert stored.refunded_at is None
        assert len(await store.audit_trail(payment.id)) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_terminal_status_cannot_move(self, store: PaymentStore) -> None:
        payment = await create_payment(store)
        await store.transition(payment.id, PaymentStatus.CANCELLED)

        with pytest.raises(InvalidTransitionError):
            await store.transition(payment.id, PaymentStatus.PROCESSING)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_payment(self, store: PaymentStore) -> None:
        with pytest.raises(NotFoundError):
            await store.transition(uuid.uuid4(), PaymentStatus.PROCESSING)
        with pytest.raises(NotFoundError):
            await store.transition("not-a-uuid", PaymentStatus.PROCESSING)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_status_is_not_a_writable_change(self, store: PaymentStore) -> None:
        payment = await create_payment(store)
        with pytest.raises(ValueError, match="status"):
            await store.transition(
                payment.id, PaymentStatus.PROCESSING, changes={"status": "completed"}
            )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_update_pending_only_while_pending(self, store: PaymentStore) -> None:
        payment = await create_payment(store)

        assert await store.update_pending(payment.id, risk_score=30, fraud_flags=["high_amount"])
        stored = await store.get_by_id(payment.id)
        assert stored.risk_score == 30
        assert stored.fraud_flags == ["high_amount"]

        await store.transition(payment.id, PaymentStatus.PROCESSING)
        assert not await store.update_pending(payment.id, risk_score=50)
        assert (await store.get_by_id(payment.id)).risk_score == 30


class TestAuditChain:
    """Test suite for audit hash chain verification."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_chain_is_valid(self, store: PaymentStore) -> None:
        payment = await create_payment(store)
        await store.transition(payment.id, PaymentStatus.PROCESSING)
        await store.transition(payment.id, PaymentStatus.COMPLETED)

        report = await store.verify_audit_chain(payment.id)

        assert report == {"valid": True, "entries": 3, "broken_at": None}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rewritten_entry_is_detected(
        self, store: PaymentStore, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Test editing an audit row breaks the chain at that row."""
        payment = await create_payment(store)
        await store.transition(payment.id, PaymentStatus.PROCESSING)
        await store.transition(payment.id, PaymentStatus.COMPLETED)
        tampered = (await store.audit_trail(payment.id))[1]

        async with session_factory.begin() as db:
            await db.execute(
                update(PaymentAuditLog)
                .where(PaymentAuditLog.id == tampered.id)
                .values(changed_by="someone-else")
            )

        report = await store.verify_audit_chain(payment.id)

        assert not report["valid"]
        assert report["broken_at"] == tampered.id


class TestQueries:
    """Test suite for expiry scans and statistics."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_find_overdue(self, store: PaymentStore) -> None:
        overdue = await create_payment(store, expires_at=utcnow() - timedelta(minutes=1))
        await create_payment(store, order_id="ORD-2")

        found = await store.find_overdue(utcnow(), [PaymentStatus.PENDING])

        assert found == [(overdue.id, PaymentStatus.PENDING)]
        assert await store.find_overdue(utcnow(), [PaymentStatus.PROCESSING]) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_statistics_grouped_by_method_and_status(self, store: PaymentStore) -> None:
        await create_payment(store)
        await create_payment(store, order_id="ORD-3", amount=Decimal("20000"), fees=Decimal("400"))
        bank = await create_payment(
            store,
            order_id="ORD-2",
            payment_method=PaymentMethod.BANK_TRANSFER,
            amount=Decimal("50000"),
            fees=Decimal("500"),
        )
        await store.transition(bank.id, PaymentStatus.PROCESSING)

        rows = await store.statistics()

        assert rows == [
            {
                "payment_method": "bank_transfer",
                "status": "processing",
                "count": 1,
                "total_amount": "50000.00",
                "average_amount": "50000.00",
                "total_fees": "500.00",
                "total_net_amount": "49500.00",
            },
            {
                "payment_method": "orange_money",
                "status": "pending",
                "count": 2,
                "total_amount": "30000.00",
                "average_amount": "15000.00",
                "total_fees": "600.00",
                "total_net_amount": "29400.00",
            },
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_statistics_filters(self, store: PaymentStore) -> None:
        await create_payment(store)
        await create_payment(
            store, order_id="ORD-2", payment_method=PaymentMethod.CASH_ON_DELIVERY, fees=0
        )

        by_method = await store.statistics(payment_method=PaymentMethod.CASH_ON_DELIVERY)
        assert [row["payment_method"] for row in by_method] == ["cash_on_delivery"]

        future = await store.statistics(start_date=utcnow() + timedelta(days=1))
        assert future == []

        by_status = await store.statistics(status=PaymentStatus.COMPLETED)
        assert by_status == []
