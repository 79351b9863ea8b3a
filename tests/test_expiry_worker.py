"""
Tests for the expiry background worker.
"""
import signal
from datetime import timedelta
from decimal import Decimal
from typing import Any

import pytest

from marketplace_payments.config import Settings
from marketplace_payments.core.enums import PaymentMethod
from marketplace_payments.core.payment_store import PaymentStore
from marketplace_payments.database.models import utcnow
from marketplace_payments.workers import expiry_worker


@pytest.fixture
def signal_mock(mocker: Any) -> Any:
    """Keep the worker from replacing the test runner's signal handlers."""
    return mocker.patch.object(expiry_worker.signal, "signal")


class TestExpiryWorker:
    """Test suite for the expiry worker loop."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_single_sweep_expires_overdue_payment(
        self, test_settings: Settings, store: PaymentStore, signal_mock: Any, mocker: Any
    ) -> None:
        overdue = await store.create(
            order_id="ORD-1",
            amount=Decimal("10000"),
            fees=Decimal("0"),
            payment_method=PaymentMethod.CASH_ON_DELIVERY,
            currency="XOF",
            expires_at=utcnow() - timedelta(minutes=5),
        )
        sweep = mocker.spy(expiry_worker, "run_expiry_sweep")

        await expiry_worker.start_expiry_worker(test_settings, run_once=True)

        assert sweep.call_count == 1
        assert (await store.get_by_reference(overdue.payment_reference)).status == "expired"
        registered = {call.args[0] for call in signal_mock.call_args_list}
        assert registered == {signal.SIGINT, signal.SIGTERM}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_shutdown_signal_stops_loop(
        self, test_settings: Settings, signal_mock: Any, mocker: Any
    ) -> None:
        async def sweep_then_signal(orchestrator: Any) -> int:
            handler = signal_mock.call_args.args[1]
            handler(signal.SIGTERM, None)
            return 0

        sweep = mocker.patch.object(
            expiry_worker, "run_expiry_sweep", side_effect=sweep_then_signal
        )

        await expiry_worker.start_expiry_worker(test_settings)

        assert sweep.await_count == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_sweep_is_logged_not_raised(
        self, test_settings: Settings, signal_mock: Any, mocker: Any
    ) -> None:
        sweep = mocker.patch.object(
            expiry_worker, "run_expiry_sweep", side_effect=RuntimeError("database gone")
        )

        await expiry_worker.start_expiry_worker(test_settings, run_once=True)

        assert sweep.await_count == 1
