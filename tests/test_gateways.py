"""
Unit tests for settlement gateways.
"""
from decimal import Decimal
from typing import Optional

import pytest

from marketplace_payments.config import Settings
from marketplace_payments.core.enums import PaymentMethod, PaymentStatus
from marketplace_payments.core.exceptions import UnsupportedMethodError
from marketplace_payments.database.models import Payment
from marketplace_payments.integrations.gateways import (
    BankTransferGateway,
    CashOnDeliveryGateway,
    GatewayRegistry,
    GatewayResult,
    LastDigitSimulationPolicy,
    OrangeMoneyGateway,
    SimulatedOrangeMoneyProvider,
    SimulatedOutcome,
    build_gateway_registry,
)


def make_payment(phone: Optional[str] = "+22670000001") -> Payment:
    return Payment(
        payment_reference="PAY-20261019-ABCDEF0123",
        order_id="ORD-1",
        amount=Decimal("10000.00"),
        currency="XOF",
        customer_phone=phone,
    )


@pytest.fixture
def orange_money() -> OrangeMoneyGateway:
    provider = SimulatedOrangeMoneyProvider(
        LastDigitSimulationPolicy(valid_otp="1234"),
        payment_url_base="https://pay.example.com/om/",
    )
    return OrangeMoneyGateway(provider)


class TestLastDigitPolicy:
    """Test suite for the simulated provider's outcome rule."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "phone,otp,expected",
        [
            ("+22670000001", None, SimulatedOutcome.APPROVED),
            ("+22670000000", None, SimulatedOutcome.INSUFFICIENT_BALANCE),
            ("+22670000000", "1234", SimulatedOutcome.INSUFFICIENT_BALANCE),
            ("+22670000009", None, SimulatedOutcome.OTP_REQUIRED),
            ("+22670000009", "1234", SimulatedOutcome.APPROVED),
            ("+22670000009", "9999", SimulatedOutcome.INVALID_OTP),
            (None, None, SimulatedOutcome.APPROVED),
        ],
    )
    def test_decide(
        self, phone: Optional[str], otp: Optional[str], expected: SimulatedOutcome
    ) -> None:
        assert LastDigitSimulationPolicy().decide(phone, otp) == expected


class TestOrangeMoneyGateway:
    """Test suite for the Orange Money gateway."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_approved(self, orange_money: OrangeMoneyGateway) -> None:
        result = await orange_money.process(make_payment())

        assert result.success
        assert result.target_status == PaymentStatus.PROCESSING
        assert result.provider_transaction_id.startswith("OM")
        assert result.payment_token.startswith("OMTK")
        assert result.payment_url == "https://pay.example.com/om/PAY-20261019-ABCDEF0123"
        assert result.gateway_response["status"] == "INITIATED"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_insufficient_balance(self, orange_money: OrangeMoneyGateway) -> None:
        result = await orange_money.process(make_payment("+22670000000"))

        assert not result.success
        assert result.target_status == PaymentStatus.FAILED
        assert result.error_code == "insufficient_balance"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_otp_challenge_keeps_payment_pending(
        self, orange_money: OrangeMoneyGateway
    ) -> None:
        result = await orange_money.process(make_payment("+22670000009"))

        assert result.success
        assert result.requires_otp
        assert result.target_status is None
        assert result.payment_token

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_otp_second_phase(self, orange_money: OrangeMoneyGateway) -> None:
        approved = await orange_money.process(make_payment("+22670000009"), otp_code="1234")
        rejected = await orange_money.process(make_payment("+22670000009"), otp_code="0000")

        assert approved.target_status == PaymentStatus.PROCESSING
        assert rejected.target_status == PaymentStatus.FAILED
        assert rejected.error_code == "invalid_otp"


class TestOtherGateways:
    """Test suite for bank transfer and cash on delivery."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_bank_transfer_instructions(self) -> None:
        settings = Settings(payment_webhook_secret="secret", bank_account_number="9876543210")
        result = await BankTransferGateway(settings).process(make_payment())

        assert result.target_status == PaymentStatus.PROCESSING
        assert result.transfer_details == {
            "bank_name": "Ecobank Burkina Faso",
            "account_name": "E-Commerce Platform",
            "account_number": "9876543210",
            "swift_code": "ECOCBFBF",
            "reference": "PAY-20261019-ABCDEF0123",
            "amount": "10000.00",
            "currency": "XOF",
        }

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cash_on_delivery(self) -> None:
        result = await CashOnDeliveryGateway().process(make_payment(None))

        assert result.target_status == PaymentStatus.PROCESSING
        assert result.gateway_response == {
            "method": "cash_on_delivery",
            "status": "pending_delivery",
        }

    @pytest.mark.unit
    def test_result_view_omits_empty_fields(self) -> None:
        view = GatewayResult.failed("insufficient_balance", "Insufficient balance").to_dict()

        assert view == {
            "success": False,
            "status": "failed",
            "message": "Insufficient balance",
            "requires_otp": False,
            "error_code": "insufficient_balance",
        }


class TestGatewayRegistry:
    """Test suite for gateway lookup."""

    @pytest.mark.unit
    def test_built_in_registry(self) -> None:
        registry = build_gateway_registry(Settings(payment_webhook_secret="secret"))

        assert set(registry.methods) == set(PaymentMethod)
        assert "orange_money" in registry
        assert "paypal" not in registry
        assert isinstance(registry.get("bank_transfer"), BankTransferGateway)

    @pytest.mark.unit
    def test_missing_gateway(self) -> None:
        registry = GatewayRegistry([CashOnDeliveryGateway()])

        with pytest.raises(UnsupportedMethodError):
            registry.get(PaymentMethod.ORANGE_MONEY)
        with pytest.raises(UnsupportedMethodError):
            registry.get("paypal")
