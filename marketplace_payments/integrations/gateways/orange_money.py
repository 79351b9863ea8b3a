"""Orange Money settlement gateway."""
from typing import Optional

from marketplace_payments.core.enums import PaymentMethod
from marketplace_payments.database.models import Payment

from .base import GatewayResult, SettlementGateway
from .simulation import MobileMoneyProvider


class OrangeMoneyGateway(SettlementGateway):
    """Mobile-money settlement, two-phase when the provider asks for an OTP."""

    def __init__(self, provider: MobileMoneyProvider) -> None:
        self.provider = provider

    @property
    def method(self) -> PaymentMethod:
        return PaymentMethod.ORANGE_MONEY

    async def process(self, payment: Payment, otp_code: Optional[str] = None) -> GatewayResult:
        response = await self.provider.request_payment(payment, otp_code)
        status = response.get("status")

        if status == "INITIATED":
            return GatewayResult.processing(
                response.get("message", "Payment initiated"),
                provider_transaction_id=response.get("txnid"),
                payment_url=response.get("payment_url"),
                payment_token=response.get("pay_token"),
                gateway_response=response,
            )
        if status == "OTP_REQUIRED":
            return GatewayResult.otp_required(
                response.get("message", "OTP code required"),
                payment_token=response.get("pay_token"),
                gateway_response=response,
            )
        return GatewayResult.failed(
            response.get("error_code") or "provider_error",
            response.get("message", "Payment failed"),
            gateway_response=response,
        )
