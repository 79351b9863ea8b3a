"""Cash-on-delivery settlement gateway."""
from typing import Optional

from marketplace_payments.core.enums import PaymentMethod
from marketplace_payments.database.models import Payment

from .base import GatewayResult, SettlementGateway


class CashOnDeliveryGateway(SettlementGateway):
    """Cash is collected on delivery; completion comes from the delivery side."""

    @property
    def method(self) -> PaymentMethod:
        return PaymentMethod.CASH_ON_DELIVERY

    async def process(self, payment: Payment, otp_code: Optional[str] = None) -> GatewayResult:
        return GatewayResult.processing(
            "Payment will be collected on delivery",
            gateway_response={"method": self.method.value, "status": "pending_delivery"},
        )
