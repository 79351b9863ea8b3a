"""Settlement gateways, one per payment method."""
from typing import Optional

from marketplace_payments.config import Settings

from .bank_transfer import BankTransferGateway
from .base import GatewayRegistry, GatewayResult, SettlementGateway
from .cash_on_delivery import CashOnDeliveryGateway
from .orange_money import OrangeMoneyGateway
from .simulation import (
    LastDigitSimulationPolicy,
    MobileMoneyProvider,
    SimulatedOrangeMoneyProvider,
    SimulatedOutcome,
)


def build_gateway_registry(
    settings: Settings, mobile_money_provider: Optional[MobileMoneyProvider] = None
) -> GatewayRegistry:
    """
    Registry with the three built-in gateways.

    Orange Money uses the simulated provider unless one is injected.
    """
    provider = mobile_money_provider or SimulatedOrangeMoneyProvider(
        LastDigitSimulationPolicy(valid_otp=settings.orange_money_valid_otp),
        payment_url_base=settings.orange_money_payment_url,
    )
    return GatewayRegistry(
        [
            OrangeMoneyGateway(provider),
            BankTransferGateway(settings),
            CashOnDeliveryGateway(),
        ]
    )


__all__ = [
    "BankTransferGateway",
    "CashOnDeliveryGateway",
    "GatewayRegistry",
    "GatewayResult",
    "LastDigitSimulationPolicy",
    "MobileMoneyProvider",
    "OrangeMoneyGateway",
    "SettlementGateway",
    "SimulatedOrangeMoneyProvider",
    "SimulatedOutcome",
    "build_gateway_registry",
]
