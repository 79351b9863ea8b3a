"""
Settlement gateway contract and registry.

Every payment method is served by one ``SettlementGateway``. A gateway never
raises for a business outcome (declined, OTP needed); it answers with a
``GatewayResult`` naming the status the payment should move to.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Union

import structlog

from marketplace_payments.core.enums import PaymentMethod, PaymentStatus
from marketplace_payments.core.exceptions import UnsupportedMethodError
from marketplace_payments.database.models import Payment

logger = structlog.get_logger(__name__)


@dataclass
class GatewayResult:
    """Outcome of submitting a payment to a settlement gateway."""

    success: bool
    status: str  # processing, otp_required, failed
    message: str
    target_status: Optional[PaymentStatus] = None
    provider_transaction_id: Optional[str] = None
    payment_url: Optional[str] = None
    payment_token: Optional[str] = None
    requires_otp: bool = False
    transfer_details: Optional[Dict[str, Any]] = None
    error_code: Optional[str] = None
    gateway_response: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def processing(cls, message: str, **kwargs: Any) -> "GatewayResult":
        return cls(
            success=True,
            status="processing",
            message=message,
            target_status=PaymentStatus.PROCESSING,
            **kwargs,
        )

    @classmethod
    def otp_required(cls, message: str, **kwargs: Any) -> "GatewayResult":
        # The payment stays pending until the code is submitted
        return cls(
            success=True,
            status="otp_required",
            message=message,
            target_status=None,
            requires_otp=True,
            **kwargs,
        )

    @classmethod
    def failed(cls, error_code: str, message: str, **kwargs: Any) -> "GatewayResult":
        return cls(
            success=False,
            status="failed",
            message=message,
            target_status=PaymentStatus.FAILED,
            error_code=error_code,
            **kwargs,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Caller-facing view; the raw provider response is left out."""
        data: Dict[str, Any] = {
            "success": self.success,
            "status": self.status,
            "message": self.message,
            "requires_otp": self.requires_otp,
        }
        optional = {
            "provider_transaction_id": self.provider_transaction_id,
            "payment_url": self.payment_url,
            "payment_token": self.payment_token,
            "transfer_details": self.transfer_details,
            "error_code": self.error_code,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data


class SettlementGateway(ABC):
    """Abstract base class for settlement gateways."""

    @property
    @abstractmethod
    def method(self) -> PaymentMethod:
        """Payment method served by this gateway."""
        ...

    @abstractmethod
    async def process(self, payment: Payment, otp_code: Optional[str] = None) -> GatewayResult:
        """
        Submit a pending payment for settlement.

        Args:
            payment: Snapshot of the pending payment
            otp_code: One-time code supplied by the customer, if any

        Returns:
            GatewayResult: Business outcome of the submission
        """
        ...


class GatewayRegistry:
    """Maps payment methods to their settlement gateway."""

    def __init__(self, gateways: Iterable[SettlementGateway] = ()) -> None:
        self._gateways: Dict[PaymentMethod, SettlementGateway] = {}
        for gateway in gateways:
            self.register(gateway)

    def register(self, gateway: SettlementGateway) -> None:
        """Register (or replace) the gateway for its method."""
        self._gateways[gateway.method] = gateway
        logger.info("settlement_gateway_registered", payment_method=gateway.method.value)

    def get(self, method: Union[PaymentMethod, str]) -> SettlementGateway:
        """
        Look up the gateway for a method.

        Raises:
            UnsupportedMethodError: If no gateway serves the method
        """
        try:
            return self._gateways[PaymentMethod(method)]
        except (ValueError, KeyError) as e:
            raise UnsupportedMethodError(method) from e

    def __contains__(self, method: object) -> bool:
        try:
            return PaymentMethod(method) in self._gateways
        except ValueError:
            return False

    @property
    def methods(self) -> list[PaymentMethod]:
        return list(self._gateways)
