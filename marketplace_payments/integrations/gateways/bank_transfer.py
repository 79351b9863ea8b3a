"""Bank transfer settlement gateway."""
from typing import Optional

from marketplace_payments.config import Settings
from marketplace_payments.core.enums import PaymentMethod
from marketplace_payments.core.records import BankTransferInstructions, dump_record
from marketplace_payments.database.models import Payment

from .base import GatewayResult, SettlementGateway


class BankTransferGateway(SettlementGateway):
    """
    Hands the customer wiring instructions.

    The payment waits in ``processing`` until an operator confirms receipt.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @property
    def method(self) -> PaymentMethod:
        return PaymentMethod.BANK_TRANSFER

    async def process(self, payment: Payment, otp_code: Optional[str] = None) -> GatewayResult:
        instructions = dump_record(
            BankTransferInstructions(
                bank_name=self.settings.bank_name,
                account_name=self.settings.bank_account_name,
                account_number=self.settings.bank_account_number,
                swift_code=self.settings.bank_swift_code,
                reference=payment.payment_reference,
                amount=payment.amount,
                currency=payment.currency,
            )
        )
        return GatewayResult.processing(
            "Bank transfer instructions issued",
            transfer_details=instructions,
            gateway_response={"method": self.method.value, "transfer_details": instructions},
        )
