"""
Settlement provider webhook handler.

Implements:
- HMAC-SHA256 signature verification over canonical JSON (constant-time compare)
- Replay window for timestamped notifications
- Provider status mapping onto the payment state machine
- Idempotent application of the mapped transition
"""
import time
from typing import Any, Dict, Mapping, Optional

import structlog
from pydantic import ValidationError

from marketplace_payments.config import Settings
from marketplace_payments.core.enums import PaymentStatus
from marketplace_payments.core.exceptions import (
    NotFoundError,
    PaymentValidationError,
    SignatureInvalidError,
)
from marketplace_payments.core.orders import OrderRepository
from marketplace_payments.core.payment_store import PaymentStore
from marketplace_payments.core.records import GatewayFailure, WebhookNotification, dump_record
from marketplace_payments.core.signing import sign_payload, signatures_match
from marketplace_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

# Provider status → payment status; anything else is acknowledged and ignored
PROVIDER_STATUS_MAP: Dict[str, PaymentStatus] = {
    "success": PaymentStatus.COMPLETED,
    "successful": PaymentStatus.COMPLETED,
    "completed": PaymentStatus.COMPLETED,
    "failed": PaymentStatus.FAILED,
    "error": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.CANCELLED,
    "canceled": PaymentStatus.CANCELLED,
}

SIGNATURE_PREFIX = "sha256="


class WebhookHandler:
    """
    Verifies provider notifications and applies them to payments.

    A notification that asks for the status the payment already has is a
    successful no-op, so provider redeliveries are harmless.
    """

    def __init__(
        self, settings: Settings, store: PaymentStore, orders: OrderRepository
    ) -> None:
        """
        Initialize webhook handler.

        Args:
            settings: Application settings (webhook secret, replay window)
            store: Payment store
            orders: Order collaborator notified when a payment completes
        """
        self.settings = settings
        self.store = store
        self.orders = orders

    def compute_signature(self, payload: Mapping[str, Any]) -> str:
        """Signature the provider is expected to send for ``payload``."""
        return sign_payload(payload, self.settings.payment_webhook_secret.get_secret_value())

    def verify_signature(self, payload: Mapping[str, Any], signature: Optional[str]) -> bool:
        """
        Check a notification signature.

        Accepts a bare hex digest or one prefixed with ``sha256=``.

        Returns:
            bool: True only for a matching signature
        """
        if signature and signature.startswith(SIGNATURE_PREFIX):
            signature = signature[len(SIGNATURE_PREFIX):]
        return signatures_match(self.compute_signature(payload), signature)

    def _check_freshness(self, payload: Mapping[str, Any]) -> bool:
        timestamp = payload.get("timestamp")
        if timestamp is None:
            return True
        try:
            age = abs(time.time() - float(timestamp))
        except (TypeError, ValueError):
            return False
        return age <= self.settings.webhook_tolerance_seconds

    async def handle(
        self,
        payload: Dict[str, Any],
        signature: Optional[str],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Authenticate and apply a provider notification.

        Args:
            payload: Parsed JSON body
            signature: Signature header value
            ip_address: Sender address
            user_agent: Sender user agent

        Returns:
            Dict[str, Any]: ``status`` is ``processed``, ``duplicate`` or ``ignored``

        Raises:
            SignatureInvalidError: Missing/invalid signature or stale notification
            PaymentValidationError: Malformed payload
            NotFoundError: No payment matches the notification
            InvalidTransitionError: The mapped transition is not allowed
        """
        start_time = time.time()

        if not signature:
            metrics.record_webhook_rejection("missing")
            logger.warning("webhook_signature_missing", ip_address=ip_address)
            raise SignatureInvalidError()
        if not self.verify_signature(payload, signature):
            metrics.record_webhook_rejection("mismatch")
            logger.warning("webhook_signature_invalid", ip_address=ip_address)
            raise SignatureInvalidError()
        if not self._check_freshness(payload):
            metrics.record_webhook_rejection("stale")
            logger.warning("webhook_stale_notification", ip_address=ip_address)
            raise SignatureInvalidError()

        try:
            notification = WebhookNotification.model_validate(payload)
        except ValidationError as e:
            message = e.errors()[0]["msg"]
            raise PaymentValidationError(f"Malformed webhook payload: {message}") from e

        provider_status = notification.status.lower()
        payment = await self.store.find(notification.reference, notification.transaction_id)
        if payment is None:
            logger.warning(
                "webhook_payment_not_found",
                reference=notification.reference,
                transaction_id=notification.transaction_id,
            )
            raise NotFoundError("Payment not found for webhook notification")

        target = PROVIDER_STATUS_MAP.get(provider_status)
        if target is None:
            logger.warning(
                "webhook_unknown_status",
                payment_reference=payment.payment_reference,
                provider_status=provider_status,
            )
            metrics.record_webhook_event(provider_status, "ignored", time.time() - start_time)
            return {
                "status": "ignored",
                "payment_reference": payment.payment_reference,
                "payment_status": payment.status,
            }

        changes: Dict[str, Any] = {"webhook_data": dict(payload)}
        if notification.transaction_id and not payment.external_transaction_id:
            changes["external_transaction_id"] = notification.transaction_id
        if notification.authorization_code:
            changes["authorization_code"] = notification.authorization_code
        if target == PaymentStatus.FAILED:
            changes["error_details"] = dump_record(
                GatewayFailure(
                    reason="provider_reported_failure",
                    error_code=notification.error_code,
                    message=notification.error_message,
                )
            )

        result = await self.store.transition(
            payment.id,
            target,
            changed_by="webhook",
            ip_address=ip_address,
            user_agent=user_agent,
            notes=f"webhook:{provider_status}",
            changes=changes,
        )

        if result.changed and target == PaymentStatus.COMPLETED:
            await self.orders.update_payment_status(
                result.payment.order_id, "paid", result.payment.payment_reference
            )

        outcome = "processed" if result.changed else "duplicate"
        metrics.record_webhook_event(provider_status, outcome, time.time() - start_time)
        logger.info(
            "webhook_processed",
            payment_reference=result.payment.payment_reference,
            provider_status=provider_status,
            payment_status=result.payment.status,
            outcome=outcome,
        )

        return {
            "status": outcome,
            "payment_reference": result.payment.payment_reference,
            "payment_status": result.payment.status,
        }
