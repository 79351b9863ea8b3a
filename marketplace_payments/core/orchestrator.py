"""
Payment orchestrator.

Coordinates the complete payment flow:
1. Validate input
2. Look up the order
3. Compute fees and create the pending payment
4. Screen for fraud (a block ends the flow)
5. Submit to the settlement gateway under a timeout
6. Apply the gateway's outcome through the state machine

Also exposes the follow-up operations: OTP submission, cancel, retry,
out-of-band completion, refund, expiry cleanup, statistics and audit.
"""
import asyncio
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

import structlog

from marketplace_payments.config import Settings
from marketplace_payments.core.enums import (
    FraudRecommendation,
    PaymentMethod,
    PaymentStatus,
)
from marketplace_payments.core.exceptions import (
    FraudBlockedError,
    GatewayError,
    InvalidTransitionError,
    NotFoundError,
    PaymentError,
    PaymentValidationError,
)
from marketplace_payments.core.fees import calculate_fee, to_amount
from marketplace_payments.core.fraud import FraudContext, FraudPolicy, FraudScorer
from marketplace_payments.core.orders import OrderRepository
from marketplace_payments.core.payment_store import PaymentStore
from marketplace_payments.core.records import (
    CancellationRecord,
    FraudRejection,
    GatewayFailure,
    RefundRecord,
    dump_record,
)
from marketplace_payments.core.state_machine import can_retry, coerce_status
from marketplace_payments.core.validation import parse_method, validate_customer_phone
from marketplace_payments.database.models import Payment, utcnow
from marketplace_payments.integrations.gateways import GatewayRegistry, GatewayResult
from marketplace_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

ACTIVE_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PROCESSING)


@dataclass
class RequestContext:
    """Who is acting and from where; recorded on payments and audit entries."""

    actor: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class CustomerInfo:
    """Customer contact details captured on a payment."""

    phone: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None


class PaymentOrchestrator:
    """
    Main payment processing orchestrator.

    All collaborators and configuration are injected; the orchestrator holds
    no state of its own between calls.
    """

    def __init__(
        self,
        settings: Settings,
        store: PaymentStore,
        orders: OrderRepository,
        gateways: GatewayRegistry,
        fraud_scorer: Optional[FraudScorer] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            settings: Application settings (TTLs, timeouts, retry limit)
            store: Payment store
            orders: Order collaborator
            gateways: Gateway per payment method
            fraud_scorer: Optional scorer (built from settings if omitted)
        """
        self.settings = settings
        self.store = store
        self.orders = orders
        self.gateways = gateways
        self.fraud_scorer = fraud_scorer or FraudScorer(FraudPolicy.from_settings(settings))

        logger.info("payment_orchestrator_initialized", methods=[m.value for m in gateways.methods])

    def _validate_payment_request(
        self,
        order_id: str,
        payment_method: Union[PaymentMethod, str],
        customer_phone: Optional[str],
    ) -> PaymentMethod:
        """
        Validate payment request parameters.

        Returns:
            PaymentMethod: The parsed method

        Raises:
            PaymentValidationError: If validation fails
            UnsupportedMethodError: If no gateway serves the method
        """
        if not order_id:
            raise PaymentValidationError("Order ID is required")

        method = parse_method(payment_method)
        # Raises UnsupportedMethodError for a known but unregistered method
        self.gateways.get(method)
        validate_customer_phone(method, customer_phone)
        return method

    def _expires_at(self, method: PaymentMethod, now: datetime) -> datetime:
        ttl = {
            PaymentMethod.ORANGE_MONEY: timedelta(minutes=self.settings.orange_money_ttl_minutes),
            PaymentMethod.BANK_TRANSFER: timedelta(hours=self.settings.bank_transfer_ttl_hours),
            PaymentMethod.CASH_ON_DELIVERY: timedelta(
                hours=self.settings.cash_on_delivery_ttl_hours
            ),
        }[method]
        return now + ttl

    async def initiate(
        self,
        order_id: str,
        payment_method: Union[PaymentMethod, str],
        customer: Optional[CustomerInfo] = None,
        context: Optional[RequestContext] = None,
        otp_code: Optional[str] = None,
        retry_of_id: Optional[uuid.UUID] = None,
    ) -> Dict[str, Any]:
        """
        Create a payment for an order and submit it for settlement.

        Args:
            order_id: Order being paid
            payment_method: Settlement method
            customer: Customer contact details
            context: Acting user and network origin
            otp_code: Optional one-time code for mobile money
            retry_of_id: Payment this attempt retries, if any

        Returns:
            Dict[str, Any]: Payment view plus the gateway outcome

        Raises:
            PaymentValidationError: If input validation fails
            NotFoundError: If the order does not exist
            FraudBlockedError: If fraud screening blocks the payment
            GatewayError: If the gateway times out or fails unexpectedly
        """
        start_time = time.time()
        customer = customer or CustomerInfo()
        context = context or RequestContext()

        logger.info(
            "payment_initiation_started",
            order_id=order_id,
            payment_method=str(getattr(payment_method, "value", payment_method)),
            actor=context.actor,
        )

        method = self._validate_payment_request(order_id, payment_method, customer.phone)

        order = await self.orders.find_by_id(order_id)
        if order is None:
            raise NotFoundError(f"Order not found: {order_id}")
        if order.payment_status == "paid":
            raise PaymentValidationError("Order is already paid")
        if await self.store.count_by_order(order_id, ACTIVE_STATUSES):
            raise PaymentValidationError("Order already has a payment in progress")

        amount = to_amount(order.total_amount)
        fees = calculate_fee(method, amount)

        payment = await self.store.create(
            order_id=order_id,
            amount=amount,
            fees=fees,
            payment_method=method,
            currency=order.currency or self.settings.default_currency,
            expires_at=self._expires_at(method, utcnow()),
            customer_phone=customer.phone,
            customer_name=customer.name,
            customer_email=customer.email,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            created_by=context.actor,
            retry_of_id=retry_of_id,
            max_attempts=self.settings.max_payment_attempts if retry_of_id else None,
        )

        payment = await self._screen(payment, context)
        response = await self._dispatch(payment, otp_code, context)

        duration = time.time() - start_time
        metrics.record_payment_request(method.value, response["status"], float(amount))
        metrics.record_payment_duration(duration)

        logger.info(
            "payment_initiated",
            payment_id=response["id"],
            payment_reference=response["payment_reference"],
            status=response["status"],
            duration_seconds=duration,
        )
        return response

    async def _screen(self, payment: Payment, context: RequestContext) -> Payment:
        """Run fraud screening; block fails the payment and raises."""
        failed_attempts = await self.store.count_by_order(
            payment.order_id, [PaymentStatus.FAILED]
        )
        assessment = self.fraud_scorer.assess(
            payment.amount,
            payment.customer_phone,
            PaymentMethod(payment.payment_method),
            FraudContext(previous_failed_attempts=failed_attempts),
        )
        metrics.record_fraud_decision(assessment.recommendation.value)

        if assessment.is_blocked:
            await self.store.transition(
                payment.id,
                PaymentStatus.FAILED,
                changed_by=context.actor,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
                notes="fraud_detected",
                changes={
                    "risk_score": assessment.risk_score,
                    "fraud_flags": assessment.flags,
                    "error_details": dump_record(
                        FraudRejection(risk_score=assessment.risk_score, flags=assessment.flags)
                    ),
                },
            )
            metrics.record_payment_request(
                payment.payment_method, "fraud_blocked", float(payment.amount)
            )
            logger.warning(
                "payment_blocked_by_fraud",
                payment_reference=payment.payment_reference,
                risk_score=assessment.risk_score,
                flags=assessment.flags,
            )
            raise FraudBlockedError(
                payment.payment_reference, assessment.risk_score, assessment.flags
            )

        if assessment.recommendation == FraudRecommendation.REVIEW:
            logger.warning(
                "payment_flagged_for_review",
                payment_reference=payment.payment_reference,
                risk_score=assessment.risk_score,
                flags=assessment.flags,
            )

        await self.store.update_pending(
            payment.id, risk_score=assessment.risk_score, fraud_flags=assessment.flags
        )
        payment.risk_score = assessment.risk_score
        payment.fraud_flags = assessment.flags
        return payment

    async def _dispatch(
        self, payment: Payment, otp_code: Optional[str], context: RequestContext
    ) -> Dict[str, Any]:
        """Submit a pending payment to its gateway and apply the outcome."""
        gateway = self.gateways.get(payment.payment_method)
        start_time = time.time()

        try:
            result = await asyncio.wait_for(
                gateway.process(payment, otp_code=otp_code),
                timeout=self.settings.gateway_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            metrics.record_gateway_call(payment.payment_method, "timeout", time.time() - start_time)
            logger.error(
                "gateway_timeout",
                payment_reference=payment.payment_reference,
                timeout_seconds=self.settings.gateway_timeout_seconds,
            )
            await self._fail_after_gateway_error(payment, "gateway_timeout", context)
            raise GatewayError("Settlement gateway timed out", payment.payment_reference) from e
        except PaymentError:
            raise
        except Exception as e:
            metrics.record_gateway_call(payment.payment_method, "error", time.time() - start_time)
            logger.error(
                "gateway_error",
                payment_reference=payment.payment_reference,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._fail_after_gateway_error(payment, "gateway_error", context, str(e))
            raise GatewayError("Settlement gateway failed", payment.payment_reference) from e

        metrics.record_gateway_call(payment.payment_method, result.status, time.time() - start_time)

        if result.target_status is None:
            # OTP challenge: stays pending, keep the provider token for the second phase
            await self.store.update_pending(
                payment.id,
                payment_token=result.payment_token,
                gateway_response=result.gateway_response,
            )
            payment.payment_token = result.payment_token
        else:
            changes: Dict[str, Any] = {"gateway_response": result.gateway_response}
            if result.provider_transaction_id:
                changes["external_transaction_id"] = result.provider_transaction_id
            if result.payment_url:
                changes["payment_url"] = result.payment_url
            if result.payment_token:
                changes["payment_token"] = result.payment_token
            if result.target_status == PaymentStatus.FAILED:
                changes["error_details"] = dump_record(
                    GatewayFailure(
                        reason=result.error_code or "gateway_declined",
                        error_code=result.error_code,
                        message=result.message,
                    )
                )

            transition = await self.store.transition(
                payment.id,
                result.target_status,
                changed_by=context.actor,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
                notes=f"gateway:{result.status}",
                changes=changes,
            )
            payment = transition.payment

        return self._build_response(payment, result)

    async def _fail_after_gateway_error(
        self,
        payment: Payment,
        reason: str,
        context: RequestContext,
        message: Optional[str] = None,
    ) -> None:
        try:
            await self.store.transition(
                payment.id,
                PaymentStatus.FAILED,
                changed_by=context.actor,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
                notes=reason,
                changes={
                    "error_details": dump_record(GatewayFailure(reason=reason, message=message))
                },
            )
        except InvalidTransitionError:
            # A webhook or cancellation got there first; its outcome stands
            logger.warning(
                "gateway_failure_not_recorded",
                payment_reference=payment.payment_reference,
                reason=reason,
            )

    @staticmethod
    def _build_response(payment: Payment, result: GatewayResult) -> Dict[str, Any]:
        response = payment.to_dict()
        response.update(
            success=result.success,
            message=result.message,
            requires_otp=result.requires_otp,
        )
        if result.requires_otp and result.payment_token:
            response["payment_token"] = result.payment_token
        if result.transfer_details:
            response["transfer_details"] = result.transfer_details
        if result.error_code:
            response["error_code"] = result.error_code
        return response

    async def submit_otp(
        self, reference: str, otp_code: str, context: Optional[RequestContext] = None
    ) -> Dict[str, Any]:
        """
        Complete the second phase of an OTP-challenged payment.

        Raises:
            NotFoundError: If the reference is unknown
            InvalidTransitionError: If the payment is no longer pending
            PaymentValidationError: If no code is supplied or the payment was
                never sent an OTP challenge
        """
        if not otp_code:
            raise PaymentValidationError("OTP code is required")
        payment = await self.store.require_by_reference(reference)
        if payment.status != PaymentStatus.PENDING.value:
            raise InvalidTransitionError(payment.status, PaymentStatus.PROCESSING.value)
        if not payment.payment_token:
            raise PaymentValidationError("Payment has no pending OTP challenge")
        logger.info("payment_otp_submitted", payment_reference=reference)
        return await self._dispatch(payment, otp_code, context or RequestContext())

    async def verify(self, reference: str) -> Dict[str, Any]:
        """Read-only status lookup by reference."""
        payment = await self.store.require_by_reference(reference)
        return payment.to_dict()

    async def get_by_reference(
        self, reference: str, include_internal: bool = False
    ) -> Dict[str, Any]:
        """
        Fetch a payment by reference.

        Args:
            reference: Payment reference
            include_internal: Include provider payloads (privileged callers)

        Raises:
            NotFoundError: If the reference is unknown
        """
        payment = await self.store.require_by_reference(reference)
        return payment.to_dict(include_internal=include_internal)

    async def list_by_order(self, order_id: str) -> List[Dict[str, Any]]:
        """All payments of an order, newest first."""
        return [payment.to_dict() for payment in await self.store.list_by_order(order_id)]

    async def cancel(
        self,
        reference: str,
        reason: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        """
        Cancel a pending or processing payment.

        Raises:
            NotFoundError: If the reference is unknown
            InvalidTransitionError: If the payment can no longer be cancelled
        """
        context = context or RequestContext()
        payment = await self.store.require_by_reference(reference)
        result = await self.store.transition(
            payment.id,
            PaymentStatus.CANCELLED,
            changed_by=context.actor,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            notes=reason or "cancelled",
            changes={
                "error_details": dump_record(
                    CancellationRecord(cancellation_reason=reason, cancelled_by=context.actor)
                )
            },
        )
        logger.info(
            "payment_cancelled",
            payment_reference=reference,
            reason=reason,
            changed=result.changed,
        )
        return result.payment.to_dict()

    async def retry(
        self,
        reference: str,
        otp_code: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        """
        Start a new payment for the same order from a closed attempt.

        Raises:
            NotFoundError: If the reference is unknown
            PaymentValidationError: If the payment is not retryable or the
                order has used up its attempts
        """
        previous = await self.store.require_by_reference(reference)
        if not can_retry(previous.status):
            raise PaymentValidationError(
                f"Payment in status {previous.status} cannot be retried"
            )

        attempts = await self.store.count_by_order(previous.order_id)
        if attempts >= self.settings.max_payment_attempts:
            raise PaymentValidationError("Maximum payment attempts reached for this order")

        logger.info(
            "payment_retry_started",
            previous_reference=reference,
            order_id=previous.order_id,
            attempt=attempts + 1,
        )

        return await self.initiate(
            order_id=previous.order_id,
            payment_method=previous.payment_method,
            customer=CustomerInfo(
                phone=previous.customer_phone,
                name=previous.customer_name,
                email=previous.customer_email,
            ),
            context=context,
            otp_code=otp_code,
            retry_of_id=previous.id,
        )

    async def complete(
        self,
        reference: str,
        context: Optional[RequestContext] = None,
        external_transaction_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Confirm settlement received out of band (transfer landed, cash collected).

        Raises:
            NotFoundError: If the reference is unknown
            InvalidTransitionError: If the payment is not processing
        """
        context = context or RequestContext()
        payment = await self.store.require_by_reference(reference)
        changes: Dict[str, Any] = {}
        if external_transaction_id and not payment.external_transaction_id:
            changes["external_transaction_id"] = external_transaction_id

        result = await self.store.transition(
            payment.id,
            PaymentStatus.COMPLETED,
            changed_by=context.actor,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            notes=notes or "settlement confirmed",
            changes=changes,
        )
        if result.changed:
            await self.orders.update_payment_status(result.payment.order_id, "paid", reference)
        return result.payment.to_dict()

    async def refund(
        self,
        reference: str,
        amount: Optional[Union[Decimal, str, int]] = None,
        reason: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        """
        Refund a completed payment, in full by default.

        Args:
            reference: Payment reference
            amount: Refund amount (full amount when omitted)
            reason: Refund reason
            context: Acting operator

        Raises:
            NotFoundError: If the reference is unknown
            PaymentValidationError: If the amount is not in (0, payment amount]
            InvalidTransitionError: If the payment is not completed, or was already
                refunded for a different amount
        """
        context = context or RequestContext()
        payment = await self.store.require_by_reference(reference)

        refund_amount = to_amount(amount) if amount is not None else to_amount(payment.amount)
        if refund_amount <= 0 or refund_amount > to_amount(payment.amount):
            raise PaymentValidationError("Refund amount must be between 0 and the payment amount")

        record = RefundRecord(
            refund_amount=refund_amount,
            refund_reason=reason,
            refunded_by=context.actor,
            refunded_at=utcnow(),
        )
        result = await self.store.transition(
            payment.id,
            PaymentStatus.REFUNDED,
            changed_by=context.actor,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            notes=reason or "refunded",
            changes={"error_details": dump_record(record)},
        )
        if not result.changed:
            recorded = (result.payment.error_details or {}).get("refund_amount")
            if recorded is None or to_amount(recorded) != refund_amount:
                raise InvalidTransitionError(result.payment.status, PaymentStatus.REFUNDED.value)
        else:
            await self.orders.update_payment_status(result.payment.order_id, "refunded", reference)
            logger.info(
                "payment_refunded",
                payment_reference=reference,
                refund_amount=str(refund_amount),
                reason=reason,
            )
        return result.payment.to_dict(include_internal=True)

    async def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """
        Close payments whose expiry has passed.

        Pending payments become ``expired``; processing ones are failed when
        ``reclaim_stale_processing`` is set. Rows another writer moved in the
        meantime are skipped.

        Returns:
            int: Number of payments changed
        """
        now = now or utcnow()
        statuses = [PaymentStatus.PENDING]
        if self.settings.reclaim_stale_processing:
            statuses.append(PaymentStatus.PROCESSING)

        expired = reclaimed = 0
        for payment_id, status in await self.store.find_overdue(now, statuses):
            try:
                if status == PaymentStatus.PENDING:
                    result = await self.store.transition(
                        payment_id,
                        PaymentStatus.EXPIRED,
                        changed_by="system",
                        notes="payment expired",
                    )
                    expired += int(result.changed)
                else:
                    result = await self.store.transition(
                        payment_id,
                        PaymentStatus.FAILED,
                        changed_by="system",
                        notes="processing expired",
                        changes={
                            "error_details": dump_record(
                                GatewayFailure(reason="processing_expired")
                            )
                        },
                    )
                    reclaimed += int(result.changed)
            except InvalidTransitionError:
                logger.info("expiry_skipped_status_changed", payment_id=str(payment_id))

        metrics.record_expiry_sweep(expired, reclaimed)
        logger.info("expired_payments_cleaned", expired=expired, reclaimed=reclaimed)
        return expired + reclaimed

    async def statistics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        payment_method: Optional[Union[PaymentMethod, str]] = None,
        status: Optional[Union[PaymentStatus, str]] = None,
    ) -> List[Dict[str, Any]]:
        """Aggregates grouped by method and status, optionally filtered."""
        method = parse_method(payment_method) if payment_method else None
        parsed_status = coerce_status(status) if status else None
        if start_date and end_date and start_date > end_date:
            raise PaymentValidationError("start_date must not be after end_date")
        return await self.store.statistics(start_date, end_date, method, parsed_status)

    async def audit_trail(self, reference: str) -> List[Dict[str, Any]]:
        """Audit entries of a payment, newest first."""
        payment = await self.store.require_by_reference(reference)
        return [entry.to_dict() for entry in await self.store.audit_trail(payment.id)]

    async def verify_audit_chain(self, reference: str) -> Dict[str, Any]:
        """Check that a payment's audit history has not been rewritten."""
        payment = await self.store.require_by_reference(reference)
        report = await self.store.verify_audit_chain(payment.id)
        report["payment_reference"] = reference
        return report
