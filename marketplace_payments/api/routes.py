"""
API routes for payment processing.

Domain errors raised by the orchestrator are turned into JSON error bodies by
the exception handler registered in ``api.main``.
"""
import json
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from marketplace_payments.core.exceptions import PaymentValidationError
from marketplace_payments.core.orchestrator import (
    CustomerInfo,
    PaymentOrchestrator,
    RequestContext,
)

from .dependencies import (
    PaymentServices,
    client_ip,
    get_orchestrator,
    get_request_context,
    get_services,
    require_admin,
)
from .schemas import (
    AuditTrailResponse,
    CancelPaymentRequest,
    CleanupResponse,
    CompletePaymentRequest,
    HealthCheckResponse,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    PaymentDetailResponse,
    PaymentListResponse,
    PaymentResponse,
    RefundRequest,
    RetryPaymentRequest,
    StatisticsResponse,
    SubmitOtpRequest,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
payment_router = APIRouter(prefix="/payments", tags=["payments"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
admin_router = APIRouter(
    prefix="/admin/payments", tags=["admin"], dependencies=[Depends(require_admin)]
)
monitoring_router = APIRouter(tags=["monitoring"])


@payment_router.post(
    "/initiate",
    response_model=InitiatePaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Initiate a payment",
    description="Create a payment for an order and submit it to the settlement gateway",
)
async def initiate_payment(
    request: InitiatePaymentRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    context: RequestContext = Depends(get_request_context),
) -> Dict[str, Any]:
    """Initiate a payment."""
    logger.info(
        "api_initiate_payment_request",
        order_id=request.order_id,
        payment_method=request.payment_method,
    )
    return await orchestrator.initiate(
        order_id=request.order_id,
        payment_method=request.payment_method,
        customer=CustomerInfo(
            phone=request.customer_phone,
            name=request.customer_name,
            email=request.customer_email,
        ),
        context=context,
        otp_code=request.otp_code,
    )


@payment_router.get(
    "/verify/{reference}",
    response_model=PaymentResponse,
    summary="Verify a payment",
    description="Read-only status lookup by payment reference",
)
async def verify_payment(
    reference: str,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Verify payment status."""
    return await orchestrator.verify(reference)


@payment_router.get(
    "/order/{order_id}",
    response_model=PaymentListResponse,
    summary="List payments of an order",
)
async def list_order_payments(
    order_id: str,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """List an order's payments, newest first."""
    return {"order_id": order_id, "payments": await orchestrator.list_by_order(order_id)}


@payment_router.get(
    "/{reference}",
    response_model=PaymentResponse,
    summary="Get a payment",
)
async def get_payment(
    reference: str,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Get payment by reference."""
    return await orchestrator.get_by_reference(reference)


@payment_router.put(
    "/{reference}/cancel",
    response_model=PaymentResponse,
    summary="Cancel a payment",
    description="Cancel a pending or processing payment",
)
async def cancel_payment(
    reference: str,
    request: CancelPaymentRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    context: RequestContext = Depends(get_request_context),
) -> Dict[str, Any]:
    """Cancel a payment."""
    return await orchestrator.cancel(reference, reason=request.reason, context=context)


@payment_router.post(
    "/{reference}/retry",
    response_model=InitiatePaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Retry a payment",
    description="Start a new payment from a failed, expired or cancelled one",
)
async def retry_payment(
    reference: str,
    request: RetryPaymentRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    context: RequestContext = Depends(get_request_context),
) -> Dict[str, Any]:
    """Retry a payment."""
    return await orchestrator.retry(reference, otp_code=request.otp_code, context=context)


@payment_router.post(
    "/{reference}/otp",
    response_model=InitiatePaymentResponse,
    summary="Submit OTP",
    description="Submit the one-time code of a pending mobile-money payment",
)
async def submit_otp(
    reference: str,
    request: SubmitOtpRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    context: RequestContext = Depends(get_request_context),
) -> Dict[str, Any]:
    """Submit OTP code."""
    return await orchestrator.submit_otp(reference, request.otp_code, context=context)


@webhook_router.post(
    "/orange-money",
    response_model=WebhookResponse,
    summary="Orange Money webhook endpoint",
    description="Handle signed payment notifications from the provider",
)
async def orange_money_webhook(
    request: Request,
    services: PaymentServices = Depends(get_services),
) -> Dict[str, Any]:
    """
    Handle provider webhook notifications.

    The signature is checked over the canonical JSON of the parsed body.
    """
    body = await request.body()
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise PaymentValidationError("Webhook body must be JSON") from e
    if not isinstance(payload, dict):
        raise PaymentValidationError("Webhook body must be a JSON object")

    return await services.webhook_handler.handle(
        payload,
        request.headers.get(services.settings.webhook_signature_header),
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )


@admin_router.get(
    "/statistics",
    response_model=StatisticsResponse,
    summary="Payment statistics",
    description="Count and sums grouped by payment method and status",
)
async def payment_statistics(
    start_date: Optional[datetime] = Query(default=None),
    end_date: Optional[datetime] = Query(default=None),
    payment_method: Optional[str] = Query(default=None),
    payment_status: Optional[str] = Query(default=None, alias="status"),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Aggregate payment statistics."""
    rows = await orchestrator.statistics(start_date, end_date, payment_method, payment_status)
    return {"statistics": rows}


@admin_router.post(
    "/cleanup-expired",
    response_model=CleanupResponse,
    summary="Expire overdue payments",
)
async def cleanup_expired(
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Run the expiry sweep now."""
    return {"affected": await orchestrator.cleanup_expired()}


@admin_router.get(
    "/{reference}",
    response_model=PaymentDetailResponse,
    summary="Get a payment with provider payloads",
)
async def get_payment_detail(
    reference: str,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Privileged payment view."""
    return await orchestrator.get_by_reference(reference, include_internal=True)


@admin_router.post(
    "/{reference}/refund",
    response_model=PaymentDetailResponse,
    summary="Refund a payment",
    description="Full or partial refund of a completed payment",
)
async def refund_payment(
    reference: str,
    request: RefundRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    context: RequestContext = Depends(get_request_context),
) -> Dict[str, Any]:
    """Refund a payment."""
    logger.info(
        "api_refund_payment_request",
        payment_reference=reference,
        amount=str(request.amount) if request.amount is not None else None,
        reason=request.reason,
    )
    return await orchestrator.refund(
        reference, amount=request.amount, reason=request.reason, context=context
    )


@admin_router.post(
    "/{reference}/complete",
    response_model=PaymentResponse,
    summary="Confirm settlement",
    description="Mark a processing bank transfer or cash-on-delivery payment as completed",
)
async def complete_payment(
    reference: str,
    request: CompletePaymentRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    context: RequestContext = Depends(get_request_context),
) -> Dict[str, Any]:
    """Confirm settlement out of band."""
    return await orchestrator.complete(
        reference,
        context=context,
        external_transaction_id=request.external_transaction_id,
        notes=request.notes,
    )


@admin_router.get(
    "/{reference}/audit",
    response_model=AuditTrailResponse,
    summary="Payment audit trail",
)
async def payment_audit_trail(
    reference: str,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Audit trail (newest first) with hash chain verification."""
    entries: List[Dict[str, Any]] = await orchestrator.audit_trail(reference)
    chain = await orchestrator.verify_audit_chain(reference)
    return {
        "payment_reference": reference,
        "entries": entries,
        "chain": {key: chain[key] for key in ("valid", "entries", "broken_at")},
    }


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(services: PaymentServices = Depends(get_services)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await services.health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
    description="Kubernetes liveness probe endpoint",
)
async def liveness(services: PaymentServices = Depends(get_services)) -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await services.health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Kubernetes readiness probe endpoint",
)
async def readiness(services: PaymentServices = Depends(get_services)) -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await services.health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,  # Don't include in OpenAPI docs
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
