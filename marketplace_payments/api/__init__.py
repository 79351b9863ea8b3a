"""FastAPI application and routes."""
from .dependencies import PaymentServices, build_services
from .main import create_app
from .schemas import (
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    PaymentResponse,
    RefundRequest,
    WebhookResponse,
)

__all__ = [
    "create_app",
    "build_services",
    "PaymentServices",
    "InitiatePaymentRequest",
    "InitiatePaymentResponse",
    "PaymentResponse",
    "RefundRequest",
    "WebhookResponse",
]
