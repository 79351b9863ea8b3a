"""Core payment processing logic."""
from .enums import FraudRecommendation, PaymentMethod, PaymentStatus
from .exceptions import (
    FraudBlockedError,
    GatewayError,
    InvalidTransitionError,
    NotFoundError,
    PaymentError,
    PaymentValidationError,
    SignatureInvalidError,
    UnsupportedMethodError,
)
from .fees import calculate_fee
from .fraud import FraudAssessment, FraudContext, FraudPolicy, FraudScorer
from .orchestrator import CustomerInfo, PaymentOrchestrator, RequestContext
from .orders import InMemoryOrderRepository, OrderRepository, OrderView
from .payment_store import PaymentStore, TransitionResult

__all__ = [
    "CustomerInfo",
    "FraudAssessment",
    "FraudBlockedError",
    "FraudContext",
    "FraudPolicy",
    "FraudRecommendation",
    "FraudScorer",
    "GatewayError",
    "InMemoryOrderRepository",
    "InvalidTransitionError",
    "NotFoundError",
    "OrderRepository",
    "OrderView",
    "PaymentError",
    "PaymentMethod",
    "PaymentOrchestrator",
    "PaymentStatus",
    "PaymentStore",
    "PaymentValidationError",
    "RequestContext",
    "SignatureInvalidError",
    "TransitionResult",
    "UnsupportedMethodError",
    "calculate_fee",
]
