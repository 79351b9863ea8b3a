"""
Service wiring and FastAPI dependencies.

The services are built once per application and stored on ``app.state`` so
tests can hand ``create_app`` a fully wired set backed by their own database.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace_payments.config import Settings
from marketplace_payments.core.orchestrator import PaymentOrchestrator, RequestContext
from marketplace_payments.core.orders import InMemoryOrderRepository, OrderRepository
from marketplace_payments.core.payment_store import PaymentStore
from marketplace_payments.core.signing import signatures_match
from marketplace_payments.integrations.gateways import GatewayRegistry, build_gateway_registry
from marketplace_payments.integrations.webhook_handler import WebhookHandler
from marketplace_payments.monitoring.health import HealthCheck


@dataclass
class PaymentServices:
    """Everything the routes need."""

    settings: Settings
    store: PaymentStore
    orders: OrderRepository
    orchestrator: PaymentOrchestrator
    webhook_handler: WebhookHandler
    health_check: HealthCheck


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    orders: Optional[OrderRepository] = None,
    gateways: Optional[GatewayRegistry] = None,
) -> PaymentServices:
    """
    Wire the payment services.

    Args:
        settings: Application settings
        session_factory: Session factory for the payments database
        orders: Order collaborator (in-memory repository when omitted)
        gateways: Gateway registry (built-in gateways when omitted)
    """
    store = PaymentStore(session_factory)
    orders = orders if orders is not None else InMemoryOrderRepository()
    gateways = gateways or build_gateway_registry(settings)
    return PaymentServices(
        settings=settings,
        store=store,
        orders=orders,
        orchestrator=PaymentOrchestrator(settings, store, orders, gateways),
        webhook_handler=WebhookHandler(settings, store, orders),
        health_check=HealthCheck(session_factory),
    )


def get_services(request: Request) -> PaymentServices:
    """Services attached to the running application."""
    return request.app.state.services


def get_orchestrator(services: PaymentServices = Depends(get_services)) -> PaymentOrchestrator:
    return services.orchestrator


def client_ip(request: Request) -> Optional[str]:
    """Client address, honouring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_request_context(request: Request) -> RequestContext:
    """Actor and network origin of the request."""
    return RequestContext(
        actor=request.headers.get("X-Actor-Id"),
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )


async def require_admin(
    request: Request, services: PaymentServices = Depends(get_services)
) -> None:
    """Guard admin routes with the configured API key, when there is one."""
    expected = services.settings.admin_api_key
    if expected is None:
        return
    provided = request.headers.get(services.settings.api_key_header)
    if not signatures_match(expected.get_secret_value(), provided):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key")
