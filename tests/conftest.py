"""
Pytest configuration and fixtures.
"""
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from marketplace_payments.api.dependencies import build_services
from marketplace_payments.api.main import create_app
from marketplace_payments.config import Settings
from marketplace_payments.core.orchestrator import CustomerInfo, PaymentOrchestrator
from marketplace_payments.core.orders import InMemoryOrderRepository, OrderView
from marketplace_payments.core.payment_store import PaymentStore
from marketplace_payments.database.connection import create_session_factory
from marketplace_payments.database.models import Base
from marketplace_payments.integrations.gateways import GatewayRegistry, build_gateway_registry
from marketplace_payments.integrations.webhook_handler import WebhookHandler

WEBHOOK_SECRET = "whsec_test_secret"

# Simulated Orange Money outcomes are keyed on the last phone digit
APPROVED_PHONE = "+22670000001"
DECLINED_PHONE = "+22670000000"
OTP_PHONE = "+22670000009"


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings backed by a throwaway SQLite file."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}",
        payment_webhook_secret=WEBHOOK_SECRET,
        app_name="marketplace-payments-test",
        app_env="test",
        log_level="DEBUG",
        gateway_timeout_seconds=5.0,
    )


@pytest_asyncio.fixture
async def session_factory(
    test_settings: Settings,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], Any]:
    """Create tables on a fresh database and yield a session factory."""
    engine = create_async_engine(test_settings.database_url, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield create_session_factory(engine)

    await engine.dispose()


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> PaymentStore:
    return PaymentStore(session_factory)


@pytest.fixture
def orders() -> InMemoryOrderRepository:
    """Order repository with a regular and a high-value order."""
    repo = InMemoryOrderRepository()
    repo.add(OrderView(id="ORD-1", total_amount=Decimal("10000")))
    repo.add(OrderView(id="ORD-2", total_amount=Decimal("25000")))
    repo.add(OrderView(id="ORD-BIG", total_amount=Decimal("2000000")))
    return repo


@pytest.fixture
def gateways(test_settings: Settings) -> GatewayRegistry:
    return build_gateway_registry(test_settings)


@pytest.fixture
def orchestrator(
    test_settings: Settings,
    store: PaymentStore,
    orders: InMemoryOrderRepository,
    gateways: GatewayRegistry,
) -> PaymentOrchestrator:
    return PaymentOrchestrator(test_settings, store, orders, gateways)


@pytest.fixture
def webhook_handler(
    test_settings: Settings, store: PaymentStore, orders: InMemoryOrderRepository
) -> WebhookHandler:
    return WebhookHandler(test_settings, store, orders)


@pytest.fixture
def approved_customer() -> CustomerInfo:
    return CustomerInfo(phone=APPROVED_PHONE, name="Awa Ouedraogo", email="awa@example.com")


@pytest_asyncio.fixture
async def client(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    orders: InMemoryOrderRepository,
) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client over the app wired to the test database."""
    services = build_services(test_settings, session_factory, orders=orders)
    app = create_app(services=services)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
