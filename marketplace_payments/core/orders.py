"""
Order collaborator interface.

Orders live outside the payment core; it only reads an order's total and
reports payment outcomes back.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Tuple

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class OrderView:
    """What the payment core needs to know about an order."""

    id: str
    total_amount: Decimal
    currency: str = "XOF"
    payment_status: str = "pending"


class OrderRepository(Protocol):
    """Read/notify interface onto the order system."""

    async def find_by_id(self, order_id: str) -> Optional[OrderView]:
        ...

    async def update_payment_status(self, order_id: str, status: str, reference: str) -> None:
        ...


@dataclass
class InMemoryOrderRepository:
    """Process-local order repository for development and tests."""

    orders: Dict[str, OrderView] = field(default_factory=dict)
    notifications: List[Tuple[str, str, str]] = field(default_factory=list)

    def add(self, order: OrderView) -> OrderView:
        self.orders[order.id] = order
        return order

    async def find_by_id(self, order_id: str) -> Optional[OrderView]:
        return self.orders.get(order_id)

    async def update_payment_status(self, order_id: str, status: str, reference: str) -> None:
        order = self.orders.get(order_id)
        if order is not None:
            order.payment_status = status
        self.notifications.append((order_id, status, reference))
        logger.info(
            "order_payment_status_updated",
            order_id=order_id,
            payment_status=status,
            payment_reference=reference,
        )
