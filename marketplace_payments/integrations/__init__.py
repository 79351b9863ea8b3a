"""Settlement gateways and provider webhooks."""
from .gateways import GatewayRegistry, GatewayResult, SettlementGateway, build_gateway_registry
from .webhook_handler import WebhookHandler

__all__ = [
    "GatewayRegistry",
    "GatewayResult",
    "SettlementGateway",
    "WebhookHandler",
    "build_gateway_registry",
]
