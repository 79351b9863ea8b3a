"""
Payment expiry background worker.

Periodically expires pending payments whose window has passed and fails
processing payments that never settled.
"""
import argparse
import asyncio
import signal
from typing import Any, Optional

from marketplace_payments.api.dependencies import build_services
from marketplace_payments.config import Settings, get_settings
from marketplace_payments.core.orchestrator import PaymentOrchestrator
from marketplace_payments.database.connection import close_db, get_session_factory, init_db
from marketplace_payments.monitoring.logging import get_logger, setup_logging

logger = get_logger(__name__)


async def run_expiry_sweep(orchestrator: PaymentOrchestrator) -> int:
    """
    Run one expiry sweep.

    Returns:
        int: Number of payments expired or failed
    """
    logger.info("expiry_sweep_started")
    affected = await orchestrator.cleanup_expired()
    logger.info("expiry_sweep_completed", affected=affected)
    return affected


async def start_expiry_worker(
    settings: Optional[Settings] = None, run_once: bool = False
) -> None:
    """
    Start the expiry worker.

    Args:
        settings: Application settings (loaded from the environment if omitted)
        run_once: Run a single sweep and return
    """
    settings = settings or get_settings()
    setup_logging(settings)

    interval = settings.expiry_sweep_interval_seconds
    logger.info("expiry_worker_starting", interval_seconds=interval, run_once=run_once)

    services = build_services(settings, get_session_factory(settings))
    await init_db()

    running = True

    def signal_handler(sig: int, frame: Any) -> None:
        nonlocal running
        logger.info("expiry_worker_shutdown_signal_received", signal=sig)
        running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        while running:
            try:
                await run_expiry_sweep(services.orchestrator)
            except Exception as e:
                logger.error("expiry_sweep_error", error=str(e))
                # Continue running even if one sweep fails

            if run_once:
                break

            # Wait for the next sweep (with periodic checks for shutdown signal)
            remaining = float(interval)
            while remaining > 0 and running:
                sleep_time = min(remaining, 1.0)
                await asyncio.sleep(sleep_time)
                remaining -= sleep_time

    finally:
        await close_db()
        logger.info("expiry_worker_stopped")


def main() -> None:
    """Console entry point."""
    parser = argparse.ArgumentParser(description="Payment expiry worker")
    parser.add_argument(
        "--once", action="store_true", help="Run a single sweep and exit"
    )
    args = parser.parse_args()

    asyncio.run(start_expiry_worker(run_once=args.once))


if __name__ == "__main__":
    main()
