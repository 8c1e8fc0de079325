from __future__ import annotations

import asyncio
import logging
import random
import time

from opentelemetry import trace

from bazaar_workers.core.config import get_settings
from bazaar_workers.core.telemetry import (
    configure_worker_logging,
    setup_worker_telemetry,
    shutdown_worker_telemetry,
)
from bazaar_workers.jobs.expiry import run_expiry_sweep, sweep_due
from bazaar_workers.services.api_client import MarketplaceClient

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def run_worker() -> None:
    settings = get_settings()
    configure_worker_logging()
    telemetry_runtime = setup_worker_telemetry(settings)
    client = MarketplaceClient(
        base_url=settings.api_base_url,
        module_id=settings.module_id,
        api_key=settings.api_key,
        timeout_seconds=settings.request_timeout_seconds,
    )

    backoff = settings.poll_interval_seconds
    last_sweep_at: float | None = None

    try:
        while True:
            try:
                with tracer.start_as_current_span("worker.poll_cycle"):
                    now = time.monotonic()
                    if sweep_due(last_sweep_at, now, settings.expiry_sweep_interval_seconds):
                        with tracer.start_as_current_span("worker.expiry_sweep") as span:
                            expired = await run_expiry_sweep(
                                client,
                                batch_size=settings.expiry_batch_size,
                                max_rounds=settings.expiry_max_rounds,
                            )
                            span.set_attribute("listings.expired", expired)
                        if expired:
                            logger.info("expired listings: %s", expired)
                        last_sweep_at = now

                backoff = settings.poll_interval_seconds
                await asyncio.sleep(settings.poll_interval_seconds)
            except Exception as exc:  # pragma: no cover - keep the loop alive across API outages
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (2.0 + jitter), settings.max_backoff_seconds)
                logger.exception("worker iteration failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = sleep_for
    finally:
        shutdown_worker_telemetry(telemetry_runtime)


if __name__ == "__main__":
    asyncio.run(run_worker())
