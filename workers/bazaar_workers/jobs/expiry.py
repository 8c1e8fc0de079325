from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class ApiNotReadyError(RuntimeError):
    pass


class ExpiryClient(Protocol):
    async def healthz(self) -> bool: ...

    async def expire_due(self, limit: int = 100) -> int: ...


def sweep_due(last_sweep_at: float | None, now: float, interval_seconds: float) -> bool:
    if last_sweep_at is None:
        return True
    return now - last_sweep_at >= interval_seconds


async def run_expiry_sweep(client: ExpiryClient, *, batch_size: int, max_rounds: int) -> int:
    """Drain approved listings past their expiry, one batch per round.

    A round that expires fewer than ``batch_size`` listings means the backlog
    is empty; ``max_rounds`` bounds a single sweep so the poll loop keeps moving.
    """
    if not await client.healthz():
        raise ApiNotReadyError("marketplace api is not healthy; expiry sweep skipped")

    total = 0
    for _ in range(max(1, max_rounds)):
        expired = await client.expire_due(limit=batch_size)
        total += expired
        if expired < batch_size:
            break
    else:
        logger.warning("expiry sweep hit round limit rounds=%s expired=%s", max_rounds, total)
    return total
