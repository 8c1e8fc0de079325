import asyncio

import pytest

from bazaar_workers.jobs.expiry import ApiNotReadyError, run_expiry_sweep, sweep_due


class _FakeClient:
    def __init__(self, batches: list[int], *, healthy: bool = True) -> None:
        self.batches = list(batches)
        self.healthy = healthy
        self.calls: list[int] = []

    async def healthz(self) -> bool:
        return self.healthy

    async def expire_due(self, limit: int = 100) -> int:
        self.calls.append(limit)
        return self.batches.pop(0) if self.batches else 0


def test_sweep_due_on_first_cycle_and_after_interval() -> None:
    assert sweep_due(None, 5.0, 300.0)
    assert not sweep_due(100.0, 200.0, 300.0)
    assert sweep_due(100.0, 400.0, 300.0)


def test_sweep_drains_full_batches_until_short_batch() -> None:
    client = _FakeClient([10, 10, 4, 10])

    total = asyncio.run(run_expiry_sweep(client, batch_size=10, max_rounds=5))

    assert total == 24
    assert client.calls == [10, 10, 10]


def test_sweep_stops_at_round_limit() -> None:
    client = _FakeClient([10, 10, 10, 10])

    total = asyncio.run(run_expiry_sweep(client, batch_size=10, max_rounds=2))

    assert total == 20
    assert len(client.calls) == 2


def test_sweep_skips_expiry_calls_while_api_is_unhealthy() -> None:
    client = _FakeClient([10], healthy=False)

    with pytest.raises(ApiNotReadyError):
        asyncio.run(run_expiry_sweep(client, batch_size=10, max_rounds=3))

    assert client.calls == []
