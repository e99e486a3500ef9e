import asyncio
import time

import pytest

from conftest import DESTINATION, FakeChain, make_profile
from services.dedup_service import ProcessedTransactionSet
from services.errors import InvalidAddressError, InvalidSecretError, UnsupportedChainError
from services.gas_service import GasBudgeter
from services.sweep_cycle import SweepKey
from services.sweep_registry import SweepRegistry

ETH = 10 ** 18


@pytest.fixture
def chains():
    return {"ethereum": FakeChain(), "polygon": FakeChain()}


@pytest.fixture
def registry(chains, price_cache):
    profiles = {
        "ethereum": make_profile("ethereum"),
        "polygon": make_profile("polygon"),
    }
    return SweepRegistry(chains, profiles, price_cache, GasBudgeter(), ProcessedTransactionSet())


async def settle(registry):
    for cycle in list(registry._cycles.values()):
        await cycle.wait_idle()


@pytest.mark.asyncio
async def test_one_cycle_per_account_and_chain(registry, notifier):
    assert registry.start_sweep("u1", "ethereum", "phrase", DESTINATION, notifier)
    assert not registry.start_sweep("u1", "ethereum", "phrase", DESTINATION, notifier)
    assert registry.start_sweep("u1", "polygon", "phrase", DESTINATION, notifier)
    assert registry.start_sweep("u2", "ethereum", "phrase", DESTINATION, notifier)
    await settle(registry)

    assert registry.active_chains_for("u1") == ["ethereum", "polygon"]
    assert registry.is_running("u2", "ethereum")
    assert registry.stats()["active_sweeps"] == 3
    assert registry.stats()["active_accounts"] == 2
    registry.stop_all()


@pytest.mark.asyncio
async def test_start_rejects_bad_input(registry, notifier):
    with pytest.raises(UnsupportedChainError):
        registry.start_sweep("u1", "solana", "phrase", DESTINATION, notifier)
    with pytest.raises(InvalidAddressError):
        registry.start_sweep("u1", "ethereum", "phrase", "0x123", notifier)
    with pytest.raises(InvalidSecretError):
        registry.start_sweep("u1", "ethereum", "bad", DESTINATION, notifier)

    assert registry.active_chains_for("u1") == []
    assert registry.start_sweep("u1", "ethereum", "phrase", DESTINATION, notifier)
    await settle(registry)
    registry.stop_all()


@pytest.mark.asyncio
async def test_stop_sweep_and_restart(registry, notifier):
    registry.start_sweep("u1", "ethereum", "phrase", DESTINATION, notifier)
    cycle = registry._cycles[SweepKey("u1", "ethereum")]
    await settle(registry)

    assert registry.stop_sweep("u1", "ethereum")
    assert not cycle.running
    assert not registry.stop_sweep("u1", "ethereum")
    assert registry.start_sweep("u1", "ethereum", "phrase", DESTINATION, notifier)
    await settle(registry)
    registry.stop_all()


@pytest.mark.asyncio
async def test_stop_all_sweeps_for_one_account(registry, notifier):
    registry.start_sweep("u1", "ethereum", "phrase", DESTINATION, notifier)
    registry.start_sweep("u1", "polygon", "phrase", DESTINATION, notifier)
    registry.start_sweep("u2", "ethereum", "phrase", DESTINATION, notifier)
    await settle(registry)

    assert registry.stop_all_sweeps("u1") == 2
    assert registry.stop_all_sweeps("u1") == 0
    assert registry.active_chains_for("u2") == ["ethereum"]
    registry.stop_all()


@pytest.mark.asyncio
async def test_stop_all_clears_processed_transactions(registry, notifier):
    registry.processed.mark_if_new("0xabc")
    registry.start_sweep("u1", "ethereum", "phrase", DESTINATION, notifier)
    await settle(registry)

    assert registry.stop_all() == 1
    assert len(registry.processed) == 0
    assert registry.stats()["active_sweeps"] == 0


@pytest.mark.asyncio
async def test_status_reports_each_chain(registry, notifier):
    registry.start_sweep("u1", "polygon", "phrase", DESTINATION, notifier)
    registry.start_sweep("u1", "ethereum", "phrase", DESTINATION, notifier)
    await settle(registry)

    status = registry.status("u1")
    assert [s["chain"] for s in status] == ["ethereum", "polygon"]
    assert status[0]["ticks"] == 1
    assert status[0]["destination"] == DESTINATION
    assert not status[0]["executing"]
    registry.stop_all()


@pytest.mark.asyncio
async def test_cleanup_inactive_accounts(registry, notifier):
    registry.start_sweep("u1", "ethereum", "phrase", DESTINATION, notifier)
    await settle(registry)

    assert registry.cleanup_inactive(now=time.time() + 3600) == 0
    assert registry.cleanup_inactive(now=time.time() + 25 * 3600) == 1
    assert registry.active_chains_for("u1") == []


@pytest.mark.asyncio
async def test_shutdown_stops_everything(registry, notifier):
    registry.start_sweep("u1", "ethereum", "phrase", DESTINATION, notifier)
    await registry.shutdown()
    assert registry.stats()["active_sweeps"] == 0


def slow_registry(price_cache, poll_interval):
    chain = FakeChain(native_balance=ETH)
    chain.confirm_delay = 0.2
    registry = SweepRegistry({"ethereum": chain}, {"ethereum": make_profile(poll_interval=poll_interval)},
                             price_cache, GasBudgeter(), ProcessedTransactionSet())
    return registry, chain


async def wait_for_submission(chain):
    while not chain.submitted:
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_stop_during_in_flight_tick_prevents_reschedule(price_cache, notifier):
    registry, chain = slow_registry(price_cache, poll_interval=0.05)
    registry.start_sweep("u1", "ethereum", "phrase", DESTINATION, notifier)
    cycle = registry._cycles[SweepKey("u1", "ethereum")]
    await wait_for_submission(chain)

    assert registry.stop_sweep("u1", "ethereum")
    await cycle.wait_idle()
    await asyncio.sleep(0.15)

    assert cycle.ticks == 1
    assert cycle._handle is None
    assert len(chain.submitted) == 1


@pytest.mark.asyncio
async def test_restart_while_previous_execution_in_flight_submits_nothing(price_cache, notifier):
    registry, chain = slow_registry(price_cache, poll_interval=60)
    key = SweepKey("u1", "ethereum")
    registry.start_sweep("u1", "ethereum", "phrase", DESTINATION, notifier)
    old = registry._cycles[key]
    await wait_for_submission(chain)

    registry.stop_sweep("u1", "ethereum")
    assert registry.start_sweep("u1", "ethereum", "phrase", DESTINATION, notifier)
    new = registry._cycles[key]
    await new.wait_idle()

    assert new.ticks == 1
    assert key in registry._executing
    await old.wait_idle()
    assert chain.submitted == [("native", "ETH", ETH - 21000 * 3 * 10 ** 9)]
    assert registry._executing == set()
    registry.stop_all()
