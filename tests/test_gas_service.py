import pytest

from services.gas_service import FeeData, FeeLevel, GasBudgeter, GWEI, with_buffer
from services.sweep_engine import SweepCandidate


class BrokenChain:
    async def get_fee_data(self):
        raise ConnectionError("rpc down")


class LegacyChain:
    async def get_fee_data(self):
        return FeeData(gas_price=10 * GWEI)


def test_with_buffer_adds_twenty_percent():
    assert with_buffer(65000) == 78000
    assert with_buffer(21000) == 25200


def test_legacy_fee_is_boosted():
    level = GasBudgeter().fee_level_from(FeeData(gas_price=10 * GWEI))
    assert level.tx_type == 0
    assert level.gas_price == 15 * GWEI
    assert level.tx_params() == {"gasPrice": 15 * GWEI}


def test_legacy_default_when_network_reports_nothing():
    level = GasBudgeter().fee_level_from(FeeData())
    assert level.gas_price == 150 * GWEI


def test_dynamic_fee_is_boosted():
    level = GasBudgeter().fee_level_from(FeeData(max_fee_per_gas=40 * GWEI, max_priority_fee_per_gas=2 * GWEI))
    assert level.is_dynamic
    assert level.max_fee_per_gas == 60 * GWEI
    assert level.max_priority_fee_per_gas == 3 * GWEI
    assert level.effective_price == 60 * GWEI
    assert level.tx_params() == {
        "type": 2,
        "maxFeePerGas": 60 * GWEI,
        "maxPriorityFeePerGas": 3 * GWEI,
    }


def test_priority_fee_never_exceeds_max_fee():
    level = GasBudgeter().fee_level_from(FeeData(max_fee_per_gas=10 * GWEI, max_priority_fee_per_gas=20 * GWEI))
    assert level.max_priority_fee_per_gas == level.max_fee_per_gas == 15 * GWEI


@pytest.mark.asyncio
async def test_fee_level_falls_back_when_chain_fails():
    level = await GasBudgeter().get_fee_level(BrokenChain())
    assert level == FeeLevel(tx_type=0, gas_price=150 * GWEI)


@pytest.mark.asyncio
async def test_fee_level_from_chain():
    level = await GasBudgeter().get_fee_level(LegacyChain())
    assert level.gas_price == 15 * GWEI


def test_transfer_costs():
    gas = GasBudgeter()
    level = FeeLevel(tx_type=0, gas_price=GWEI)
    assert gas.native_transfer_cost(level) == 21000 * GWEI
    assert gas.token_transfer_cost(level) == 78000 * GWEI


@pytest.mark.asyncio
async def test_token_reserve_buffers_each_estimate_and_defaults_failures():
    tokens = [
        SweepCandidate(symbol="USDC", raw_amount=1, decimals=6, usd_value=20.0, contract="0x1"),
        SweepCandidate(symbol="LINK", raw_amount=1, decimals=18, usd_value=15.0, contract="0x2"),
    ]

    async def estimate(token):
        if token.symbol == "LINK":
            raise ValueError("execution reverted")
        return 50000

    level = FeeLevel(tx_type=0, gas_price=GWEI)
    reserve = await GasBudgeter().estimate_token_transfer_reserve(level, tokens, estimate)
    assert reserve == (60000 + 78000) * GWEI


@pytest.mark.asyncio
async def test_token_reserve_is_zero_without_tokens():
    level = FeeLevel(tx_type=2, max_fee_per_gas=GWEI, max_priority_fee_per_gas=GWEI)
    assert await GasBudgeter().estimate_token_transfer_reserve(level, [], None) == 0
