from decimal import Decimal

from conftest import make_profile
from services.sweep_engine import SweepCandidate, SweepDecisionEngine, TokenBalance, to_readable

ETH = 10 ** 18


def token(symbol, amount, decimals=18, contract=None):
    return TokenBalance(contract=contract or f"0x{symbol.lower()}", raw_amount=int(amount * 10 ** decimals),
                        symbol=symbol, decimals=decimals)


def test_to_readable():
    assert to_readable(1_500_000, 6) == Decimal("1.5")
    assert to_readable(ETH, 18) == 1


def test_select_tokens_filters_and_sorts_by_value():
    engine = SweepDecisionEngine(make_profile(usd_threshold=10))
    tokens = [
        token("USDC", 12, decimals=6),
        token("LINK", 2),          # $30
        token("USDT", 9, decimals=6),
    ]
    prices = {"usdc": 1.0, "link": 15.0, "usdt": 1.0}

    selected = engine.select_tokens(tokens, prices)

    assert [c.symbol for c in selected] == ["LINK", "USDC"]
    assert selected[0].usd_value == 30.0
    assert selected[1].raw_amount == 12_000_000
    assert selected[1].contract == "0xusdc"


def test_threshold_is_inclusive():
    engine = SweepDecisionEngine(make_profile(usd_threshold=10))
    selected = engine.select_tokens([token("USDC", 10, decimals=6)], {"usdc": 1.0})
    assert len(selected) == 1


def test_unknown_price_is_never_swept():
    engine = SweepDecisionEngine(make_profile(usd_threshold=10))
    tokens = [token("SCAM", 1_000_000), token("USDC", 50, decimals=6)]
    selected = engine.select_tokens(tokens, {"scam": 0.0})
    assert selected == []


def test_gas_shortfall_with_tokens():
    engine = SweepDecisionEngine(make_profile())
    reason = engine.gas_shortfall(native_balance=100, native_cost=50, token_cost=80, token_count=2)
    assert "dust balance" in reason
    assert "2 token transfers" in reason

    assert engine.gas_shortfall(native_balance=130, native_cost=50, token_cost=80, token_count=2) is None


def test_gas_shortfall_native_dust_only():
    engine = SweepDecisionEngine(make_profile())
    assert "native transfer" in engine.gas_shortfall(10, 50, 80, 0)
    assert engine.gas_shortfall(0, 50, 80, 0) is None
    assert engine.gas_shortfall(50, 50, 80, 0) is None


def test_plan_keeps_reserve_for_tokens():
    engine = SweepDecisionEngine(make_profile(native_usd_threshold=5))
    tokens = [SweepCandidate(symbol="USDC", raw_amount=12_000_000, decimals=6, usd_value=12.0, contract="0x1")]

    plan = engine.plan(native_balance=ETH, native_cost=10 ** 15, token_reserve=2 * 10 ** 15,
                       native_price=2000.0, tokens=tokens)

    assert plan.native.raw_amount == ETH - 3 * 10 ** 15
    assert plan.native.is_native
    assert [c.symbol for c in plan.transfers()] == ["ETH", "USDC"]


def test_plan_skips_native_below_threshold():
    engine = SweepDecisionEngine(make_profile(native_usd_threshold=15))
    plan = engine.plan(native_balance=ETH, native_cost=10 ** 15, token_reserve=0,
                       native_price=12.0, tokens=[])
    assert plan.native is None
    assert plan.is_empty


def test_plan_skips_native_without_price():
    engine = SweepDecisionEngine(make_profile())
    plan = engine.plan(native_balance=ETH, native_cost=10 ** 15, token_reserve=0, native_price=0.0, tokens=[])
    assert plan.native is None


def test_plan_skips_native_when_nothing_left_after_gas():
    engine = SweepDecisionEngine(make_profile())
    plan = engine.plan(native_balance=10 ** 15, native_cost=10 ** 15, token_reserve=0,
                       native_price=2000.0, tokens=[])
    assert plan.native is None


def test_threshold_boundary_uses_exact_decimal_math():
    engine = SweepDecisionEngine(make_profile(usd_threshold=5))
    tokens = [token("ABC", 100)]
    assert [c.usd_value for c in engine.select_tokens(tokens, {"abc": 0.05})] == [5.0]
    assert engine.select_tokens(tokens, {"abc": 0.0499}) == []


def test_three_tokens_execute_by_value():
    engine = SweepDecisionEngine(make_profile(usd_threshold=5))
    tokens = [token("AAA", 50, decimals=6), token("BBB", 5, decimals=6), token("CCC", 20, decimals=6)]
    prices = {"aaa": 1.0, "bbb": 1.0, "ccc": 1.0}
    assert [c.usd_value for c in engine.select_tokens(tokens, prices)] == [50.0, 20.0, 5.0]


def test_native_amount_is_balance_minus_cost_and_reserve():
    fee_price = 1
    plan = SweepDecisionEngine(make_profile(native_usd_threshold=5)).plan(
        native_balance=1_000_000, native_cost=21000 * fee_price, token_reserve=100000 * fee_price,
        native_price=1e13, tokens=[])
    assert plan.native.raw_amount == 1_000_000 - 21000 * fee_price - 100000 * fee_price

    plan = SweepDecisionEngine(make_profile(native_usd_threshold=10)).plan(
        native_balance=1_000_000, native_cost=21000, token_reserve=100000, native_price=1e13, tokens=[])
    assert plan.native is None
