"""
Shared fixtures for the sweeper test suite.

FakeChain and FakeOracle stand in for the network so the sweep logic can be
driven tick by tick without RPC endpoints or CoinGecko.
"""
import asyncio

import pytest

from config import ChainProfile
from services.errors import InvalidSecretError
from services.gas_service import FeeData, GWEI
from services.price_service import PriceCache

DESTINATION = "0x" + "d" * 40
WALLET_ADDRESS = "0x" + "a" * 40


class FakeWallet:
    def __init__(self, address=WALLET_ADDRESS):
        self.address = address


class FakeChain:
    def __init__(self, native_balance=0, tokens=None, fee_data=None, gas_estimate=50000):
        self.native_balance = native_balance
        self.tokens = list(tokens or [])
        self.fee_data = fee_data or FeeData(gas_price=2 * GWEI)
        self.gas_estimate = gas_estimate

        self.balance_error = None
        self.fail_symbols = set()
        self.receipt_status = 1
        self.confirm_delay = 0
        self.submitted = []
        self.fixed_tx_id = None
        self._counter = 0

    def derive_wallet(self, secret):
        if secret == "bad":
            raise InvalidSecretError("Invalid recovery phrase")
        return FakeWallet()

    async def get_native_balance(self, address):
        if self.balance_error:
            raise self.balance_error
        return self.native_balance

    async def get_fee_data(self):
        return self.fee_data

    async def list_token_balances(self, address):
        return list(self.tokens)

    async def estimate_token_transfer_gas(self, wallet, destination, token):
        if isinstance(self.gas_estimate, Exception):
            raise self.gas_estimate
        return self.gas_estimate

    def _next_tx(self, label):
        if self.fixed_tx_id:
            return self.fixed_tx_id
        self._counter += 1
        return f"0x{label.lower()}{self._counter:04d}"

    async def submit_native_transfer(self, wallet, destination, amount, fee_level):
        self.submitted.append(("native", "ETH", amount))
        return self._next_tx("native")

    async def submit_token_transfer(self, wallet, destination, token, fee_level):
        if token.symbol in self.fail_symbols:
            raise RuntimeError(f"execution reverted for {token.symbol}")
        self.submitted.append(("token", token.symbol, token.raw_amount))
        return self._next_tx(token.symbol)

    async def await_confirmation(self, tx_id):
        if self.confirm_delay:
            await asyncio.sleep(self.confirm_delay)
        return {"status": self.receipt_status, "transactionHash": tx_id}

    def explorer_link(self, tx_id):
        return f"https://explorer.test/tx/{tx_id}"


class FakeOracle:
    def __init__(self, prices=None):
        self.prices = dict(prices or {})
        self.calls = []
        self.errors = []
        self.delay = 0
        self.closed = False

    async def fetch_prices(self, symbols):
        self.calls.append(list(symbols))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.errors:
            raise self.errors.pop(0)
        return {s: self.prices[s] for s in symbols if s in self.prices}

    async def close(self):
        self.closed = True


class Notifier:
    """Records every message a cycle sends."""

    def __init__(self):
        self.messages = []

    def __call__(self, text):
        self.messages.append(text)


class Clock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_profile(key="ethereum", usd_threshold=10, native_usd_threshold=5, poll_interval=20):
    return ChainProfile(
        key=key,
        name=key.capitalize(),
        chain_id=1,
        native_symbol="ETH",
        native_decimals=18,
        usd_threshold=usd_threshold,
        native_usd_threshold=native_usd_threshold,
        poll_interval=poll_interval,
        explorer_url="https://explorer.test/tx/{tx}",
    )


@pytest.fixture
def profile():
    return make_profile()


@pytest.fixture
def oracle():
    return FakeOracle({"eth": 2000.0, "usdc": 1.0, "usdt": 1.0, "link": 15.0})


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def price_cache(oracle, clock):
    return PriceCache(oracle, rate_limit_delay=0, retry_delay=0, clock=clock)


@pytest.fixture
def notifier():
    return Notifier()
