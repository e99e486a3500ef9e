"""
Sweep Cycle

The polling loop for one (account, chain) pair. Each tick fetches balances,
prices them, budgets gas, decides and executes the transfer plan, then
schedules the next tick after the chain's poll interval.
"""

import asyncio
import inspect
import logging
from functools import partial
from typing import NamedTuple, Optional

from handlers.utils import short_address
from services.errors import TransferFailedError
from services.sweep_engine import SweepDecisionEngine, SweepPlan

logger = logging.getLogger("SweepCycle")


class SweepKey(NamedTuple):
    account_id: str
    chain_key: str

    def __str__(self):
        return f"{self.account_id[:8]}:{self.chain_key}"


class SweepCycle:
    def __init__(self, key, profile, chain, destination, notify, price_cache,
                 gas_budgeter, processed, executing, confirmation_timeout=60.0):
        self.key = key
        self.profile = profile
        self.chain = chain
        self.destination = destination
        self.notify = notify
        self.price_cache = price_cache
        self.gas = gas_budgeter
        self.processed = processed
        self.engine = SweepDecisionEngine(profile)
        self.confirmation_timeout = confirmation_timeout

        # shared with every cycle of the registry, keyed by SweepKey
        self._executing = executing

        self.wallet = None
        self.running = False
        self.ticks = 0
        self._first_run = True
        self._task = None
        self._handle = None

    @property
    def _tag(self):
        return f"[{self.profile.name}][{self.key.account_id[:8]}]"

    # --- Lifecycle ---

    def start(self, secret):
        """Derive the wallet and run the first tick immediately."""
        self.wallet = self.chain.derive_wallet(secret)
        self.running = True
        self._task = asyncio.create_task(self._first_tick())
        logger.info(f"{self._tag} Started sweeper for {short_address(self.wallet.address)}")

    def stop(self):
        """Cooperative stop: an in-flight tick finishes but is not rescheduled."""
        self.running = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        logger.info(f"{self._tag} Sweeper stopped")

    async def wait_idle(self):
        """Wait for the current tick (if any) to finish."""
        if self._task is not None and not self._task.done():
            await asyncio.gather(self._task, return_exceptions=True)

    async def _first_tick(self):
        await self._notify(
            f"🎉 Great! I'm now watching your {self.profile.display_name} wallet for funds to collect!\n\n"
            f"📱 Wallet: {short_address(self.wallet.address)}\n"
            f"🏦 Funds will go to: {short_address(self.destination)}\n\n"
            f"🔎 Starting immediate sweep check...\n"
            f"💫 You'll be notified whenever I find and move funds for you!"
        )
        await self._tick_and_reschedule()

    def _spawn_tick(self):
        self._handle = None
        if not self.running:
            return
        self._task = asyncio.create_task(self._tick_and_reschedule())

    async def _tick_and_reschedule(self):
        if not self.running:
            return
        try:
            await self.run_once()
        except Exception:
            logger.exception(f"{self._tag} Unexpected tick failure")
        finally:
            if self._first_run:
                self._first_run = False
                logger.info(f"{self._tag} ✅ Immediate sweep check completed")
            if self.running:
                loop = asyncio.get_running_loop()
                self._handle = loop.call_later(self.profile.poll_interval, self._spawn_tick)

    # --- Tick ---

    async def run_once(self) -> Optional[SweepPlan]:
        """One evaluation and execution pass. Returns the plan, or None when the tick was skipped."""
        self.ticks += 1
        tag = self._tag
        if self._first_run:
            logger.info(f"{tag} 🚀 Starting immediate sweep check")

        try:
            native_balance = await self.chain.get_native_balance(self.wallet.address)
        except Exception as e:
            logger.warning(f"{tag} Failed to check wallet balance: {e}")
            return None

        fee_level = await self.gas.get_fee_level(self.chain)
        native_cost = self.gas.native_transfer_cost(fee_level)
        token_cost = self.gas.token_transfer_cost(fee_level)

        try:
            tokens = await self.chain.list_token_balances(self.wallet.address)
        except Exception as e:
            logger.warning(f"{tag} Token balance fetch error: {e}")
            tokens = []

        native_symbol = self.profile.native_symbol.lower()
        prices = await self.price_cache.get_prices([t.symbol for t in tokens if t.symbol] + [native_symbol])

        candidates = self.engine.select_tokens(tokens, prices)
        shortfall = self.engine.gas_shortfall(native_balance, native_cost, token_cost, len(candidates))
        if shortfall:
            logger.info(f"{tag} 💨 {shortfall}. Skipping sweep operations until funded.")
            return None

        token_reserve = 0
        if candidates:
            estimate = partial(self.chain.estimate_token_transfer_gas, self.wallet, self.destination)
            token_reserve = await self.gas.estimate_token_transfer_reserve(fee_level, candidates, estimate)

        plan = self.engine.plan(native_balance, native_cost, token_reserve,
                                prices.get(native_symbol, 0.0), candidates)
        if plan.is_empty:
            return plan

        # one execution phase per key at a time; the wallet nonce cannot take concurrent signing
        if self.key in self._executing:
            logger.info(f"{tag} Transactions still processing, skipping execution this cycle")
            return plan

        self._executing.add(self.key)
        try:
            await self._execute(plan, fee_level)
        finally:
            self._executing.discard(self.key)
        return plan

    async def _execute(self, plan, fee_level):
        for candidate in plan.transfers():
            kind = "Native" if candidate.is_native else "ERC20"
            try:
                if candidate.is_native:
                    tx_id = await self.chain.submit_native_transfer(
                        self.wallet, self.destination, candidate.raw_amount, fee_level)
                else:
                    tx_id = await self.chain.submit_token_transfer(
                        self.wallet, self.destination, candidate, fee_level)
                if tx_id:
                    await self._await_confirmation(tx_id)
            except Exception:
                logger.exception(f"{self._tag} {kind} sweep error for {candidate.symbol}")
                continue

            if not tx_id:
                continue
            if not self.processed.mark_if_new(tx_id):
                logger.info(f"{self._tag} {kind} sweep tx already processed: {tx_id} - skipping notification")
                continue

            await self._notify(self._success_message(candidate, tx_id))
            logger.info(f"{self._tag} {kind} sweep {candidate.symbol} tx: {tx_id}")

    async def _await_confirmation(self, tx_id):
        """Bounded wait; a timeout means "submitted, outcome unknown", not failure."""
        try:
            receipt = await asyncio.wait_for(
                self.chain.await_confirmation(tx_id), timeout=self.confirmation_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{self._tag} ⚠️ Transaction timeout (may still confirm): {tx_id}")
            return None

        if receipt is not None and receipt.get("status") == 0:
            raise TransferFailedError(f"Transaction failed: {tx_id}")
        logger.info(f"{self._tag} ✅ Transfer confirmed: {tx_id}")
        return receipt

    def _success_message(self, candidate, tx_id):
        link = self.chain.explorer_link(tx_id)
        chain_name = self.profile.display_name
        if candidate.is_native:
            return (
                f"💰 Excellent! I just collected ${candidate.usd_value:.2f} worth of {chain_name} tokens for you!\n\n"
                f"✨ Your funds are safely on their way to your main wallet.\n\n"
                f"🔗 View transaction details: {link}"
            )
        return (
            f"🪙 Fantastic! I collected {candidate.amount_readable.normalize():f} {candidate.symbol} "
            f"(worth ${candidate.usd_value:.2f}) from your {chain_name} wallet!\n\n"
            f"🎯 Your tokens are now safely in your main wallet.\n\n"
            f"🔗 View transaction details: {link}"
        )

    async def _notify(self, text):
        try:
            result = self.notify(text)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"{self._tag} Notification failed: {e}")
