"""
Sweep Registry
Tracks the running sweep cycles of every account, at most one per (account, chain).
"""

import logging
import time
from datetime import datetime, timedelta

from handlers.utils import is_valid_evm_address
from services.errors import InvalidAddressError, UnsupportedChainError
from services.sweep_cycle import SweepCycle, SweepKey

logger = logging.getLogger("SweepRegistry")


class SweepRegistry:
    def __init__(self, chain_clients, profiles, price_cache, gas_budgeter, processed,
                 users=None, confirmation_timeout=60.0, inactive_hours=24):
        self.chain_clients = chain_clients  # chain_key -> EvmChainClient
        self.profiles = profiles            # chain_key -> ChainProfile
        self.price_cache = price_cache
        self.gas_budgeter = gas_budgeter
        self.processed = processed
        self.users = users
        self.confirmation_timeout = confirmation_timeout
        self.inactive_hours = inactive_hours

        self._cycles = {}        # SweepKey -> SweepCycle
        self._executing = set()  # SweepKey values with an execution phase in flight
        self._last_seen = {}     # account_id -> epoch seconds
        self.started_at = time.time()

    def start_sweep(self, account_id, chain_key, secret, destination, notify) -> bool:
        """
        Start sweeping `chain_key` for `account_id`.

        Returns False when that pair is already running. Raises a SweepConfigError
        subclass for an unknown chain, a bad secret or a bad destination address.
        """
        account_id = str(account_id)
        key = SweepKey(account_id, chain_key)
        if key in self._cycles:
            logger.info(f"[Registry] Sweeper for {key} already running")
            return False

        profile = self.profiles.get(chain_key)
        chain = self.chain_clients.get(chain_key)
        if profile is None or chain is None:
            raise UnsupportedChainError(f"Unsupported chain: {chain_key}")
        if not is_valid_evm_address(destination):
            raise InvalidAddressError(f"Invalid destination address: {destination}")

        cycle = SweepCycle(
            key, profile, chain, destination, notify,
            price_cache=self.price_cache,
            gas_budgeter=self.gas_budgeter,
            processed=self.processed,
            executing=self._executing,
            confirmation_timeout=self.confirmation_timeout,
        )
        cycle.start(secret)
        self._cycles[key] = cycle
        self.touch(account_id)
        return True

    def stop_sweep(self, account_id, chain_key) -> bool:
        cycle = self._cycles.pop(SweepKey(str(account_id), chain_key), None)
        if cycle is None:
            return False
        cycle.stop()
        return True

    def stop_all_sweeps(self, account_id) -> int:
        """Stop every cycle of one account; returns how many were stopped."""
        account_id = str(account_id)
        stopped = 0
        for key in [k for k in self._cycles if k.account_id == account_id]:
            self._cycles.pop(key).stop()
            stopped += 1
        if stopped:
            logger.info(f"[Registry] Stopped {stopped} sweepers for user {account_id[:8]}...")
        return stopped

    def stop_all(self) -> int:
        stopped = len(self._cycles)
        for cycle in self._cycles.values():
            cycle.stop()
        self._cycles.clear()
        self._last_seen.clear()
        self.processed.clear()
        logger.info(f"[Registry] Stopped all {stopped} sweepers")
        return stopped

    def is_running(self, account_id, chain_key) -> bool:
        return SweepKey(str(account_id), chain_key) in self._cycles

    def active_chains_for(self, account_id):
        account_id = str(account_id)
        return sorted(k.chain_key for k in self._cycles if k.account_id == account_id)

    def status(self, account_id):
        """Per-chain view of one account's cycles."""
        account_id = str(account_id)
        result = []
        for key, cycle in self._cycles.items():
            if key.account_id != account_id:
                continue
            result.append({
                "chain": key.chain_key,
                "name": cycle.profile.display_name,
                "address": cycle.wallet.address if cycle.wallet else None,
                "destination": cycle.destination,
                "ticks": cycle.ticks,
                "executing": key in self._executing,
                "poll_interval": cycle.profile.poll_interval,
            })
        return sorted(result, key=lambda s: s["chain"])

    def touch(self, account_id):
        account_id = str(account_id)
        self._last_seen[account_id] = time.time()
        if self.users is not None:
            self.users.update_activity(account_id)

    def stats(self):
        accounts = {k.account_id for k in self._cycles}
        stats = {
            "active_accounts": len(accounts),
            "active_sweeps": len(self._cycles),
            "executing": len(self._executing),
            "processed_transactions": len(self.processed),
            "price_cache": self.price_cache.stats(),
            "uptime_seconds": int(time.time() - self.started_at),
        }
        if self.users is not None:
            stats["total_users"] = self.users.count_users()
            stats["max_users"] = self.users.max_users
        return stats

    def cleanup_inactive(self, now=None) -> int:
        """Stop cycles of accounts not seen for `inactive_hours`; returns the number of accounts cleaned."""
        now = now if now is not None else time.time()
        cutoff = now - timedelta(hours=self.inactive_hours).total_seconds()
        inactive = [a for a, seen in self._last_seen.items() if seen < cutoff]

        for account_id in inactive:
            stopped = self.stop_all_sweeps(account_id)
            self._last_seen.pop(account_id, None)
            logger.info(f"[Registry] Cleaned up inactive user {account_id[:8]}... ({stopped} sweepers, idle since before {datetime.fromtimestamp(cutoff):%Y-%m-%d %H:%M})")
        return len(inactive)

    async def shutdown(self):
        cycles = list(self._cycles.values())
        self.stop_all()
        for cycle in cycles:
            await cycle.wait_idle()
        logger.info("[Registry] Shutdown complete")
