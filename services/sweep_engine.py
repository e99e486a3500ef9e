"""
Sweep decision logic.

Given balances, USD prices and gas costs, decides which transfers are worth
executing this tick and in which order. Raw on-chain amounts stay integers;
only the USD comparison goes through Decimal.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

logger = logging.getLogger("SweepEngine")


@dataclass(frozen=True)
class TokenBalance:
    contract: str
    raw_amount: int
    symbol: str
    decimals: int = 18
    name: str = ""


@dataclass(frozen=True)
class SweepCandidate:
    symbol: str
    raw_amount: int
    decimals: int
    usd_value: float
    is_native: bool = False
    contract: Optional[str] = None

    @property
    def amount_readable(self) -> Decimal:
        return to_readable(self.raw_amount, self.decimals)


@dataclass
class SweepPlan:
    native: Optional[SweepCandidate] = None
    tokens: List[SweepCandidate] = field(default_factory=list)

    def transfers(self) -> List[SweepCandidate]:
        """Execution order: native first, then tokens by descending USD value."""
        return ([self.native] if self.native else []) + list(self.tokens)

    @property
    def is_empty(self) -> bool:
        return self.native is None and not self.tokens


def to_readable(raw_amount: int, decimals: int) -> Decimal:
    return Decimal(int(raw_amount)).scaleb(-int(decimals))


def usd_value(raw_amount: int, decimals: int, price) -> Decimal:
    return to_readable(raw_amount, decimals) * Decimal(str(price))


class SweepDecisionEngine:
    def __init__(self, profile):
        self.profile = profile

    @property
    def _tag(self):
        return f"[{self.profile.name}]"

    def select_tokens(self, tokens, prices) -> List[SweepCandidate]:
        """Keep tokens worth at least the USD threshold, highest value first."""
        threshold = Decimal(str(self.profile.usd_threshold))
        selected = []
        for token in tokens:
            price = prices.get(token.symbol.lower(), 0.0) if token.symbol else 0.0
            if not price or price <= 0:
                logger.info(f"{self._tag} Price unknown for {token.symbol}, not sweeping it")
                continue
            try:
                value = usd_value(token.raw_amount, token.decimals, price)
            except (ArithmeticError, ValueError, TypeError) as e:
                logger.warning(f"{self._tag} Token evaluation error for {token.symbol}: {e}")
                continue
            if value >= threshold:
                selected.append(SweepCandidate(
                    symbol=token.symbol,
                    raw_amount=int(token.raw_amount),
                    decimals=token.decimals,
                    usd_value=float(value),
                    contract=token.contract,
                ))

        selected.sort(key=lambda c: c.usd_value, reverse=True)
        if selected:
            ordered = ", ".join(f"{c.symbol} (${c.usd_value:.2f})" for c in selected)
            logger.info(f"{self._tag} Found {len(selected)} tokens to sweep, ordered by value: {ordered}")
        return selected

    def gas_shortfall(self, native_balance: int, native_cost: int, token_cost: int,
                      token_count: int) -> Optional[str]:
        """Return why the tick must be skipped for lack of gas, or None."""
        symbol = self.profile.native_symbol
        decimals = self.profile.native_decimals

        minimum_needed = native_cost + (token_cost if token_count else 0)
        if token_count and native_balance < minimum_needed:
            return (f"Wallet has dust balance ({to_readable(native_balance, decimals)} {symbol}). "
                    f"Need {to_readable(minimum_needed, decimals)} {symbol} for {token_count} token transfers")

        if 0 < native_balance < native_cost:
            return (f"Wallet has dust balance ({to_readable(native_balance, decimals)} {symbol}). "
                    f"Need {to_readable(native_cost, decimals)} {symbol} for native transfer")
        return None

    def plan(self, native_balance: int, native_cost: int, token_reserve: int,
             native_price: float, tokens: List[SweepCandidate]) -> SweepPlan:
        """Build the transfer plan; the native sweep leaves gas for every planned token transfer."""
        plan = SweepPlan(tokens=list(tokens))
        sweepable = native_balance - native_cost - token_reserve
        if sweepable <= 0:
            return plan

        symbol = self.profile.native_symbol
        decimals = self.profile.native_decimals
        if not native_price or native_price <= 0:
            logger.info(f"{self._tag} Native token price not available for {symbol.lower()}. Skipping native sweep.")
            return plan

        value = usd_value(sweepable, decimals, native_price)
        threshold = Decimal(str(self.profile.native_usd_threshold))
        if value < threshold:
            logger.info(
                f"{self._tag} Native {symbol} value (${value:.2f}) below ${threshold} threshold. "
                f"Amount: {to_readable(sweepable, decimals):.6f} {symbol}. Skipping native sweep."
            )
            return plan

        plan.native = SweepCandidate(
            symbol=symbol,
            raw_amount=sweepable,
            decimals=decimals,
            usd_value=float(value),
            is_native=True,
        )
        return plan
