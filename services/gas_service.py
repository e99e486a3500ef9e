"""
Gas Service

Turns network fee conditions into native-currency costs for sweep transfers.
Fee levels are boosted above the network suggestion to favor fast confirmation.
"""

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger("GasBudgeter")

GWEI = 10 ** 9

NATIVE_TRANSFER_GAS = 21000
TOKEN_TRANSFER_GAS = 65000          # typical ERC-20 transfer
GAS_BUFFER_PERCENT = 20
FEE_BOOST_PERCENT = 50
LEGACY_DEFAULT_GAS_PRICE = 100 * GWEI
FALLBACK_GAS_PRICE = 150 * GWEI     # used when fee data cannot be fetched at all


def with_buffer(units: int, percent: int = GAS_BUFFER_PERCENT) -> int:
    """Add a percentage safety margin using integer math."""
    return units + (units * percent) // 100


@dataclass(frozen=True)
class FeeData:
    """Raw fee suggestion reported by the network."""
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None


@dataclass(frozen=True)
class FeeLevel:
    """Fee parameters used for every transfer of one tick (type 0 legacy, type 2 EIP-1559)."""
    tx_type: int
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None

    @property
    def is_dynamic(self) -> bool:
        return self.tx_type == 2

    @property
    def effective_price(self) -> int:
        """Worst-case price per gas unit."""
        return self.max_fee_per_gas if self.is_dynamic else self.gas_price

    def tx_params(self) -> dict:
        if self.is_dynamic:
            return {
                "type": 2,
                "maxFeePerGas": self.max_fee_per_gas,
                "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            }
        return {"gasPrice": self.gas_price}

    def describe(self) -> str:
        if self.is_dynamic:
            return (f"EIP-1559 max {self.max_fee_per_gas / GWEI:.2f} gwei, "
                    f"tip {self.max_priority_fee_per_gas / GWEI:.2f} gwei")
        return f"Legacy {self.gas_price / GWEI:.2f} gwei"


class GasBudgeter:
    def __init__(self, boost_percent: int = FEE_BOOST_PERCENT,
                 buffer_percent: int = GAS_BUFFER_PERCENT,
                 fallback_gas_price: int = FALLBACK_GAS_PRICE):
        self.boost_percent = boost_percent
        self.buffer_percent = buffer_percent
        self.fallback_gas_price = fallback_gas_price

    def _boost(self, value: int) -> int:
        return value + (value * self.boost_percent) // 100

    async def get_fee_level(self, chain) -> FeeLevel:
        """Query the chain's fee data and derive an aggressive fee level."""
        try:
            fee_data = await chain.get_fee_data()
        except Exception as e:
            logger.warning(f"[Gas] Fee data unavailable ({e}), using fallback {self.fallback_gas_price / GWEI:.0f} gwei")
            return FeeLevel(tx_type=0, gas_price=self.fallback_gas_price)
        return self.fee_level_from(fee_data)

    def fee_level_from(self, fee_data: FeeData) -> FeeLevel:
        if fee_data.max_fee_per_gas and fee_data.max_priority_fee_per_gas:
            max_fee = self._boost(fee_data.max_fee_per_gas)
            priority_fee = self._boost(fee_data.max_priority_fee_per_gas)
            # EIP-1559: tip can never exceed the cap
            if priority_fee > max_fee:
                logger.info(f"[Gas] Priority fee adjusted: {priority_fee / GWEI:.2f} gwei -> {max_fee / GWEI:.2f} gwei")
                priority_fee = max_fee
            return FeeLevel(tx_type=2, max_fee_per_gas=max_fee, max_priority_fee_per_gas=priority_fee)

        network_price = fee_data.gas_price or LEGACY_DEFAULT_GAS_PRICE
        return FeeLevel(tx_type=0, gas_price=self._boost(network_price))

    def native_transfer_cost(self, fee_level: FeeLevel) -> int:
        return NATIVE_TRANSFER_GAS * fee_level.effective_price

    def token_transfer_cost(self, fee_level: FeeLevel) -> int:
        """Conservative cost of a single token transfer, used for the dust check."""
        return with_buffer(TOKEN_TRANSFER_GAS, self.buffer_percent) * fee_level.effective_price

    async def estimate_token_transfer_reserve(self, fee_level: FeeLevel, tokens, estimate_gas) -> int:
        """
        Native amount to hold back for transferring every token in `tokens`.

        `estimate_gas(token)` is awaited per token; each estimate gets its own
        buffer, and a failed estimate counts as the conservative default.
        """
        total_units = 0
        for token in tokens:
            try:
                units = await estimate_gas(token)
                total_units += with_buffer(int(units), self.buffer_percent)
            except Exception as e:
                logger.info(f"[Gas] Estimation failed for {token.symbol} ({e}), using conservative estimate")
                total_units += with_buffer(TOKEN_TRANSFER_GAS, self.buffer_percent)

        reserve = total_units * fee_level.effective_price
        logger.info(f"[Gas] Reserve of {total_units} gas units ({reserve} wei) for {len(tokens)} token(s)")
        return reserve
