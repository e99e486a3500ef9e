"""Services Module - Sweep engine and external API integrations"""

from .errors import (
    SweepError,
    SweepConfigError,
    UnsupportedChainError,
    InvalidSecretError,
    InvalidAddressError,
    CapacityError,
    UserNotFoundError,
    PriceRateLimitError,
    TransferFailedError,
)

__all__ = [
    'SweepError',
    'SweepConfigError',
    'UnsupportedChainError',
    'InvalidSecretError',
    'InvalidAddressError',
    'CapacityError',
    'UserNotFoundError',
    'PriceRateLimitError',
    'TransferFailedError',
]
