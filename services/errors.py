"""Sweep domain specific exceptions."""


class SweepError(Exception):
    """Base class for sweep errors."""


class SweepConfigError(SweepError, ValueError):
    """Raised when a sweep cannot be set up because its inputs are invalid."""


class UnsupportedChainError(SweepConfigError):
    """Raised when a chain key has no configured profile or client."""


class InvalidSecretError(SweepConfigError):
    """Raised when a recovery phrase is not a valid BIP-39 mnemonic."""


class InvalidAddressError(SweepConfigError):
    """Raised when a destination address is not a valid EVM address."""


class CapacityError(SweepError):
    """Raised when the user registry has reached its maximum size."""


class UserNotFoundError(SweepError):
    """Raised when the requested user is not registered."""


class PriceRateLimitError(SweepError):
    """Raised by the price oracle when it answers with HTTP 429."""


class TransferFailedError(SweepError):
    """Raised when a transfer was mined but reverted."""
