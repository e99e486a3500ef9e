"""Wallet Module - EVM chain access and key derivation"""

from .evm import (
    EvmChainClient,
    derive_account,
    is_valid_mnemonic,
)

__all__ = [
    'EvmChainClient',
    'derive_account',
    'is_valid_mnemonic',
]
