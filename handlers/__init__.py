"""Handlers Module - Message parsing and utilities"""

from .utils import (
    is_valid_evm_address,
    short_address,
    detect_mnemonic,
    detect_address
)

__all__ = [
    'is_valid_evm_address',
    'short_address',
    'detect_mnemonic',
    'detect_address'
]
