"""
Utility Functions
Address validation and detection of secrets or addresses in chat messages
"""

import re

from wallet.evm import is_valid_mnemonic

EVM_ADDRESS_RE = re.compile(r'0x[a-fA-F0-9]{40}')


def is_valid_evm_address(address: str) -> bool:
    """EVM address: 0x + 40 hex chars"""
    if not address:
        return False
    return bool(EVM_ADDRESS_RE.fullmatch(address.strip()))


def short_address(address: str) -> str:
    if not address or len(address) < 12:
        return address or ""
    return f"{address[:6]}...{address[-4:]}"


def detect_mnemonic(text: str):
    """Return the normalized recovery phrase if `text` is a valid 12 or 24 word phrase."""
    words = (text or "").strip().lower().split()
    if len(words) not in (12, 24):
        return None
    phrase = " ".join(words)
    return phrase if is_valid_mnemonic(phrase) else None


def detect_address(text: str):
    """Return the first EVM address found in `text`, if any."""
    match = EVM_ADDRESS_RE.search(text or "")
    return match.group(0) if match else None
