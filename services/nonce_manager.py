import asyncio
import logging

logger = logging.getLogger("NonceManager")


class NonceManager:
    """
    Hands out nonces per sending address so back-to-back sweep transfers
    never collide with "nonce too low" or "replacement underpriced" errors.
    """
    def __init__(self):
        self._locks = {}
        self._nonces = {}

    def _get_lock(self, address):
        if address not in self._locks:
            self._locks[address] = asyncio.Lock()
        return self._locks[address]

    async def get_next_nonce(self, w3, address):
        """
        Next nonce for `address`.
        Syncs up when the chain is ahead (restart); keeps the local value when
        it is ahead (transfers still pending in this process).
        """
        address = address.lower()
        async with self._get_lock(address):
            chain_nonce = await w3.eth.get_transaction_count(w3.to_checksum_address(address), "pending")
            if address not in self._nonces or self._nonces[address] < chain_nonce:
                self._nonces[address] = chain_nonce

            nonce_to_use = self._nonces[address]
            self._nonces[address] += 1
            return nonce_to_use

    def release(self, address, nonce):
        """Give back a nonce whose transaction never reached the network."""
        address = address.lower()
        if self._nonces.get(address) == nonce + 1:
            self._nonces[address] = nonce
            logger.info(f"Released unused nonce {nonce} for {address[:10]}...")

    def reset(self, address):
        self._nonces.pop(address.lower(), None)
