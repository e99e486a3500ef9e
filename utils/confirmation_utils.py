import asyncio
import logging

from web3.exceptions import TransactionNotFound

logger = logging.getLogger("Confirmations")


async def wait_for_receipt(w3, tx_hash, poll_interval=2.0):
    """
    Poll until the transaction has a receipt and return it.
    Callers bound the wait themselves (asyncio.wait_for).
    """
    if isinstance(tx_hash, str) and not tx_hash.startswith("0x"):
        tx_hash = "0x" + tx_hash

    while True:
        try:
            receipt = await w3.eth.get_transaction_receipt(tx_hash)
            if receipt is not None and receipt.get("blockNumber") is not None:
                return receipt
        except TransactionNotFound:
            pass
        await asyncio.sleep(poll_interval)

