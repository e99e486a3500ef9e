"""
EVM Chain Client
Wallet derivation, balances, fee data, token discovery and signed transfers
for one EVM chain, on top of AsyncWeb3.
"""

import logging
import re

from eth_account import Account
from eth_account.hdaccount import Language, Mnemonic
from eth_utils import ValidationError
from web3 import AsyncWeb3, AsyncHTTPProvider
from web3.middleware import ExtraDataToPOAMiddleware

from services.errors import InvalidSecretError
from services.gas_service import FeeData, NATIVE_TRANSFER_GAS, TOKEN_TRANSFER_GAS, GWEI, with_buffer
from services.nonce_manager import NonceManager
from services.rpc_service import RPCManager
from services.sweep_engine import TokenBalance
from utils.confirmation_utils import wait_for_receipt

logger = logging.getLogger("EvmChain")

Account.enable_unaudited_hdwallet_features()

DEFAULT_DERIVATION_PATH = "m/44'/60'/0'/0/0"
DEFAULT_PRIORITY_FEE = int(1.5 * GWEI)

# chains whose blocks carry oversized extraData
POA_CHAINS = {"polygon"}

ERC20_ABI = [
    {"constant": True, "inputs": [{"name": "_owner", "type": "address"}], "name": "balanceOf", "outputs": [{"name": "balance", "type": "uint256"}], "type": "function"},
    {"constant": False, "inputs": [{"name": "_to", "type": "address"}, {"name": "_value", "type": "uint256"}], "name": "transfer", "outputs": [{"name": "", "type": "bool"}], "type": "function"}
]

_PRIVATE_KEY_RE = re.compile(r'^(0x)?[a-fA-F0-9]{64}$')


def is_valid_mnemonic(phrase: str) -> bool:
    words = (phrase or "").strip().lower().split()
    if len(words) not in (12, 24):
        return False
    return Mnemonic(Language.ENGLISH).is_mnemonic_valid(" ".join(words))


def derive_account(secret: str, path: str = DEFAULT_DERIVATION_PATH):
    """LocalAccount for a recovery phrase (or a raw private key)."""
    secret = (secret or "").strip()
    if _PRIVATE_KEY_RE.match(secret):
        return Account.from_key(secret)
    if not is_valid_mnemonic(secret):
        raise InvalidSecretError("Invalid recovery phrase")
    try:
        return Account.from_mnemonic(" ".join(secret.lower().split()), account_path=path)
    except (ValueError, ValidationError) as e:
        raise InvalidSecretError(f"Invalid recovery phrase: {e}") from e


class EvmChainClient:
    def __init__(self, profile, nonce_manager=None, rpc_manager=None,
                 receipt_poll_interval=2.0, request_timeout=10):
        self.profile = profile
        self.nonces = nonce_manager or NonceManager()
        self.rpc = rpc_manager or RPCManager()
        self.receipt_poll_interval = receipt_poll_interval
        self._metadata = {}  # contract -> (symbol, decimals, name)

        self.w3 = AsyncWeb3(AsyncHTTPProvider(profile.rpc_url, request_kwargs={"timeout": request_timeout}))
        if profile.key in POA_CHAINS:
            self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

    @property
    def _tag(self):
        return f"[{self.profile.name}]"

    def derive_wallet(self, secret):
        return derive_account(secret)

    async def get_native_balance(self, address) -> int:
        return await self.w3.eth.get_balance(AsyncWeb3.to_checksum_address(address))

    async def get_fee_data(self) -> FeeData:
        gas_price = await self.w3.eth.gas_price
        block = await self.w3.eth.get_block("latest")
        base_fee = block.get("baseFeePerGas")
        if base_fee is None:
            return FeeData(gas_price=gas_price)

        try:
            priority_fee = await self.w3.eth.max_priority_fee
        except ValueError as e:
            logger.info(f"{self._tag} eth_maxPriorityFeePerGas unsupported ({e}), using 1.5 gwei tip")
            priority_fee = DEFAULT_PRIORITY_FEE

        return FeeData(
            gas_price=gas_price,
            max_fee_per_gas=base_fee * 2 + priority_fee,
            max_priority_fee_per_gas=priority_fee,
        )

    async def list_token_balances(self, address):
        """Non-zero ERC-20 balances of `address` as reported by the Alchemy token API."""
        result = await self.rpc.call_json_rpc([self.profile.alchemy_url], "alchemy_getTokenBalances", [address, "erc20"])
        if result is None:
            raise ConnectionError(f"Token balance lookup failed on {self.profile.name}")

        balances = []
        for entry in result.get("tokenBalances", []):
            raw = entry.get("tokenBalance")
            if not raw or entry.get("error"):
                continue
            raw_amount = int(raw, 16)
            if raw_amount == 0:
                continue

            contract = entry["contractAddress"]
            symbol, decimals, name = await self._token_metadata(contract)
            if not symbol:
                logger.info(f"{self._tag} No symbol for token {contract}, skipping")
                continue
            balances.append(TokenBalance(contract=contract, raw_amount=raw_amount,
                                         symbol=symbol, decimals=decimals, name=name))
        return balances

    async def _token_metadata(self, contract):
        cached = self._metadata.get(contract.lower())
        if cached:
            return cached
        meta = await self.rpc.call_json_rpc([self.profile.alchemy_url], "alchemy_getTokenMetadata", [contract]) or {}
        decimals = meta.get("decimals")
        info = (meta.get("symbol") or "", int(decimals) if decimals is not None else 18, meta.get("name") or "")
        if info[0]:
            self._metadata[contract.lower()] = info
        return info

    def _token_contract(self, contract):
        return self.w3.eth.contract(address=AsyncWeb3.to_checksum_address(contract), abi=ERC20_ABI)

    async def estimate_token_transfer_gas(self, wallet, destination, token) -> int:
        transfer = self._token_contract(token.contract).functions.transfer(
            AsyncWeb3.to_checksum_address(destination), int(token.raw_amount))
        return await transfer.estimate_gas({"from": wallet.address})

    async def submit_native_transfer(self, wallet, destination, amount, fee_level) -> str:
        nonce = await self.nonces.get_next_nonce(self.w3, wallet.address)
        tx = {
            "nonce": nonce,
            "to": AsyncWeb3.to_checksum_address(destination),
            "value": int(amount),
            "gas": NATIVE_TRANSFER_GAS,
            "chainId": self.profile.chain_id,
            **fee_level.tx_params(),
        }
        return await self._sign_and_send(wallet, tx)

    async def submit_token_transfer(self, wallet, destination, token, fee_level) -> str:
        try:
            gas_limit = with_buffer(await self.estimate_token_transfer_gas(wallet, destination, token))
        except Exception as e:
            logger.info(f"{self._tag} Gas estimation failed for {token.symbol} ({e}), using conservative limit")
            gas_limit = with_buffer(TOKEN_TRANSFER_GAS)

        nonce = await self.nonces.get_next_nonce(self.w3, wallet.address)
        try:
            tx = await self._token_contract(token.contract).functions.transfer(
                AsyncWeb3.to_checksum_address(destination), int(token.raw_amount)
            ).build_transaction({
                "from": wallet.address,
                "nonce": nonce,
                "gas": gas_limit,
                "chainId": self.profile.chain_id,
                **fee_level.tx_params(),
            })
        except Exception:
            self.nonces.release(wallet.address, nonce)
            raise
        return await self._sign_and_send(wallet, tx)

    async def _sign_and_send(self, wallet, tx) -> str:
        signed = wallet.sign_transaction(tx)
        try:
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception:
            self.nonces.release(wallet.address, tx["nonce"])
            raise
        tx_id = self.w3.to_hex(tx_hash)
        logger.info(f"{self._tag} Broadcast {tx_id} (nonce {tx['nonce']})")
        return tx_id

    async def await_confirmation(self, tx_id):
        return await wait_for_receipt(self.w3, tx_id, poll_interval=self.receipt_poll_interval)

    def explorer_link(self, tx_id) -> str:
        if self.profile.explorer_url:
            return self.profile.explorer_url.format(tx=tx_id)
        return f"Transaction: {tx_id}"

    async def close(self):
        await self.w3.provider.disconnect()
