import asyncio
import logging
from typing import List

import aiohttp

logger = logging.getLogger("RPCManager")


class RPCManager:
    """Raw JSON-RPC calls for provider extensions (Alchemy token APIs) that web3 does not wrap."""

    def __init__(self, timeout=10, rotation_delay=0.5):
        self.timeout = timeout
        self.rotation_delay = rotation_delay
        self._session = None

    async def get_session(self):
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def call_json_rpc(self, urls: List[str], method: str, params: list = None, id: int = 1):
        """
        Attempt JSON-RPC call against a list of URLs with failover.
        Returns the `result` field, or None when every URL failed.
        """
        if params is None:
            params = []

        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": id
        }

        session = await self.get_session()
        for url in urls:
            if not url:
                continue
            try:
                async with session.post(url, json=payload, timeout=aiohttp.ClientTimeout(total=self.timeout)) as resp:
                    if resp.status == 200:
                        data = await resp.json()
                        if "result" in data:
                            return data["result"]
                        if "error" in data:
                            logger.warning(f"RPC Error from {self._redact(url)}: {data['error']}")
                    else:
                        logger.warning(f"RPC {self._redact(url)} returned status {resp.status}")

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(f"RPC connection failed ({self._redact(url)}): {e}")

            await asyncio.sleep(self.rotation_delay)

        logger.error(f"All RPCs failed for method {method}")
        return None

    @staticmethod
    def _redact(url):
        # Alchemy URLs carry the API key as the last path segment
        return url.rsplit("/", 1)[0] + "/***" if "/v2/" in url else url

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
