"""Chain collaborators: the provider/signer contracts and thin EVM adapters.

The resubmitter only relies on the two protocols below. ``JsonRpcProvider``
and ``LocalSigner`` exist so the service can run against a real node.

Nonce contract: every attempt of one logical submission must carry the same
nonce so that a confirmed attempt replaces the others instead of spending
twice. The facade pins the nonce through ``Signer.get_nonce`` before the
first round; signers must not assign a fresh nonce to a transaction that
already has one.
"""
import asyncio
import itertools
import logging
from typing import Any, Protocol

import httpx
from eth_account import Account

from txsubmitter.codec import hex_to_int, to_hex_quantity
from txsubmitter.errors import RpcError
from txsubmitter.models import Receipt, TxResponse
import txsubmitter.constants as C

log = logging.getLogger("txsubmitter.provider")


class Provider(Protocol):
    async def get_gas_price(self) -> int: ...
    async def send_transaction(self, raw_transaction: str) -> TxResponse: ...
    async def wait_for_transaction(self, tx_hash: str, confirmations: int = 1) -> Receipt: ...


class Signer(Protocol):
    provider: Provider

    async def get_gas_price(self) -> int: ...
    async def get_nonce(self) -> int: ...
    async def send_transaction(self, tx: dict[str, Any]) -> TxResponse: ...


class JsonRpcProvider:
    """Minimal Ethereum JSON-RPC provider over ``httpx``."""

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = C.RPC_TIMEOUT,
        poll_interval: float = C.RECEIPT_POLL_INTERVAL,
    ):
        self.url = url
        self._client = client
        self._timeout = timeout
        self.poll_interval = poll_interval
        self._ids = itertools.count(1)

    async def request(self, method: str, params: list | None = None) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        if self._client is not None:
            resp = await self._client.post(self.url, json=payload)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as http:
                resp = await http.post(self.url, json=payload)
        resp.raise_for_status()
        body = resp.json()
        err = body.get("error")
        if err:
            raise RpcError(method, err.get("code"), err.get("message", str(err)))
        return body.get("result")

    async def get_gas_price(self) -> int:
        return hex_to_int(await self.request("eth_gasPrice"))

    async def get_block_number(self) -> int:
        return hex_to_int(await self.request("eth_blockNumber"))

    async def get_chain_id(self) -> int:
        return hex_to_int(await self.request("eth_chainId"))

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return hex_to_int(await self.request("eth_getTransactionCount", [address, block]))

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        call = {k: (to_hex_quantity(v) if isinstance(v, int) else v) for k, v in tx.items() if k != "nonce"}
        return hex_to_int(await self.request("eth_estimateGas", [call]))

    async def send_transaction(self, raw_transaction: str) -> TxResponse:
        tx_hash = await self.request("eth_sendRawTransaction", [raw_transaction])
        log.debug("sent %s", tx_hash)
        return TxResponse(hash=tx_hash, raw_transaction=raw_transaction)

    async def get_transaction_receipt(self, tx_hash: str) -> dict | None:
        return await self.request("eth_getTransactionReceipt", [tx_hash])

    async def wait_for_transaction(self, tx_hash: str, confirmations: int = 1) -> Receipt:
        """Poll until ``tx_hash`` is mined with ``confirmations`` blocks (inclusive) on top.

        There is no deadline here; callers cancel the wait.
        """
        confirmations = max(confirmations, 1)
        while True:
            receipt = await self.get_transaction_receipt(tx_hash)
            if receipt and receipt.get("blockNumber"):
                mined_in = hex_to_int(receipt["blockNumber"])
                depth = await self.get_block_number() - mined_in + 1
                if depth >= confirmations:
                    log.debug("tx %s mined in %s with %s confirmations", tx_hash, mined_in, depth)
                    return Receipt.from_rpc(receipt, depth)
            await asyncio.sleep(self.poll_interval)


class LocalSigner:
    """Signs with a private key held in process (eth-account) and broadcasts via a provider."""

    def __init__(self, provider: JsonRpcProvider, private_key: str):
        self.provider = provider
        self._account = Account.from_key(private_key)
        self._chain_id: int | None = None

    @property
    def address(self) -> str:
        return self._account.address

    async def get_gas_price(self) -> int:
        return await self.provider.get_gas_price()

    async def get_nonce(self) -> int:
        return await self.provider.get_transaction_count(self.address, "pending")

    async def sign_transaction(self, tx: dict[str, Any]) -> str:
        tx = dict(tx)
        tx.setdefault("from", self.address)
        if "chainId" not in tx:
            if self._chain_id is None:
                self._chain_id = await self.provider.get_chain_id()
            tx["chainId"] = self._chain_id
        if "nonce" not in tx:
            tx["nonce"] = await self.get_nonce()
        if "gas" not in tx:
            tx["gas"] = await self.provider.estimate_gas(tx)
        tx.pop("from")
        signed = self._account.sign_transaction(tx)
        return "0x" + bytes(signed.raw_transaction).hex()

    async def send_transaction(self, tx: dict[str, Any]) -> TxResponse:
        raw = await self.sign_transaction(tx)
        resp = await self.provider.send_transaction(raw)
        return TxResponse(hash=resp.hash, raw_transaction=raw, nonce=tx.get("nonce"), gas_price=tx.get("gasPrice"))
