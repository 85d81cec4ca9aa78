"""In-memory stand-ins for the chain provider and signer used by the tests."""

import asyncio
import json

import httpx
from eth_utils import keccak

from txsubmitter.models import Receipt, TxResponse
import txsubmitter.constants as C


class FakeProvider:
    """Confirms the ``confirm_from``-th confirmation wait (1-based) and every one after it.

    Earlier waits block on ``gate`` until a test sets it.
    """

    def __init__(self, gas_price: int = 1 * C.GWEI, confirm_from: int = 1):
        self.gas_price = gas_price
        self.confirm_from = confirm_from
        self.gate = asyncio.Event()
        self.sent: list[str] = []
        self.send_errors: dict[int, Exception] = {}
        self.waits = 0
        self.waiting = 0

    async def get_gas_price(self) -> int:
        return self.gas_price

    async def send_transaction(self, raw_transaction: str) -> TxResponse:
        await asyncio.sleep(0)
        self.sent.append(raw_transaction)
        err = self.send_errors.get(len(self.sent))
        if err is not None:
            raise err
        return TxResponse(hash="0x" + keccak(hexstr=raw_transaction).hex(), raw_transaction=raw_transaction)

    async def wait_for_transaction(self, tx_hash: str, confirmations: int = 1) -> Receipt:
        self.waits += 1
        n = self.waits
        self.waiting += 1
        try:
            if n < self.confirm_from:
                await self.gate.wait()
            await asyncio.sleep(0)
            return Receipt(
                transaction_hash=tx_hash,
                block_number=100 + n,
                block_hash="0x" + "ab" * 32,
                status=1,
                gas_used=21000,
                effective_gas_price=None,
                confirmations=confirmations,
            )
        finally:
            self.waiting -= 1


class FakeSigner:
    def __init__(self, provider: FakeProvider, nonce: int = 7):
        self.provider = provider
        self.nonce = nonce
        self.sent_txs: list[dict] = []
        self.send_errors: dict[int, Exception] = {}

    async def get_gas_price(self) -> int:
        return await self.provider.get_gas_price()

    async def get_nonce(self) -> int:
        return self.nonce

    async def send_transaction(self, tx: dict) -> TxResponse:
        self.sent_txs.append(tx)
        err = self.send_errors.get(len(self.sent_txs))
        if err is not None:
            raise err
        raw = "0x%04x%032x" % (tx.get("nonce", 0), tx["gasPrice"])
        return await self.provider.send_transaction(raw)


TX_HASH = "0x" + "cd" * 32


class FakeNode:
    """Answers JSON-RPC calls from a table of results, recording every call."""

    def __init__(self, **results):
        self.results = {
            "eth_chainId": "0x539",
            "eth_gasPrice": "0x3b9aca00",
            "eth_getTransactionCount": "0x7",
            "eth_estimateGas": "0x5208",
            "eth_sendRawTransaction": TX_HASH,
            "eth_blockNumber": "0x10",
            "eth_getTransactionReceipt": None,
        }
        self.results.update(results)
        self.receipts: list = []
        self.heads: list[str] = []
        self.calls: list[tuple[str, list]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method, params = body["method"], body["params"]
        self.calls.append((method, params))
        result = self.results.get(method)
        if method == "eth_getTransactionReceipt" and self.receipts:
            result = self.receipts.pop(0)
        if method == "eth_blockNumber" and self.heads:
            result = self.heads.pop(0)
        if isinstance(result, dict) and "error" in result:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": result["error"]})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    def methods(self) -> list[str]:
        return [m for m, _ in self.calls]


def receipt(block: str) -> dict:
    return {
        "transactionHash": TX_HASH,
        "blockNumber": block,
        "blockHash": "0x" + "ef" * 32,
        "status": "0x1",
        "gasUsed": "0x5208",
        "effectiveGasPrice": "0x3b9aca00",
    }
