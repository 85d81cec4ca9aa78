"""Delegated signing: turn an unsigned transaction into a raw payload signed by the MPC service."""
import logging
import re
import uuid
from typing import Any

from txsubmitter.codec import base64_to_hex, remove_hex_leading_zero, to_hex_quantity
from txsubmitter.errors import MpcProposalRejected, MpcSignTimeout, MpcUnavailable
from txsubmitter.models import TxResponse
from txsubmitter.mpc_client import MpcClient, MpcKeyInfo
from txsubmitter.provider import JsonRpcProvider
import txsubmitter.constants as C

log = logging.getLogger("txsubmitter.mpc")

# Fields of the signing request that travel as hex quantities
QUANTITY_FIELDS = ("nonce", "gasPrice", "gas", "value", "chainId")
_BARE_HEX = re.compile(r"(?:[0-9a-fA-F]{2})+")


def build_sign_request(sign_id: str, key: MpcKeyInfo, tx: dict[str, Any]) -> dict[str, Any]:
    """Signing proposal body. Quantities are hex without leading zeros, as the service expects."""
    sign_data: dict[str, Any] = {"from": key.mpc_address, "to": tx.get("to"), "data": tx.get("data", "0x")}
    for name in QUANTITY_FIELDS:
        value = tx.get(name)
        if value is None:
            continue
        sign_data[name] = to_hex_quantity(value) if isinstance(value, int) else remove_hex_leading_zero(value, True)
    request = {"id": sign_id, "sign_data": sign_data}
    mpc_id = (key.model_extra or {}).get("mpc_id")
    if mpc_id is not None:
        request["mpc_id"] = mpc_id
    return request


class MpcSigner:
    """Signs through the MPC service and broadcasts through ``provider``.

    Usable both as the ``sign_function`` of a pre-signed submission
    (``sign_transaction``) and as a full ``Signer``. The key is looked up on
    every call; the service may rotate it at any time.
    """

    def __init__(
        self,
        client: MpcClient,
        provider: JsonRpcProvider,
        max_timeout: int = C.MPC_SIGN_MAX_TIMEOUT,
        interval: int = C.MPC_SIGN_POLL_INTERVAL,
    ):
        self.client = client
        self.provider = provider
        self.max_timeout = max_timeout
        self.interval = interval

    async def _key(self) -> MpcKeyInfo:
        key = await self.client.get_latest_mpc()
        if key is None:
            raise MpcUnavailable(f"no MPC key published at {self.client.url}")
        return key

    async def get_gas_price(self) -> int:
        return await self.provider.get_gas_price()

    async def get_nonce(self) -> int:
        key = await self._key()
        return await self.provider.get_transaction_count(key.mpc_address, "pending")

    async def sign_transaction(self, tx: dict[str, Any]) -> str:
        key = await self._key()
        tx = dict(tx)
        if "nonce" not in tx:
            tx["nonce"] = await self.provider.get_transaction_count(key.mpc_address, "pending")
        if "chainId" not in tx:
            tx["chainId"] = await self.provider.get_chain_id()
        if "gas" not in tx:
            tx["gas"] = await self.provider.estimate_gas({**tx, "from": key.mpc_address})

        sign_id = str(uuid.uuid4())
        proposal = await self.client.propose_mpc_sign(build_sign_request(sign_id, key, tx))
        if proposal is None:
            raise MpcProposalRejected(f"MPC service refused sign request {sign_id}")
        log.info("proposed MPC sign %s for %s nonce=%s", sign_id, key.mpc_address, tx["nonce"])

        signed_tx = await self.client.get_mpc_sign_with_timeout(sign_id, self.max_timeout, self.interval)
        if not signed_tx:
            raise MpcSignTimeout(f"MPC sign {sign_id} not completed within {self.max_timeout} ms")
        if signed_tx.startswith("0x"):
            return signed_tx
        if _BARE_HEX.fullmatch(signed_tx):
            return "0x" + signed_tx.lower()
        # Some service versions return the raw payload base64 encoded
        return base64_to_hex(signed_tx)

    async def send_transaction(self, tx: dict[str, Any]) -> TxResponse:
        raw = await self.sign_transaction(tx)
        resp = await self.provider.send_transaction(raw)
        return TxResponse(hash=resp.hash, raw_transaction=raw, nonce=tx.get("nonce"), gas_price=tx.get("gasPrice"))
