"""Transaction, attempt and receipt data structures."""

import time
from dataclasses import dataclass, field, replace
from typing import Any

from txsubmitter.codec import hex_to_int
import txsubmitter.constants as C


@dataclass(frozen=True)
class UnsignedTransaction:
    """Transaction intent handed to the submitter. Never mutated by the engine.

    ``value`` is in wei and ``data`` is ``0x``-prefixed calldata. ``nonce``,
    ``gas`` and ``chain_id`` are filled in by the signer when left unset.
    """

    to: str | None
    value: int = 0
    data: str = "0x"
    nonce: int | None = None
    gas: int | None = None
    chain_id: int | None = None
    from_address: str | None = None

    def with_nonce(self, nonce: int) -> "UnsignedTransaction":
        return replace(self, nonce=nonce)

    def to_tx_dict(self, gas_price: int | None = None) -> dict[str, Any]:
        """Legacy (type 0) transaction dict in the shape eth-account signs."""
        tx: dict[str, Any] = {"value": self.value, "data": self.data}
        if self.to is not None:
            tx["to"] = self.to
        if gas_price is not None:
            tx["gasPrice"] = gas_price
        if self.nonce is not None:
            tx["nonce"] = self.nonce
        if self.gas is not None:
            tx["gas"] = self.gas
        if self.chain_id is not None:
            tx["chainId"] = self.chain_id
        if self.from_address is not None:
            tx["from"] = self.from_address
        return tx


@dataclass(slots=True)
class SubmissionAttempt:
    round: int
    gas_price: int  # wei
    state: C.AttemptState = C.AttemptState.CREATED
    tx_hash: str | None = None
    error: str | None = None
    created_at: float = field(default_factory=time.time)
    finalized_at: float | None = None

    def __str__(self):
        return f"round {self.round} -- {self.gas_price / C.GWEI:g} gwei -- {self.state}"


@dataclass(frozen=True)
class TxResponse:
    """Node acknowledgement of a broadcast transaction."""

    hash: str
    raw_transaction: str
    nonce: int | None = None
    gas_price: int | None = None


@dataclass(frozen=True)
class Receipt:
    """A transaction included in a block with the requested confirmation depth."""

    transaction_hash: str
    block_number: int
    block_hash: str
    status: int | None
    gas_used: int | None
    effective_gas_price: int | None
    confirmations: int

    @classmethod
    def from_rpc(cls, result: dict, confirmations: int) -> "Receipt":
        """Parse an ``eth_getTransactionReceipt`` result.

        Args:
            result: The JSON-RPC ``result`` object, quantities hex encoded
            confirmations: Confirmation depth observed when the receipt was read

        Returns:
            Receipt instance with parsed values
        """
        return cls(
            transaction_hash=result["transactionHash"],
            block_number=hex_to_int(result["blockNumber"]),
            block_hash=result["blockHash"],
            status=hex_to_int(result.get("status")),
            gas_used=hex_to_int(result.get("gasUsed")),
            effective_gas_price=hex_to_int(result.get("effectiveGasPrice")),
            confirmations=confirmations,
        )
