"""Gas price escalation: resubmit a transaction at rising gas prices until one attempt confirms.

Every round starts a new attempt (send + wait for confirmations) and then
waits for whichever comes first: any outstanding attempt confirming, or the
round timer. Earlier attempts are not cancelled when a new round starts, so
several transactions sharing one nonce can be pending at different prices.
The first receipt wins; the local wait tasks of the others are cancelled and
their transactions are left to be replaced on chain.
"""
import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable

from eth_utils import keccak

from txsubmitter.config import ResubmissionConfig
from txsubmitter.errors import RpcError, SubmissionTimeout
from txsubmitter.models import Receipt, SubmissionAttempt, TxResponse, UnsignedTransaction
from txsubmitter.provider import Signer
import txsubmitter.constants as C

log = logging.getLogger("txsubmitter.resubmitter")

SendFn = Callable[[SubmissionAttempt], Awaitable[Receipt]]
SignFunction = Callable[[dict[str, Any]], Awaitable[str] | str]


def _noop(_):
    return None


@dataclass
class TxSubmissionHooks:
    """Synchronous observability callbacks. They run inline in the loop, so keep them cheap."""

    before_send_transaction: Callable[[dict[str, Any]], None] = _noop
    on_transaction_response: Callable[[TxResponse], None] = _noop


def gwei_to_wei(gwei: float | int) -> int:
    return int(Decimal(str(gwei)) * C.GWEI)


def next_gas_price(gas_price: int, increment: int, max_gas_price: int) -> int:
    return min(gas_price + increment, max_gas_price)


async def resolve_gas_price_bounds(signer: Signer, config: ResubmissionConfig) -> tuple[int, int]:
    """Starting and maximum gas price in wei.

    The start is the live network price, raised to ``min_gas_price_in_gwei``
    when one is configured, and never above the maximum.
    """
    live = await signer.get_gas_price()
    max_gas_price = gwei_to_wei(config.max_gas_price_in_gwei)
    start = live
    if config.min_gas_price_in_gwei is not None:
        start = max(live, gwei_to_wei(config.min_gas_price_in_gwei))
    if start > max_gas_price:
        log.warning("network gas price %s gwei is above the %s gwei cap", live / C.GWEI, config.max_gas_price_in_gwei)
    return min(start, max_gas_price), max_gas_price


class Resubmission:
    """One logical submission driven through escalating rounds.

    Parameters
    ----------
    send_fn:
        Coroutine function taking the round's ``SubmissionAttempt`` (which
        carries the gas price) and returning the receipt once confirmed.
    min_gas_price, max_gas_price, gas_price_increment:
        Wei. The start price is clamped to ``max_gas_price``.
    delay:
        Seconds between rounds.
    continue_on_send_error:
        When False an attempt that raises aborts the whole submission.
        When True the failure is logged and the remaining attempts keep going.
    """

    def __init__(
        self,
        send_fn: SendFn,
        *,
        min_gas_price: int,
        max_gas_price: int,
        gas_price_increment: int,
        delay: float,
        continue_on_send_error: bool = False,
    ):
        if delay <= 0:
            raise ValueError(f"delay must be positive, got {delay}")
        self.send_fn = send_fn
        self.start_gas_price = min(min_gas_price, max_gas_price)
        self.max_gas_price = max_gas_price
        self.gas_price_increment = gas_price_increment
        self.delay = delay
        self.continue_on_send_error = continue_on_send_error
        self.attempts: list[SubmissionAttempt] = []
        self.done = False
        self._outstanding: dict[asyncio.Task, SubmissionAttempt] = {}

    @property
    def gas_prices(self) -> list[int]:
        return [a.gas_price for a in self.attempts]

    async def run(self, deadline: float | None = None) -> Receipt:
        """Escalate until an attempt confirms. ``deadline`` (seconds) bounds the whole submission."""
        try:
            if deadline is None:
                return await self._escalate()
            try:
                async with asyncio.timeout(deadline):
                    return await self._escalate()
            except TimeoutError as e:
                raise SubmissionTimeout(
                    f"no confirmation after {deadline}s and {len(self.attempts)} attempts"
                ) from e
        finally:
            self.done = True
            await self._abandon_outstanding()

    async def _escalate(self) -> Receipt:
        gas_price = self.start_gas_price
        n = 0
        while True:
            self._launch(n, gas_price)
            receipt = await self._wait_round()
            if receipt is not None:
                return receipt
            gas_price = next_gas_price(gas_price, self.gas_price_increment, self.max_gas_price)
            log.info("round %d timed out, resubmitting at %s gwei (%d in flight)",
                     n, gas_price / C.GWEI, len(self._outstanding))
            n += 1

    def _launch(self, n: int, gas_price: int) -> None:
        attempt = SubmissionAttempt(round=n, gas_price=gas_price)
        self.attempts.append(attempt)
        task = asyncio.create_task(self.send_fn(attempt), name=f"attempt-{n}")
        self._outstanding[task] = attempt
        log.debug("launched %s", attempt)

    async def _wait_round(self) -> Receipt | None:
        loop = asyncio.get_running_loop()
        round_ends = loop.time() + self.delay
        while True:
            remaining = round_ends - loop.time()
            if remaining <= 0:
                return None
            if not self._outstanding:
                # Every attempt so far failed; hold off until the next round
                await asyncio.sleep(remaining)
                return None
            finished, _ = await asyncio.wait(
                self._outstanding.keys(), timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
            if not finished:
                return None
            # Successes first so a failure finishing in the same tick cannot mask a receipt
            for task in sorted(finished, key=lambda t: t.exception() is not None):
                attempt = self._outstanding.pop(task)
                attempt.finalized_at = time.time()
                exc = task.exception()
                if exc is None:
                    receipt = task.result()
                    attempt.state = C.AttemptState.CONFIRMED
                    attempt.tx_hash = receipt.transaction_hash
                    log.info("confirmed %s in block %s", receipt.transaction_hash, receipt.block_number)
                    return receipt
                attempt.state = C.AttemptState.FAILED
                attempt.error = f"{exc.__class__.__name__}: {exc}"
                if not self.continue_on_send_error:
                    log.error("attempt %s failed, aborting submission: %s", attempt, exc)
                    raise exc
                log.warning("attempt %s failed, %d still in flight: %s", attempt, len(self._outstanding), exc)

    async def _abandon_outstanding(self) -> None:
        if not self._outstanding:
            return
        tasks = list(self._outstanding)
        for task, attempt in self._outstanding.items():
            task.cancel()
            attempt.state = C.AttemptState.SUPERSEDED
            attempt.finalized_at = time.time()
        self._outstanding.clear()
        await asyncio.gather(*tasks, return_exceptions=True)
        log.debug("abandoned %d outstanding attempts", len(tasks))


def _is_already_known(e: RpcError) -> bool:
    msg = e.message.lower()
    return any(s in msg for s in C.ALREADY_KNOWN_ERRORS)


async def submit_transaction_with_escalation(
    tx: UnsignedTransaction,
    signer: Signer,
    config: ResubmissionConfig,
    num_confirmations: int,
    hooks: TxSubmissionHooks,
    *,
    deadline: float | None = None,
) -> Receipt:
    """Sign and send a fresh transaction at each round's gas price."""

    async def send_tx_and_wait_for_receipt(attempt: SubmissionAttempt) -> Receipt:
        full_tx = tx.to_tx_dict(attempt.gas_price)
        hooks.before_send_transaction(full_tx)
        resp = await signer.send_transaction(full_tx)
        attempt.tx_hash = resp.hash
        attempt.state = C.AttemptState.SENT
        if not resubmission.done:
            hooks.on_transaction_response(resp)
        return await signer.provider.wait_for_transaction(resp.hash, num_confirmations)

    min_gas_price, max_gas_price = await resolve_gas_price_bounds(signer, config)
    resubmission = Resubmission(
        send_tx_and_wait_for_receipt,
        min_gas_price=min_gas_price,
        max_gas_price=max_gas_price,
        gas_price_increment=gwei_to_wei(config.gas_retry_increment),
        delay=config.resubmission_timeout / 1000,
        continue_on_send_error=config.continue_on_send_error,
    )
    return await resubmission.run(deadline)


async def submit_signed_transaction_with_escalation(
    tx: UnsignedTransaction,
    sign_function: SignFunction,
    signer: Signer,
    config: ResubmissionConfig,
    num_confirmations: int,
    hooks: TxSubmissionHooks,
    *,
    deadline: float | None = None,
) -> Receipt:
    """Sign once through ``sign_function`` and keep re-broadcasting that payload each round.

    The payload is fixed, so the gas price never moves; rounds only renew the
    broadcast and the confirmation wait.
    """
    gas_price, _ = await resolve_gas_price_bounds(signer, config)
    tx_dict = tx.to_tx_dict(gas_price)
    signed_tx = sign_function(tx_dict)
    if inspect.isawaitable(signed_tx):
        signed_tx = await signed_tx
    tx_hash = "0x" + keccak(hexstr=signed_tx).hex()
    log.info("externally signed %s at %s gwei", tx_hash, gas_price / C.GWEI)

    async def send_signed_tx_and_wait_for_receipt(attempt: SubmissionAttempt) -> Receipt:
        hooks.before_send_transaction(tx_dict)
        try:
            resp = await signer.provider.send_transaction(signed_tx)
        except RpcError as e:
            if not _is_already_known(e):
                raise
            log.debug("node already has %s: %s", tx_hash, e.message)
            resp = TxResponse(hash=tx_hash, raw_transaction=signed_tx, gas_price=gas_price)
        attempt.tx_hash = resp.hash
        attempt.state = C.AttemptState.SENT
        if not resubmission.done:
            hooks.on_transaction_response(resp)
        return await signer.provider.wait_for_transaction(resp.hash, num_confirmations)

    resubmission = Resubmission(
        send_signed_tx_and_wait_for_receipt,
        min_gas_price=gas_price,
        max_gas_price=gas_price,
        gas_price_increment=0,
        delay=config.resubmission_timeout / 1000,
        continue_on_send_error=config.continue_on_send_error,
    )
    return await resubmission.run(deadline)
