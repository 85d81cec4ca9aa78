from typing import Protocol

from txsubmitter.config import ResubmissionConfig
from txsubmitter.models import Receipt, UnsignedTransaction
from txsubmitter.provider import Signer
from txsubmitter.resubmitter import (
    SignFunction,
    TxSubmissionHooks,
    submit_signed_transaction_with_escalation,
    submit_transaction_with_escalation,
)


class TransactionSubmitter(Protocol):
    async def submit_transaction(
        self, tx: UnsignedTransaction, hooks: TxSubmissionHooks | None = None
    ) -> Receipt: ...

    async def submit_signed_transaction(
        self, tx: UnsignedTransaction, sign_function: SignFunction, hooks: TxSubmissionHooks | None = None
    ) -> Receipt: ...


class EscalatingTransactionSubmitter:
    """Submits through the gas price escalation loop.

    ``num_confirmations`` is fixed for the lifetime of the submitter and
    ``config`` is passed through untouched. ``deadline`` (seconds) optionally
    bounds every submission; without it a submission runs until confirmed or
    cancelled.
    """

    def __init__(
        self,
        signer: Signer,
        config: ResubmissionConfig,
        num_confirmations: int,
        deadline: float | None = None,
    ):
        self.signer = signer
        self.config = config
        self.num_confirmations = num_confirmations
        self.deadline = deadline

    async def submit_transaction(
        self, tx: UnsignedTransaction, hooks: TxSubmissionHooks | None = None
    ) -> Receipt:
        if hooks is None:
            hooks = TxSubmissionHooks()
        # All rounds must replace each other, so the nonce is pinned before the first one
        if tx.nonce is None:
            tx = tx.with_nonce(await self.signer.get_nonce())
        return await submit_transaction_with_escalation(
            tx,
            self.signer,
            self.config,
            self.num_confirmations,
            hooks,
            deadline=self.deadline,
        )

    async def submit_signed_transaction(
        self, tx: UnsignedTransaction, sign_function: SignFunction, hooks: TxSubmissionHooks | None = None
    ) -> Receipt:
        if hooks is None:
            hooks = TxSubmissionHooks()
        return await submit_signed_transaction_with_escalation(
            tx,
            sign_function,
            self.signer,
            self.config,
            self.num_confirmations,
            hooks,
            deadline=self.deadline,
        )
