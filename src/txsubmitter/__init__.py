"""Reliable EVM transaction submission with gas price escalation and MPC signing."""

from txsubmitter.config import ResubmissionConfig
from txsubmitter.models import Receipt, UnsignedTransaction
from txsubmitter.resubmitter import TxSubmissionHooks
from txsubmitter.submitter import EscalatingTransactionSubmitter, TransactionSubmitter

__all__ = [
    "EscalatingTransactionSubmitter",
    "Receipt",
    "ResubmissionConfig",
    "TransactionSubmitter",
    "TxSubmissionHooks",
    "UnsignedTransaction",
]
