import logging
import time
import uuid
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any

from txsubmitter.models import Receipt, TxResponse, UnsignedTransaction
from txsubmitter.resubmitter import TxSubmissionHooks
import txsubmitter.constants as C

log = logging.getLogger("txsubmitter.tracker")

TERMINAL_STATE = {C.SubmissionState.CONFIRMED, C.SubmissionState.FAILED, C.SubmissionState.CANCELLED}


@dataclass(slots=True)
class SubmissionRecord:
    id: str
    mode: C.SigningMode
    to: str | None
    value: int
    nonce: int | None = None
    state: C.SubmissionState = C.SubmissionState.PENDING
    attempts: list[dict[str, Any]] = field(default_factory=list)
    receipt: Receipt | None = None
    error: str | None = None
    created_at: float = field(default_factory=time.time)
    finalized_at: float | None = None

    def __str__(self):
        return f"{self.id} -- {self.mode} -- {self.state}"


class SubmissionTracker:
    """In-memory view of submissions, fed by the observability hooks.

    Everything runs on one event loop, so no locking. Nothing is persisted.
    """

    def __init__(self) -> None:
        self._records: dict[str, SubmissionRecord] = {}

    def open(self, mode: C.SigningMode, tx: UnsignedTransaction) -> SubmissionRecord:
        rec = SubmissionRecord(id=uuid.uuid4().hex, mode=mode, to=tx.to, value=tx.value, nonce=tx.nonce)
        self._records[rec.id] = rec
        log.debug("opened %s", rec)
        return rec

    def get(self, submission_id: str) -> SubmissionRecord | None:
        return self._records.get(submission_id)

    def hooks_for(self, submission_id: str) -> TxSubmissionHooks:
        rec = self._records[submission_id]

        def before_send_transaction(tx: dict[str, Any]) -> None:
            rec.attempts.append({"gas_price": tx.get("gasPrice"), "tx_hash": None, "sent_at": time.time()})
            if rec.nonce is None:
                rec.nonce = tx.get("nonce")

        def on_transaction_response(resp: TxResponse) -> None:
            # Acks can arrive out of order; pair with the oldest unacknowledged attempt at that price
            pending = [a for a in rec.attempts if a["tx_hash"] is None]
            if resp.gas_price is not None:
                pending = [a for a in pending if a["gas_price"] == resp.gas_price] or pending
            if not pending:
                log.warning("%s got an acknowledgement for %s with no attempt waiting", rec.id, resp.hash)
                return
            pending[0]["tx_hash"] = resp.hash
            log.info("%s attempt %d sent as %s", rec.id, rec.attempts.index(pending[0]) + 1, resp.hash)

        return TxSubmissionHooks(
            before_send_transaction=before_send_transaction,
            on_transaction_response=on_transaction_response,
        )

    def _finalize(self, submission_id: str, state: C.SubmissionState, **fields) -> None:
        rec = self._records[submission_id]
        if rec.state in TERMINAL_STATE:
            log.debug("%s already final, ignoring %s", rec, state)
            return
        rec.state = state
        rec.finalized_at = time.time()
        for k, v in fields.items():
            setattr(rec, k, v)

    def mark_confirmed(self, submission_id: str, receipt: Receipt) -> None:
        self._finalize(submission_id, C.SubmissionState.CONFIRMED, receipt=receipt)

    def mark_failed(self, submission_id: str, error: BaseException) -> None:
        self._finalize(submission_id, C.SubmissionState.FAILED, error=f"{error.__class__.__name__}: {error}")

    def mark_cancelled(self, submission_id: str) -> None:
        self._finalize(submission_id, C.SubmissionState.CANCELLED)

    def snapshot(self, submission_id: str) -> dict[str, Any]:
        rec = self._records.get(submission_id)
        if not rec:
            return {}
        out = asdict(rec)
        out["mode"] = rec.mode.value
        out["state"] = rec.state.value
        return out

    def snapshot_all(self, *, open_only: bool = False) -> list[dict[str, Any]]:
        return [
            self.snapshot(sid)
            for sid, rec in self._records.items()
            if not (open_only and rec.state in TERMINAL_STATE)
        ]

    def snapshot_stats(self) -> dict[str, Any]:
        by_state = Counter(rec.state.value for rec in self._records.values())
        attempts = sum(len(rec.attempts) for rec in self._records.values())
        return {"total_tracked": len(self._records), "by_state": dict(by_state), "attempts": attempts}
