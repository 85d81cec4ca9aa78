import asyncio
import logging
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable

import httpx
from fastapi import APIRouter, FastAPI, HTTPException, Request
from pydantic import BaseModel, NonNegativeInt

from txsubmitter.config import Settings, load_config
from txsubmitter.errors import MpcError, MpcSignTimeout, SubmissionError, SubmissionTimeout
from txsubmitter.models import UnsignedTransaction
from txsubmitter.mpc_client import MpcClient
from txsubmitter.mpc_signer import MpcSigner
from txsubmitter.provider import JsonRpcProvider, LocalSigner
from txsubmitter.submitter import EscalatingTransactionSubmitter
from txsubmitter.tracker import SubmissionTracker
import txsubmitter.constants as C

log = logging.getLogger("txsubmitter.app")


@dataclass
class Components:
    provider: JsonRpcProvider
    mpc_client: MpcClient
    mpc_signer: MpcSigner
    mpc_submitter: EscalatingTransactionSubmitter
    local_submitter: EscalatingTransactionSubmitter | None = None


async def _probe_rpc(
    provider: JsonRpcProvider, max_retries: int = C.PROBE_RETRIES, retry_delay: float = C.PROBE_RETRY_DELAY
) -> None:
    """Call ``eth_chainId`` with retries until the node answers."""
    for attempt in range(1, max_retries + 1):
        try:
            chain_id = await provider.get_chain_id()
            log.info("RPC endpoint responding, chain id %s (attempt %s/%s)", chain_id, attempt, max_retries)
            return
        except (httpx.HTTPError, SubmissionError) as e:
            if attempt < max_retries:
                log.info("RPC not ready yet (attempt %s/%s): %s - retrying in %ss...",
                         attempt, max_retries, e.__class__.__name__, retry_delay)
                await asyncio.sleep(retry_delay)
            else:
                log.error("RPC failed after %s attempts", max_retries)
                raise


@asynccontextmanager
async def build_components(settings: Settings) -> AsyncIterator[Components]:
    async with httpx.AsyncClient(timeout=settings.rpc_timeout) as http:
        provider = JsonRpcProvider(settings.rpc_url, client=http)
        await _probe_rpc(provider)

        mpc_client = MpcClient(settings.mpc.url, client=http)
        mpc_signer = MpcSigner(mpc_client, provider, settings.mpc.max_timeout, settings.mpc.interval)
        local_submitter = None
        if settings.private_key:
            signer = LocalSigner(provider, settings.private_key)
            local_submitter = EscalatingTransactionSubmitter(signer, settings.resubmission, settings.num_confirmations)
            log.info("Local signing enabled for %s", signer.address)
        else:
            log.info("No private key configured, only MPC signing is available")

        yield Components(
            provider=provider,
            mpc_client=mpc_client,
            mpc_signer=mpc_signer,
            mpc_submitter=EscalatingTransactionSubmitter(mpc_signer, settings.resubmission, settings.num_confirmations),
            local_submitter=local_submitter,
        )


class SubmitReq(BaseModel):
    to: str | None = None
    value: NonNegativeInt = 0
    data: str = "0x"
    nonce: NonNegativeInt | None = None
    gas: NonNegativeInt | None = None
    mode: C.SigningMode = C.SigningMode.LOCAL
    wait: bool = False


class SubmitResp(BaseModel):
    id: str
    state: str
    tx_hash: str | None = None
    block_number: int | None = None


def _status_for(e: Exception) -> int:
    if isinstance(e, (SubmissionTimeout, MpcSignTimeout)):
        return 504
    return 502


def create_app(
    settings: Settings | None = None,
    components: Callable[[Settings], AbstractAsyncContextManager[Components]] = build_components,
) -> FastAPI:
    settings = settings or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.tracker = SubmissionTracker()
        app.state.tasks = {}
        async with components(settings) as comp:
            app.state.components = comp
            log.info("Ready to accept submissions (rpc=%s mpc=%s)", settings.rpc_url, settings.mpc.url)
            try:
                yield
            finally:
                # Abandon whatever is still in flight; nothing survives a restart
                tasks = list(app.state.tasks.values())
                log.info("Shutting down, cancelling %d in-flight submissions...", len(tasks))
                for t in tasks:
                    t.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
        log.info("Shutdown complete")

    app = FastAPI(
        title="Transaction Resubmitter",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "Transactions", "description": "Submit and cancel transactions"},
            {"name": "MPC", "description": "MPC signing service"},
            {"name": "State", "description": "In-flight and finished submissions"},
        ],
    )

    r_transaction = APIRouter(prefix="/transaction", tags=["Transactions"])
    r_mpc = APIRouter(prefix="/mpc", tags=["MPC"])
    r_state = APIRouter(prefix="/state", tags=["State"])

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @r_mpc.get("/latest")
    async def mpc_latest(request: Request):
        try:
            key = await request.app.state.components.mpc_client.get_latest_mpc()
        except httpx.HTTPError as e:
            raise HTTPException(status_code=502, detail=f"MPC service unreachable: {e}") from e
        if key is None:
            raise HTTPException(status_code=404, detail="No MPC key published")
        return key.model_dump()

    @r_transaction.post("/submit", response_model=SubmitResp)
    async def submit(req: SubmitReq, request: Request):
        state = request.app.state
        comp: Components = state.components
        tracker: SubmissionTracker = state.tracker
        tx = UnsignedTransaction(to=req.to, value=req.value, data=req.data, nonce=req.nonce, gas=req.gas)

        if req.mode == C.SigningMode.LOCAL:
            if comp.local_submitter is None:
                raise HTTPException(status_code=400, detail="Local signing is not configured")
            rec = tracker.open(req.mode, tx)
            coro = comp.local_submitter.submit_transaction(tx, tracker.hooks_for(rec.id))
        else:
            rec = tracker.open(req.mode, tx)
            coro = comp.mpc_submitter.submit_signed_transaction(
                tx, comp.mpc_signer.sign_transaction, tracker.hooks_for(rec.id)
            )

        task = asyncio.create_task(coro, name=f"submission-{rec.id}")
        state.tasks[rec.id] = task

        def _finished(t: asyncio.Task, sid: str = rec.id) -> None:
            state.tasks.pop(sid, None)
            if t.cancelled():
                tracker.mark_cancelled(sid)
                log.info("submission %s cancelled", sid)
            elif t.exception() is not None:
                tracker.mark_failed(sid, t.exception())
                log.error("submission %s failed: %s", sid, t.exception())
            else:
                tracker.mark_confirmed(sid, t.result())

        task.add_done_callback(_finished)

        if not req.wait:
            return SubmitResp(id=rec.id, state=rec.state.value)

        try:
            receipt = await asyncio.shield(task)
        except (SubmissionError, MpcError, httpx.HTTPError) as e:
            raise HTTPException(status_code=_status_for(e), detail=f"{e.__class__.__name__}: {e}") from e
        except asyncio.CancelledError:
            if task.cancelled():
                raise HTTPException(status_code=409, detail="Submission cancelled")
            raise
        return SubmitResp(
            id=rec.id,
            state=C.SubmissionState.CONFIRMED.value,
            tx_hash=receipt.transaction_hash,
            block_number=receipt.block_number,
        )

    @r_transaction.delete("/{submission_id}")
    async def cancel(submission_id: str, request: Request):
        task = request.app.state.tasks.get(submission_id)
        if task is None:
            raise HTTPException(status_code=404, detail="No in-flight submission with that id")
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return request.app.state.tracker.snapshot(submission_id)

    @r_state.get("/submissions")
    def submissions(request: Request, open_only: bool = False):
        return request.app.state.tracker.snapshot_all(open_only=open_only)

    @r_state.get("/submissions/{submission_id}")
    def submission(submission_id: str, request: Request):
        snap = request.app.state.tracker.snapshot(submission_id)
        if not snap:
            raise HTTPException(status_code=404, detail="Unknown submission")
        return snap

    @r_state.get("/stats")
    def stats(request: Request):
        return request.app.state.tracker.snapshot_stats()

    app.include_router(r_transaction)
    app.include_router(r_mpc)
    app.include_router(r_state)
    return app

