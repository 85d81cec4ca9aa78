"""Test the submitter facade and delegated MPC signing."""

from __future__ import annotations

import base64
import json
from unittest import IsolatedAsyncioTestCase, TestCase

import httpx

from chain_fakes import FakeNode, FakeProvider, FakeSigner
from txsubmitter.config import ResubmissionConfig
from txsubmitter.errors import MpcProposalRejected, MpcSignTimeout, MpcUnavailable, SubmissionTimeout
from txsubmitter.models import UnsignedTransaction
from txsubmitter.mpc_client import MpcClient, MpcKeyInfo
from txsubmitter.mpc_signer import MpcSigner, build_sign_request
from txsubmitter.provider import JsonRpcProvider
from txsubmitter.resubmitter import TxSubmissionHooks
from txsubmitter.submitter import EscalatingTransactionSubmitter
import txsubmitter.constants as C

MPC_ADDRESS = "0x" + "33" * 20
SIGNED = "0xf86b078504a817c80082520894" + "11" * 20 + "0180"
CONFIG = ResubmissionConfig(resubmission_timeout=30, max_gas_price_in_gwei=3, gas_retry_increment=1)


class TestEscalatingTransactionSubmitter(IsolatedAsyncioTestCase):
    async def test_pins_nonce_before_first_round(self):
        provider = FakeProvider(confirm_from=3)
        signer = FakeSigner(provider, nonce=11)
        submitter = EscalatingTransactionSubmitter(signer, CONFIG, num_confirmations=2)
        receipt = await submitter.submit_transaction(UnsignedTransaction(to=MPC_ADDRESS, value=5))
        self.assertEqual(receipt.confirmations, 2)
        self.assertEqual([tx["nonce"] for tx in signer.sent_txs], [11, 11, 11])
        self.assertEqual([tx["value"] for tx in signer.sent_txs], [5, 5, 5])

    async def test_explicit_nonce_kept(self):
        signer = FakeSigner(FakeProvider(), nonce=11)
        submitter = EscalatingTransactionSubmitter(signer, CONFIG, num_confirmations=1)
        await submitter.submit_transaction(UnsignedTransaction(to=MPC_ADDRESS, nonce=3))
        self.assertEqual(signer.sent_txs[0]["nonce"], 3)

    async def test_hooks_passed_through(self):
        sent = []
        signer = FakeSigner(FakeProvider())
        submitter = EscalatingTransactionSubmitter(signer, CONFIG, num_confirmations=1)
        await submitter.submit_transaction(
            UnsignedTransaction(to=MPC_ADDRESS), TxSubmissionHooks(before_send_transaction=sent.append)
        )
        self.assertEqual(sent, signer.sent_txs)

    async def test_signed_submission(self):
        provider = FakeProvider(confirm_from=2)
        submitter = EscalatingTransactionSubmitter(FakeSigner(provider), CONFIG, num_confirmations=1)

        async def sign(tx):
            return SIGNED

        await submitter.submit_signed_transaction(UnsignedTransaction(to=MPC_ADDRESS), sign)
        self.assertEqual(provider.sent, [SIGNED, SIGNED])

    async def test_deadline_applies(self):
        signer = FakeSigner(FakeProvider(confirm_from=1000))
        submitter = EscalatingTransactionSubmitter(signer, CONFIG, num_confirmations=1, deadline=0.1)
        with self.assertRaises(SubmissionTimeout):
            await submitter.submit_transaction(UnsignedTransaction(to=MPC_ADDRESS))


class TestBuildSignRequest(TestCase):
    def test_quantities_without_leading_zeros(self):
        key = MpcKeyInfo(mpc_address=MPC_ADDRESS, mpc_id="m-1")
        tx = {"to": "0x" + "11" * 20, "value": 0, "data": "0xabcd", "gasPrice": 10**9, "nonce": "0x0007",
              "gas": 21000, "chainId": 1}
        req = build_sign_request("sid", key, tx)
        self.assertEqual(req["id"], "sid")
        self.assertEqual(req["mpc_id"], "m-1")
        self.assertEqual(req["sign_data"], {
            "from": MPC_ADDRESS,
            "to": "0x" + "11" * 20,
            "data": "0xabcd",
            "nonce": "0x7",
            "gasPrice": "0x3b9aca00",
            "gas": "0x5208",
            "value": "0x0",
            "chainId": "0x1",
        })

    def test_no_mpc_id(self):
        req = build_sign_request("sid", MpcKeyInfo(mpc_address=MPC_ADDRESS), {"to": None})
        self.assertNotIn("mpc_id", req)


class MpcService:
    def __init__(self, signed_tx: str = SIGNED, propose: dict | None = None, latest: dict | None = None):
        self.signed_tx = signed_tx
        self.propose = {"id": "accepted"} if propose is None else propose
        self.latest = {"result": {"mpc_address": MPC_ADDRESS, "mpc_id": "m-1"}} if latest is None else latest
        self.proposals: list[dict] = []
        self.polls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/mpc/latest":
            return httpx.Response(200, json=self.latest)
        if path == "/mpc/propose-mpc-sign":
            self.proposals.append(json.loads(request.content))
            return httpx.Response(200, json=self.propose)
        self.polls += 1
        assert path == f"/mpc/sign/{self.proposals[-1]['id']}"
        if self.polls < 2:
            return httpx.Response(200, json={"result": {}})
        return httpx.Response(200, json={"result": {"signed_tx": self.signed_tx}})


class TestMpcSigner(IsolatedAsyncioTestCase):
    def make_signer(self, service: MpcService, node: FakeNode | None = None, max_timeout: int = 2_000) -> MpcSigner:
        self.node = node or FakeNode()
        mpc_http = httpx.AsyncClient(transport=httpx.MockTransport(service))
        rpc_http = httpx.AsyncClient(transport=httpx.MockTransport(self.node))
        self.addAsyncCleanup(mpc_http.aclose)
        self.addAsyncCleanup(rpc_http.aclose)
        provider = JsonRpcProvider("http://node.test", client=rpc_http, poll_interval=0.01)
        return MpcSigner(MpcClient("http://mpc.test", client=mpc_http), provider, max_timeout=max_timeout, interval=10)

    async def test_sign_transaction(self):
        service = MpcService()
        signer = self.make_signer(service)
        signed = await signer.sign_transaction({"to": "0x" + "11" * 20, "value": 1, "data": "0x", "gasPrice": 10**9})
        self.assertEqual(signed, SIGNED)
        sign_data = service.proposals[0]["sign_data"]
        self.assertEqual(sign_data["from"], MPC_ADDRESS)
        self.assertEqual(sign_data["nonce"], "0x7")
        self.assertEqual(sign_data["chainId"], "0x539")
        self.assertEqual(sign_data["gas"], "0x5208")
        self.assertEqual(service.proposals[0]["mpc_id"], "m-1")
        self.assertEqual(service.polls, 2)
        self.assertIn(("eth_getTransactionCount", [MPC_ADDRESS, "pending"]), self.node.calls)

    async def test_base64_payload_converted(self):
        raw = bytes.fromhex(SIGNED[2:])
        signer = self.make_signer(MpcService(signed_tx=base64.b64encode(raw).decode()))
        self.assertEqual(await signer.sign_transaction({"to": None, "nonce": 1, "gas": 1, "chainId": 1}), SIGNED)

    async def test_unprefixed_hex_payload_kept(self):
        # Length is a multiple of 4, so it would also decode as base64
        bare = SIGNED[2:].upper() + "00"
        self.assertEqual(len(bare) % 4, 0)
        signer = self.make_signer(MpcService(signed_tx=bare))
        signed = await signer.sign_transaction({"to": None, "nonce": 1, "gas": 1, "chainId": 1})
        self.assertEqual(signed, SIGNED + "00")

    async def test_no_key(self):
        signer = self.make_signer(MpcService(latest={"result": {}}))
        with self.assertRaises(MpcUnavailable):
            await signer.sign_transaction({"to": None})

    async def test_proposal_rejected(self):
        signer = self.make_signer(MpcService(propose={"error": "busy"}))
        with self.assertRaises(MpcProposalRejected):
            await signer.sign_transaction({"to": None, "nonce": 1, "gas": 1, "chainId": 1})

    async def test_sign_timeout(self):
        signer = self.make_signer(MpcService(signed_tx=""), max_timeout=50)
        with self.assertRaises(MpcSignTimeout):
            await signer.sign_transaction({"to": None, "nonce": 1, "gas": 1, "chainId": 1})

    async def test_submit_through_mpc(self):
        service = MpcService()
        node = FakeNode(eth_getTransactionReceipt={
            "transactionHash": "0x" + "cd" * 32,
            "blockNumber": "0x10",
            "blockHash": "0x" + "ef" * 32,
            "status": "0x1",
        })
        mpc_signer = self.make_signer(service, node)
        submitter = EscalatingTransactionSubmitter(mpc_signer, CONFIG, num_confirmations=1)
        receipt = await submitter.submit_signed_transaction(
            UnsignedTransaction(to="0x" + "11" * 20, value=1), mpc_signer.sign_transaction
        )
        self.assertEqual(receipt.block_number, 16)
        self.assertEqual(len(service.proposals), 1)
        self.assertIn(("eth_sendRawTransaction", [SIGNED]), node.calls)
        self.assertEqual(service.proposals[0]["sign_data"]["gasPrice"], "0x3b9aca00")

    async def test_mpc_signer_as_signer(self):
        signer = self.make_signer(MpcService())
        self.assertEqual(await signer.get_nonce(), 7)
        self.assertEqual(await signer.get_gas_price(), C.GWEI)
        resp = await signer.send_transaction({"to": None, "nonce": 1, "gas": 1, "chainId": 1, "gasPrice": 1})
        self.assertEqual(resp.raw_transaction, SIGNED)
