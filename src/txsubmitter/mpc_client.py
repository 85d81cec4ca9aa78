# txsubmitter/mpc_client.py
"""
Client for the external MPC signing service.

The service signs asynchronously:
1. ``GET  /mpc/latest``             - current MPC key (address) used for signing
2. ``POST /mpc/propose-mpc-sign``   - propose a signing request, returns an id
3. ``GET  /mpc/sign/{id}``          - poll until ``result.signed_tx`` appears

Bodies are parsed as JSON and validated against the models below. Anything
else (empty, non-JSON, wrong shape) is treated as "no result" and logged.
"""
import asyncio
import json
import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from txsubmitter.codec import base64_to_hex, remove_hex_leading_zero
import txsubmitter.constants as C

log = logging.getLogger("txsubmitter.mpc")


class MpcKeyInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    mpc_address: str = Field(min_length=1)


class MpcSignResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    signed_tx: str | None = None


class _LatestMpcResponse(BaseModel):
    result: MpcKeyInfo


class _SignResponse(BaseModel):
    result: MpcSignResult | None = None


def _parse_body(text: str, what: str) -> dict[str, Any] | None:
    if not text or not text.strip():
        return None
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        log.warning("%s: discarding non-JSON response (%s): %.200r", what, e, text)
        return None
    if not isinstance(obj, dict):
        log.warning("%s: expected a JSON object, got %s", what, type(obj).__name__)
        return None
    return obj


class MpcClient:
    """Stateless HTTP client for the MPC signing service.

    Parameters
    ----------
    url:
        Base URL of the service, e.g. ``"http://mpc:8080"``.
    client:
        Optional shared ``httpx.AsyncClient``. When omitted every call opens
        and closes its own client. The caller owns a client it passes in.
    timeout:
        Per-request timeout in seconds when no client is supplied.
    """

    def __init__(self, url: str, client: httpx.AsyncClient | None = None, timeout: float = C.RPC_TIMEOUT):
        self.url = url.rstrip("/")
        self._client = client
        self._timeout = timeout

    async def _request(self, method: str, path: str, payload: dict | None = None) -> str:
        url = f"{self.url}{path}"
        if self._client is not None:
            resp = await self._client.request(method, url, json=payload)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as http:
                resp = await http.request(method, url, json=payload)
        # 4xx bodies carry protocol-level {"error": ...} objects; only server failures are transport errors
        if resp.is_server_error:
            resp.raise_for_status()
        return resp.text

    async def get_latest_mpc(self) -> MpcKeyInfo | None:
        text = await self._request("GET", "/mpc/latest")
        log.debug("get_latest_mpc resp %s", text)
        obj = _parse_body(text, "get_latest_mpc")
        if obj is None:
            return None
        try:
            return _LatestMpcResponse.model_validate(obj).result
        except ValidationError:
            log.debug("get_latest_mpc: no mpc_address in response")
            return None

    async def propose_mpc_sign(self, data: dict[str, Any]) -> dict[str, Any] | None:
        text = await self._request("POST", "/mpc/propose-mpc-sign", data)
        log.info("propose_mpc_sign resp %s", text)
        obj = _parse_body(text, "propose_mpc_sign")
        if obj is None or obj.get("error"):
            return None
        return obj

    async def get_mpc_sign(self, sign_id: str) -> str:
        text = await self._request("GET", f"/mpc/sign/{sign_id}")
        log.debug("get_mpc_sign %s resp %s", sign_id, text)
        obj = _parse_body(text, "get_mpc_sign")
        if obj is None or obj.get("error"):
            return ""
        try:
            result = _SignResponse.model_validate(obj).result
        except ValidationError:
            return ""
        if result is None or not result.signed_tx:
            return ""
        return result.signed_tx

    async def get_mpc_sign_with_timeout(self, sign_id: str, max_timeout: int, interval: int) -> str:
        """Poll ``get_mpc_sign`` until a signature appears or ``max_timeout`` ms pass.

        The first poll happens immediately, then one every ``interval`` ms.
        Returns ``""`` on timeout. Transport errors are not retried.
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        polls = 0
        while True:
            signed_tx = await self.get_mpc_sign(sign_id)
            polls += 1
            elapsed_ms = (loop.time() - started) * 1000
            if signed_tx:
                log.info("MPC signature for %s after %d polls (%.0f ms)", sign_id, polls, elapsed_ms)
                return signed_tx
            if elapsed_ms >= max_timeout:
                log.warning("MPC signature for %s not ready after %d ms (%d polls)", sign_id, max_timeout, polls)
                return signed_tx
            await asyncio.sleep(interval / 1000)

    @staticmethod
    def remove_hex_leading_zero(hex_str: str, keep_one_zero: bool = False) -> str:
        return remove_hex_leading_zero(hex_str, keep_one_zero)

    @staticmethod
    def base64_to_hex(base64_string: str) -> str:
        return base64_to_hex(base64_string)
