"""
Ledger bridge client.

Every call is a signed JSON proposal posted over the session's TLS channel:

    POST /evaluate       {proposal, signature}            -> {result}
    POST /endorse        {proposal, signature}            -> {transactionId, preparedTransaction, result}
    POST /submit         {transactionId, preparedTransaction, signature}
    POST /commit-status  {transactionId, channel, signature} -> {status, blockNumber}

Binary fields travel base64 encoded. Failed replies carry a JSON body with
``message``/``code``/``details``/``cause`` which is mapped onto
LedgerInvocationError.
"""
from __future__ import annotations

import asyncio
import base64
import hashlib
import os
from typing import Any, Mapping, Sequence

import httpx

from .codec import canonical_bytes
from .config import CallDeadlines
from .errors import LedgerInvocationError
from .identity import Identity
from .transport import LedgerChannel

COMMIT_VALID = "VALID"


class LedgerConnection:
    def __init__(
        self,
        channel: LedgerChannel,
        identity: Identity,
        *,
        channel_name: str,
        chaincode_name: str,
        deadlines: CallDeadlines,
    ) -> None:
        self._channel = channel
        self._identity = identity
        self._channel_name = channel_name
        self._chaincode_name = chaincode_name
        self._deadlines = deadlines
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def evaluate(self, transaction: str, args: Sequence[str]) -> bytes:
        proposal = self._new_proposal(transaction, args)
        reply = await self._call(
            "/evaluate",
            {"proposal": proposal, "signature": self._sign(proposal)},
            timeout=self._deadlines.evaluate_s,
        )
        return _b64_field(reply, "result")

    async def submit(self, transaction: str, args: Sequence[str]) -> bytes:
        proposal = self._new_proposal(transaction, args)
        endorsed = await self._call(
            "/endorse",
            {"proposal": proposal, "signature": self._sign(proposal)},
            timeout=self._deadlines.endorse_s,
        )
        tx_id = endorsed.get("transactionId") or proposal["txId"]
        prepared = _b64_field(endorsed, "preparedTransaction")
        result = _b64_field(endorsed, "result")

        await self._call(
            "/submit",
            {
                "transactionId": tx_id,
                "preparedTransaction": _b64(prepared),
                "signature": _b64(self._identity.signer(prepared)),
            },
            timeout=self._deadlines.submit_s,
        )

        status_request = {
            "transactionId": tx_id,
            "channel": self._channel_name,
            "identity": self._creator(),
        }
        status = await self._call(
            "/commit-status",
            {"request": status_request, "signature": self._sign(status_request)},
            timeout=self._deadlines.commit_status_s,
        )
        code = str(status.get("status", ""))
        if code != COMMIT_VALID:
            raise LedgerInvocationError(
                f"Transaction {tx_id} failed to commit with status code {code or 'UNKNOWN'}",
                code=code or None,
            )
        return result

    def close(self) -> None:
        self._closed = True

    def _creator(self) -> dict[str, str]:
        return {
            "mspId": self._identity.msp_id,
            "credentials": self._identity.credentials.decode("utf-8"),
        }

    def _new_proposal(self, transaction: str, args: Sequence[str]) -> dict[str, Any]:
        creator = self._creator()
        nonce = os.urandom(24)
        tx_id = hashlib.sha256(nonce + canonical_bytes(creator)).hexdigest()
        return {
            "channel": self._channel_name,
            "chaincode": self._chaincode_name,
            "transaction": transaction,
            "args": [str(arg) for arg in args],
            "creator": creator,
            "nonce": _b64(nonce),
            "txId": tx_id,
        }

    def _sign(self, message: Mapping[str, Any]) -> str:
        return _b64(self._identity.signer(canonical_bytes(message)))

    async def _call(self, path: str, body: Mapping[str, Any], *, timeout: float) -> dict[str, Any]:
        if self._closed:
            raise LedgerInvocationError("Ledger connection is closed", code="CLOSED")
        try:
            # Overall deadline from call time; httpx timeouts are per phase.
            resp = await asyncio.wait_for(
                self._channel.post_json(path, body, timeout=timeout),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise LedgerInvocationError(
                f"{path.lstrip('/')} deadline of {timeout}s exceeded",
                code="DEADLINE_EXCEEDED",
            ) from exc
        except httpx.HTTPError as exc:
            raise LedgerInvocationError(
                f"{path.lstrip('/')} transport error: {exc}",
                code="UNAVAILABLE",
            ) from exc
        if resp.status_code >= 400:
            raise _error_from_response(resp, path)
        try:
            data = resp.json()
        except ValueError as exc:
            raise LedgerInvocationError(f"{path.lstrip('/')} returned a non-JSON reply") from exc
        if not isinstance(data, dict):
            raise LedgerInvocationError(f"{path.lstrip('/')} returned a non-object reply")
        return data


def _error_from_response(resp: httpx.Response, path: str) -> LedgerInvocationError:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, Mapping):
        return _error_from_mapping(body, default=f"{path.lstrip('/')} failed with HTTP {resp.status_code}")
    return LedgerInvocationError(
        f"{path.lstrip('/')} failed with HTTP {resp.status_code}: {resp.text[:500]}",
        code=str(resp.status_code),
    )


def _error_from_mapping(body: Mapping[str, Any], *, default: str) -> LedgerInvocationError:
    message = body.get("message")
    code = body.get("code")
    details = body.get("details")
    cause = body.get("cause")
    nested = None
    if isinstance(cause, Mapping):
        nested = _error_from_mapping(cause, default="")
    elif isinstance(cause, str) and cause.strip():
        nested = LedgerInvocationError(cause)
    return LedgerInvocationError(
        message if isinstance(message, str) and message else default,
        code=str(code) if code is not None else None,
        details=details if isinstance(details, list) else ([details] if details else []),
        cause=nested,
    )


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _b64_field(reply: Mapping[str, Any], field: str) -> bytes:
    value = reply.get(field, "")
    if not isinstance(value, str):
        raise LedgerInvocationError(f"ledger reply field {field} must be base64 text")
    try:
        return base64.b64decode(value, validate=True)
    except ValueError as exc:
        raise LedgerInvocationError(f"ledger reply field {field} is not valid base64") from exc
