"""
Human-readable cause extraction for failed ledger calls.

Ledger errors arrive as nested structures (per-peer details, wrapped causes,
transport metadata). The walk collects every text fragment it can find and
turns the auditor write rejection into a role-oriented message; anything else
reports the first fragment.
"""
from __future__ import annotations

import re
from typing import Any, Mapping

from .errors import LedgerInvocationError

ACCESS_DENIED_MARKER = "Access denied"
READ_ONLY_MESSAGE = "Access denied: Auditor role is read-only and cannot perform this action."
FALLBACK_MESSAGE = "Operation failed"

_ERROR_PREFIX = re.compile(r"^Error:\s*", re.IGNORECASE)
_TEXT_FIELDS = ("message", "details", "cause")
_SKIPPED_KEYS = {"metadata"}


def extract_error_message(err: Any, *, authority_msp_id: str) -> str:
    if err is None:
        return FALLBACK_MESSAGE
    texts: list[str] = []
    _walk(err, texts, set())

    if is_read_only_rejection(texts, authority_msp_id=authority_msp_id):
        return READ_ONLY_MESSAGE

    first = next((text for text in texts if text and text.strip()), None)
    if first is None:
        return FALLBACK_MESSAGE
    return _ERROR_PREFIX.sub("", first)


def is_read_only_rejection(texts: list[str], *, authority_msp_id: str) -> bool:
    combined = " | ".join(texts)
    return ACCESS_DENIED_MARKER in combined and authority_msp_id in combined


def _walk(value: Any, texts: list[str], seen: set[int]) -> None:
    if value is None:
        return
    if isinstance(value, str):
        texts.append(value)
        return
    if id(value) in seen:
        return
    seen.add(id(value))

    if isinstance(value, LedgerInvocationError):
        texts.append(value.message)
        _walk(value.details, texts, seen)
        _walk(value.cause, texts, seen)
        return
    if isinstance(value, BaseException):
        texts.append(str(value))
        _walk(value.__cause__, texts, seen)
        return
    if isinstance(value, (list, tuple)):
        for item in value:
            _walk(item, texts, seen)
        return
    if isinstance(value, Mapping):
        for field in _TEXT_FIELDS:
            if isinstance(value.get(field), str):
                texts.append(value[field])
        for key, item in value.items():
            if key in _SKIPPED_KEYS or (key in _TEXT_FIELDS and isinstance(item, str)):
                continue
            _walk(item, texts, seen)
