from __future__ import annotations

import json
from typing import Any

from .errors import DecodeError


def canonical_bytes(value: Any) -> bytes:
    try:
        text = json.dumps(
            value,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=True,
            allow_nan=False,
        )
    except (TypeError, ValueError) as exc:
        raise ValueError(f"non-canonical payload: {exc}") from exc
    return text.encode("utf-8")


def to_ledger_arg(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def to_ledger_args(*values: Any) -> list[str]:
    return [to_ledger_arg(value) for value in values]


def decode_result(raw: bytes | bytearray | memoryview) -> Any:
    try:
        text = bytes(raw).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError(f"ledger response is not UTF-8: {exc}") from exc
    text = text.replace("\0", "").strip()
    try:
        return json.loads(text, parse_constant=_reject_constant)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"ledger response is not JSON: {exc.msg}") from exc


def _reject_constant(name: str) -> Any:
    raise DecodeError(f"ledger response contains non-finite number {name}")
