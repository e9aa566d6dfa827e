from __future__ import annotations

from typing import Any, Sequence


class GatewayError(Exception):
    pass


class ConfigurationError(GatewayError):
    pass


class ValidationError(GatewayError):
    pass


class DecodeError(GatewayError):
    pass


class LedgerInvocationError(GatewayError):
    """Failure reported by the ledger for an evaluate or submit call.

    ``details`` carries per-peer fragments as returned by the ledger and
    ``cause`` an optional nested ledger error.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: Sequence[Any] = (),
        cause: LedgerInvocationError | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = list(details)
        self.cause = cause
