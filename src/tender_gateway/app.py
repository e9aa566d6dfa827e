from __future__ import annotations

import argparse
import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Mapping, Sequence

import uvicorn
from fastapi import FastAPI, Query, Request, status
from fastapi.responses import JSONResponse

from .codec import decode_result, to_ledger_args
from .config import LedgerConfig, Role, get_ledger_config, normalize_role
from .error_text import extract_error_message
from .errors import GatewayError, ValidationError
from .models import GatewayInfo
from .session import LedgerSession, SessionFactory

_LOGGER = logging.getLogger("tender_gateway")

EVALUATE = "evaluate"
SUBMIT = "submit"

_CREATE_FIELDS = ("tenderId", "title", "department", "estimatedValue")


def _configure_logging() -> None:
    if _LOGGER.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _LOGGER.addHandler(handler)
    _LOGGER.setLevel(logging.INFO)


def _log_json(level: int, message: str, *, exc_info: bool = False, **fields: Any) -> None:
    payload = {"message": message, **fields}
    _LOGGER.log(level, json.dumps(payload, ensure_ascii=True, default=str), exc_info=exc_info)


def create_app(
    config: LedgerConfig | None = None,
    session_factory: SessionFactory | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _configure_logging()
        factory = session_factory or SessionFactory(config or get_ledger_config())
        app.state.session_factory = factory
        app.state.config = factory.config
        app.state.start_time = time.monotonic()
        yield

    app = FastAPI(title="Tender Ledger Gateway", lifespan=lifespan)

    @app.middleware("http")
    async def request_logging(request: Request, call_next):
        request_id = request.headers.get("x-request-id", "").strip() or uuid.uuid4().hex
        request.state.request_id = request_id
        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            latency_ms = int((time.monotonic() - start) * 1000)
            _log_json(
                logging.ERROR,
                "request.failed",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                latency_ms=latency_ms,
            )
            raise
        latency_ms = int((time.monotonic() - start) * 1000)
        response.headers["x-request-id"] = request_id
        _log_json(
            logging.INFO,
            "request.completed",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=latency_ms,
        )
        return response

    @app.exception_handler(ValidationError)
    async def validation_failed(request: Request, exc: ValidationError) -> JSONResponse:
        return _failure(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.get("/healthz")
    async def healthz() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/api/info")
    async def info(mode: str | None = Query(None)) -> dict[str, Any]:
        role = normalize_role(mode)
        return {"ok": True, "data": _gateway_info(app.state.config, role)}

    @app.get("/api/tenders")
    async def list_tenders(request: Request, mode: str | None = Query(None)) -> JSONResponse:
        return await _invoke(request, mode, EVALUATE, "GetAllTenders")

    @app.post("/api/tenders")
    async def create_tender(request: Request, mode: str | None = Query(None)) -> JSONResponse:
        body = await _read_body(request)
        missing = [field for field in _CREATE_FIELDS if _is_blank(body.get(field))]
        if missing:
            raise ValidationError(f"Missing fields: {', '.join(_CREATE_FIELDS)}")
        args = to_ledger_args(*(body[field] for field in _CREATE_FIELDS))
        return await _invoke(request, mode, SUBMIT, "CreateTender", args)

    @app.get("/api/tenders/{tender_id}")
    async def read_tender(request: Request, tender_id: str, mode: str | None = Query(None)) -> JSONResponse:
        return await _invoke(request, mode, EVALUATE, "ReadTender", to_ledger_args(tender_id))

    @app.post("/api/tenders/{tender_id}/publish")
    async def publish_tender(request: Request, tender_id: str, mode: str | None = Query(None)) -> JSONResponse:
        return await _invoke(request, mode, SUBMIT, "PublishTender", to_ledger_args(tender_id))

    @app.post("/api/tenders/{tender_id}/award")
    async def award_tender(request: Request, tender_id: str, mode: str | None = Query(None)) -> JSONResponse:
        body = await _read_body(request)
        awarded_to = body.get("awardedToOrg")
        if _is_blank(awarded_to):
            raise ValidationError("awardedToOrg is required")
        remarks = body.get("remarks")
        args = to_ledger_args(tender_id, awarded_to, "" if _is_blank(remarks) else remarks)
        return await _invoke(request, mode, SUBMIT, "AwardTender", args)

    @app.post("/api/tenders/{tender_id}/cancel")
    async def cancel_tender(request: Request, tender_id: str, mode: str | None = Query(None)) -> JSONResponse:
        body = await _read_body(request)
        reason = body.get("reason")
        if _is_blank(reason):
            raise ValidationError("reason is required")
        return await _invoke(request, mode, SUBMIT, "CancelTender", to_ledger_args(tender_id, reason))

    @app.get("/api/tenders/{tender_id}/audit")
    async def tender_audit(request: Request, tender_id: str, mode: str | None = Query(None)) -> JSONResponse:
        return await _invoke(request, mode, EVALUATE, "GetTenderAuditTrail", to_ledger_args(tender_id))

    return app


def _gateway_info(config: LedgerConfig, role: Role) -> GatewayInfo:
    profile = config.profile(role)
    return {
        "mode": role.value,
        "authorityMode": f"{profile.msp_id} ({profile.label})",
        "note": "Chaincode enforces: Org1 can write; Org2 can read/audit only.",
    }


async def _invoke(
    request: Request,
    mode: str | None,
    kind: str,
    transaction: str,
    args: Sequence[str] = (),
) -> JSONResponse:
    factory: SessionFactory = request.app.state.session_factory
    role = normalize_role(mode)
    session: LedgerSession | None = None
    try:
        session = await factory.open(role)
        if kind == SUBMIT:
            raw = await session.submit(transaction, args)
        else:
            raw = await session.evaluate(transaction, args)
        data = decode_result(raw)
        response = JSONResponse(content={"ok": True, "data": data})
    except Exception as exc:
        error = extract_error_message(exc, authority_msp_id=factory.config.authority.msp_id)
        if isinstance(exc, GatewayError):
            _log_json(
                logging.WARNING,
                "ledger.invoke_failed",
                request_id=getattr(request.state, "request_id", None),
                role=role.value,
                transaction=transaction,
                error_type=type(exc).__name__,
                code=getattr(exc, "code", None),
                error=error,
            )
        else:
            _log_json(
                logging.ERROR,
                "ledger.unexpected_error",
                exc_info=True,
                request_id=getattr(request.state, "request_id", None),
                role=role.value,
                transaction=transaction,
                error_type=type(exc).__name__,
            )
        return _failure(status.HTTP_403_FORBIDDEN, error)
    finally:
        if session is not None:
            await _release(session, transaction)
    return response


async def _release(session: LedgerSession, transaction: str) -> None:
    try:
        await session.close()
    except Exception:
        _log_json(
            logging.WARNING,
            "session.close_failed",
            exc_info=True,
            role=session.role.value,
            transaction=transaction,
        )


def _failure(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": error})


async def _read_body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("request body must be valid JSON") from exc
    if not isinstance(body, Mapping):
        raise ValidationError("request body must be a JSON object")
    return dict(body)


def _is_blank(value: object) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and value.strip() == ""


def main() -> None:
    args = _parse_args()
    if args.config:
        os.environ["TENDER_GATEWAY_CONFIG"] = str(args.config)
    app = create_app()
    uvicorn.run(app, host=args.host, port=args.port, reload=False)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tender-gateway")
    sub = parser.add_subparsers(dest="command", required=True)
    serve = sub.add_parser("serve")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=int(os.getenv("PORT", "3000")))
    serve.add_argument("--config", default=None)
    return parser.parse_args()


app = create_app()
