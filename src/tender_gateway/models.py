from __future__ import annotations

from typing import Any, TypedDict


class Tender(TypedDict, total=False):
    tenderId: str
    title: str
    department: str
    estimatedValue: float
    status: str
    createdAt: str
    createdByOrg: str
    updatedAt: str
    awardedToOrg: str


class AuditActor(TypedDict):
    mspId: str
    clientId: str


class AuditEntry(TypedDict, total=False):
    action: str
    timestamp: str
    txId: str
    actor: AuditActor
    details: dict[str, Any]


class GatewayInfo(TypedDict):
    mode: str
    authorityMode: str
    note: str
