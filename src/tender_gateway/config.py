"""
Ledger configuration loader for the tender gateway.

Resolves the two organization profiles (procuring authority and auditor),
the channel/chaincode names and the per-call deadlines. Config is loaded
once at startup and immutable during runtime.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

from .errors import ConfigurationError


__all__ = [
    "Role",
    "OrgProfile",
    "CallDeadlines",
    "LedgerConfig",
    "normalize_role",
    "load_ledger_config",
    "get_ledger_config",
    "reset_config_cache",
]

DEFAULT_FABRIC_BASE = Path("..") / "fabric-samples" / "test-network"
DEFAULT_CHANNEL = "mychannel"
DEFAULT_CHAINCODE = "tender"
DEFAULT_PEER_ENDPOINT = "localhost:7051"
DEFAULT_PEER_HOST_ALIAS = "peer0.org1.example.com"


class Role(str, Enum):
    AUTHORITY = "authority"
    AUDITOR = "auditor"


def normalize_role(value: object) -> Role:
    if value is None:
        return Role.AUTHORITY
    if str(value).strip().lower() == Role.AUDITOR.value:
        return Role.AUDITOR
    return Role.AUTHORITY


@dataclass(frozen=True)
class OrgProfile:
    msp_id: str
    user_msp_path: Path
    peer_endpoint: str
    peer_host_alias: str
    tls_cert_path: Path
    label: str


@dataclass(frozen=True)
class CallDeadlines:
    evaluate_s: int = 5
    endorse_s: int = 15
    submit_s: int = 15
    commit_status_s: int = 60


@dataclass(frozen=True)
class LedgerConfig:
    """Immutable ledger configuration."""

    channel_name: str
    chaincode_name: str
    authority: OrgProfile
    auditor: OrgProfile
    deadlines: CallDeadlines

    def profile(self, role: Role) -> OrgProfile:
        if role is Role.AUDITOR:
            return self.auditor
        return self.authority


def load_ledger_config(path: Path | None = None) -> LedgerConfig:
    """
    Load ledger configuration.

    Args:
        path: Optional JSON config file. Defaults to TENDER_GATEWAY_CONFIG,
            or to the Fabric test-network layout when neither is set.

    Returns:
        Immutable LedgerConfig.

    Raises:
        ConfigurationError: If the config file is missing or invalid.
    """
    config_path = path or _resolve_config_path()
    raw: Mapping[str, Any] = {}
    if config_path is not None:
        if not config_path.exists():
            raise ConfigurationError(f"Ledger config not found: {config_path}")
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Ledger config is not valid JSON: {exc}") from exc
        if not isinstance(raw, Mapping):
            raise ConfigurationError("Ledger config must be an object")
        schema_version = raw.get("schema_version")
        if schema_version != "1":
            raise ConfigurationError(f"Unsupported schema_version: {schema_version}")
    return _parse_config(raw)


def _resolve_config_path() -> Path | None:
    env_path = os.environ.get("TENDER_GATEWAY_CONFIG", "").strip()
    if env_path:
        return Path(env_path)
    return None


def _fabric_base() -> Path:
    raw = os.getenv("TENDER_GATEWAY_FABRIC_BASE", "").strip()
    base = Path(raw) if raw else DEFAULT_FABRIC_BASE
    return base.resolve()


def _default_profiles(base: Path) -> dict[str, dict[str, Any]]:
    org1 = base / "organizations" / "peerOrganizations" / "org1.example.com"
    org2 = base / "organizations" / "peerOrganizations" / "org2.example.com"
    peer_tls = org1 / "peers" / "peer0.org1.example.com" / "tls" / "ca.crt"
    return {
        "authority": {
            "mspId": "Org1MSP",
            "userMspPath": org1 / "users" / "User1@org1.example.com" / "msp",
            "peerEndpoint": DEFAULT_PEER_ENDPOINT,
            "peerHostAlias": DEFAULT_PEER_HOST_ALIAS,
            "tlsCertPath": peer_tls,
            "label": "Procuring Authority",
        },
        "auditor": {
            "mspId": "Org2MSP",
            "userMspPath": org2 / "users" / "User1@org2.example.com" / "msp",
            "peerEndpoint": DEFAULT_PEER_ENDPOINT,
            "peerHostAlias": DEFAULT_PEER_HOST_ALIAS,
            "tlsCertPath": peer_tls,
            "label": "Auditor / Read-only",
        },
    }


def _parse_config(raw: Mapping[str, Any]) -> LedgerConfig:
    channel = raw.get("channel", DEFAULT_CHANNEL)
    if not isinstance(channel, str) or channel.strip() == "":
        raise ConfigurationError("channel must be a non-empty string")
    chaincode = raw.get("chaincode", DEFAULT_CHAINCODE)
    if not isinstance(chaincode, str) or chaincode.strip() == "":
        raise ConfigurationError("chaincode must be a non-empty string")

    organizations = raw.get("organizations", {})
    if not isinstance(organizations, Mapping):
        raise ConfigurationError("organizations must be an object")
    defaults = _default_profiles(_fabric_base())
    authority = _parse_profile("authority", organizations.get("authority", {}), defaults["authority"])
    auditor = _parse_profile("auditor", organizations.get("auditor", {}), defaults["auditor"])

    deadlines_raw = raw.get("deadlines", {})
    if not isinstance(deadlines_raw, Mapping):
        raise ConfigurationError("deadlines must be an object")
    base_deadlines = CallDeadlines()
    deadlines = CallDeadlines(
        evaluate_s=_deadline(deadlines_raw, "evaluate_s", "TENDER_GATEWAY_EVALUATE_TIMEOUT_S", base_deadlines.evaluate_s),
        endorse_s=_deadline(deadlines_raw, "endorse_s", "TENDER_GATEWAY_ENDORSE_TIMEOUT_S", base_deadlines.endorse_s),
        submit_s=_deadline(deadlines_raw, "submit_s", "TENDER_GATEWAY_SUBMIT_TIMEOUT_S", base_deadlines.submit_s),
        commit_status_s=_deadline(
            deadlines_raw, "commit_status_s", "TENDER_GATEWAY_COMMIT_TIMEOUT_S", base_deadlines.commit_status_s
        ),
    )

    env_channel = os.getenv("TENDER_GATEWAY_CHANNEL", "").strip()
    env_chaincode = os.getenv("TENDER_GATEWAY_CHAINCODE", "").strip()
    return LedgerConfig(
        channel_name=env_channel or channel.strip(),
        chaincode_name=env_chaincode or chaincode.strip(),
        authority=authority,
        auditor=auditor,
        deadlines=deadlines,
    )


def _parse_profile(name: str, raw: object, defaults: Mapping[str, Any]) -> OrgProfile:
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"organizations.{name} must be an object")
    merged = {**defaults, **raw}
    for key in ("mspId", "peerEndpoint", "peerHostAlias", "label"):
        value = merged.get(key)
        if not isinstance(value, str) or value.strip() == "":
            raise ConfigurationError(f"organizations.{name}.{key} must be a non-empty string")
    for key in ("userMspPath", "tlsCertPath"):
        value = merged.get(key)
        if not isinstance(value, (str, Path)) or str(value).strip() == "":
            raise ConfigurationError(f"organizations.{name}.{key} must be a path")

    # Env overrides (explicit)
    peer_endpoint = os.getenv("TENDER_GATEWAY_PEER_ENDPOINT", "").strip() or merged["peerEndpoint"].strip()
    host_alias = os.getenv("TENDER_GATEWAY_PEER_HOST_ALIAS", "").strip() or merged["peerHostAlias"].strip()
    return OrgProfile(
        msp_id=merged["mspId"].strip(),
        user_msp_path=Path(merged["userMspPath"]),
        peer_endpoint=peer_endpoint,
        peer_host_alias=host_alias,
        tls_cert_path=Path(merged["tlsCertPath"]),
        label=merged["label"].strip(),
    )


def _deadline(raw: Mapping[str, Any], key: str, env_name: str, default: int) -> int:
    env_value = _read_int_env(env_name)
    if env_value is not None:
        return env_value
    value = raw.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(f"deadlines.{key} must be a positive integer")
    return value


def _read_int_env(name: str) -> int | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


@lru_cache(maxsize=1)
def get_ledger_config() -> LedgerConfig:
    """
    Get cached ledger configuration.

    Loads once at first call, immutable thereafter.
    """
    return load_ledger_config()


def reset_config_cache() -> None:
    """Reset config cache. Only for testing."""
    get_ledger_config.cache_clear()
