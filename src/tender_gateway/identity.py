"""
Signing identity loader.

Reads an organization user's MSP directory (``signcerts/`` + ``keystore/``)
and binds the private key to a signer. Nothing is cached: every call re-reads
the filesystem so rotated credentials are picked up by the next session.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

from .errors import ConfigurationError

Signer = Callable[[bytes], bytes]

# Curve orders for low-S normalization.
_CURVE_ORDERS = {
    "secp256r1": 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551,
    "secp384r1": int(
        "FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFF"
        "C7634D81F4372DDF581A0DB248B0A77AECEC196ACCC52973",
        16,
    ),
}


@dataclass(frozen=True)
class Identity:
    msp_id: str
    credentials: bytes
    signer: Signer


def load_identity(msp_id: str, user_msp_path: Path | str) -> Identity:
    msp_path = Path(user_msp_path)
    cert_pem = _read_first_file(msp_path / "signcerts", suffix=".pem", what="certificate")
    key_pem = _read_first_file(msp_path / "keystore", suffix=None, what="private key")
    try:
        private_key = serialization.load_pem_private_key(key_pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise ConfigurationError(f"Unreadable private key in {msp_path / 'keystore'}: {exc}") from exc
    return Identity(msp_id=msp_id, credentials=cert_pem, signer=new_private_key_signer(private_key))


def new_private_key_signer(private_key: object) -> Signer:
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        order = _CURVE_ORDERS.get(private_key.curve.name)

        def _sign_ec(message: bytes) -> bytes:
            der = private_key.sign(message, ec.ECDSA(hashes.SHA256()))
            if order is None:
                return der
            r, s = decode_dss_signature(der)
            if s > order // 2:
                s = order - s
            return encode_dss_signature(r, s)

        return _sign_ec
    if isinstance(private_key, ed25519.Ed25519PrivateKey):
        return private_key.sign
    raise ConfigurationError(f"Unsupported private key type: {type(private_key).__name__}")


def _read_first_file(directory: Path, *, suffix: str | None, what: str) -> bytes:
    if not directory.is_dir():
        raise ConfigurationError(f"Fabric directory not found: {directory}")
    candidates = []
    for entry in sorted(directory.iterdir()):
        if entry.name.startswith(".") or not entry.is_file():
            continue
        if suffix is not None and not entry.name.endswith(suffix):
            continue
        candidates.append(entry)
    if not candidates:
        if suffix is not None:
            raise ConfigurationError(f"No {suffix} {what} found in {directory}")
        raise ConfigurationError(f"No {what} found in {directory}")
    return candidates[0].read_bytes()
