from __future__ import annotations

import ssl
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from .codec import canonical_bytes
from .errors import ConfigurationError


@dataclass
class LedgerChannel:
    """Unconnected TLS client bound to one peer endpoint.

    The peer certificate is verified against ``host_alias`` rather than the
    dialled host, mirroring a gRPC ``ssl_target_name_override``.
    """

    client: httpx.AsyncClient
    endpoint: str
    host_alias: str

    async def post_json(self, path: str, payload: Any, *, timeout: float) -> httpx.Response:
        return await self.client.post(
            path,
            content=canonical_bytes(payload),
            headers={"content-type": "application/json", "host": self.host_alias},
            timeout=timeout,
            extensions={"sni_hostname": self.host_alias},
        )

    async def close(self) -> None:
        await self.client.aclose()


def open_channel(peer_endpoint: str, tls_cert_path: Path | str, host_alias: str) -> LedgerChannel:
    cert_path = Path(tls_cert_path)
    if not cert_path.is_file():
        raise ConfigurationError(f"Peer TLS cert not found: {cert_path}")
    try:
        ssl_context = ssl.create_default_context(cadata=cert_path.read_text(encoding="ascii"))
    except (ssl.SSLError, ValueError) as exc:
        raise ConfigurationError(f"Peer TLS cert is not a valid certificate: {cert_path}") from exc
    client = httpx.AsyncClient(base_url=f"https://{peer_endpoint}", verify=ssl_context)
    return LedgerChannel(client=client, endpoint=peer_endpoint, host_alias=host_alias)
