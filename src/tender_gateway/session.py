from __future__ import annotations

from typing import Any, Callable, Protocol, Sequence

from .config import LedgerConfig, Role
from .identity import Identity, load_identity
from .ledger import LedgerConnection
from .transport import open_channel


class Channel(Protocol):
    async def close(self) -> None:
        ...


class Connection(Protocol):
    async def evaluate(self, transaction: str, args: Sequence[str]) -> bytes:
        ...

    async def submit(self, transaction: str, args: Sequence[str]) -> bytes:
        ...

    def close(self) -> None:
        ...


IdentityLoader = Callable[[str, Any], Identity]
ChannelOpener = Callable[[str, Any, str], Channel]
Connector = Callable[..., Connection]


class LedgerSession:
    """Role-scoped identity + channel + connection for one request."""

    def __init__(self, role: Role, channel: Channel, connection: Connection) -> None:
        self.role = role
        self.channel = channel
        self.connection = connection

    async def evaluate(self, transaction: str, args: Sequence[str] = ()) -> bytes:
        return await self.connection.evaluate(transaction, list(args))

    async def submit(self, transaction: str, args: Sequence[str] = ()) -> bytes:
        return await self.connection.submit(transaction, list(args))

    async def close(self) -> None:
        try:
            self.connection.close()
        finally:
            await self.channel.close()


class SessionFactory:
    def __init__(
        self,
        config: LedgerConfig,
        *,
        identity_loader: IdentityLoader = load_identity,
        channel_opener: ChannelOpener = open_channel,
        connector: Connector = LedgerConnection,
    ) -> None:
        self._config = config
        self._identity_loader = identity_loader
        self._channel_opener = channel_opener
        self._connector = connector

    @property
    def config(self) -> LedgerConfig:
        return self._config

    async def open(self, role: Role) -> LedgerSession:
        profile = self._config.profile(role)
        # Identity first: a credential failure must not leave a channel behind.
        identity = self._identity_loader(profile.msp_id, profile.user_msp_path)
        channel = self._channel_opener(profile.peer_endpoint, profile.tls_cert_path, profile.peer_host_alias)
        try:
            connection = self._connector(
                channel,
                identity,
                channel_name=self._config.channel_name,
                chaincode_name=self._config.chaincode_name,
                deadlines=self._config.deadlines,
            )
        except BaseException:
            await channel.close()
            raise
        return LedgerSession(role, channel, connection)
