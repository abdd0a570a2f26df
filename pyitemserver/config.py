"""Configuration types and defaults for pyitemserver."""

from __future__ import annotations

import logging
import socket
from typing import TypedDict

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_PORT = 1099
"""Port assumed by ``//host/name`` descriptors that omit one."""

DEFAULT_LOOKUP_NAME = "proxy"
"""Name assumed by ``//host:port/`` descriptors that omit one."""

DEFAULT_DESCRIPTOR = "///main"
"""Descriptor used by the bootstrap when no primary location is given."""

MAIN_BINDING = "main"
"""Name the bootstrap always binds the primary item under."""

ANNOUNCE_TTL = 16
"""Hop limit for the startup announcement."""

MULTICAST_GROUP = "224.0.23.12"
MULTICAST_PORT = 1198


class TransportSettings(TypedDict):
    """Snapshot of the addressing a :class:`TransportConfig` holds."""

    internal_host: str | None
    """Host (interface) the registry listens on; ``None`` means all interfaces."""

    internal_port: int
    """Port the registry listens on; ``0`` picks a free port when it is created."""

    external_host: str | None
    """Host remote clients should use to reach us (NAT); defaults to the server host."""

    external_port: int
    """Port remote clients should use to reach us (NAT); defaults to the server port."""


class StartupParams(TypedDict, total=False):
    """The six ordered, optional bootstrap parameters."""

    primary: str | None
    """Where to resolve the primary item from (default ``///main``)."""

    external_host: str | None
    external_port: int
    internal_host: str | None
    internal_port: int

    proxy: str | None
    """Where to resolve the proxy item handed to the primary's ``set_item``."""


class TransportConfig:
    """Addressing used by the registry and captured into published handles.

    A registry is always created from an explicit instance of this class, so
    the configuration necessarily precedes the first bind.
    """

    def __init__(
        self,
        internal_host: str | None = None,
        internal_port: int = 0,
        external_host: str | None = None,
        external_port: int = 0,
    ) -> None:
        self._bound_port: int | None = None
        self.configure(internal_host, internal_port, external_host, external_port)

    @classmethod
    def from_settings(cls, settings: TransportSettings) -> TransportConfig:
        return cls(
            settings["internal_host"],
            settings["internal_port"],
            settings["external_host"],
            settings["external_port"],
        )

    def configure(
        self,
        internal_host: str | None,
        internal_port: int,
        external_host: str | None,
        external_port: int,
    ) -> None:
        """Set the internal (listening) and external (advertised) addressing."""
        for label, port in (("internal", internal_port), ("external", external_port)):
            if not 0 <= port <= 65535:
                raise ValueError(f"{label} port out of range: {port}")
        self.internal_host = internal_host or None
        self.internal_port = internal_port
        self.external_host = external_host or None
        self.external_port = external_port
        logger.debug(
            "Transport configured: internal=%s:%d external=%s:%d",
            internal_host, internal_port, external_host, external_port,
        )

    def settings(self) -> TransportSettings:
        return TransportSettings(
            internal_host=self.internal_host,
            internal_port=self.internal_port,
            external_host=self.external_host,
            external_port=self.external_port,
        )

    def bind_address(self) -> tuple[str, int]:
        """Address to listen on; an empty host means every interface."""
        return (self.internal_host or "", self.internal_port)

    def note_bound_port(self, port: int) -> None:
        """Record the port actually bound (differs from the configured one when that was 0)."""
        self._bound_port = port

    def current_server_host(self) -> str:
        return self.internal_host or socket.gethostname()

    def current_server_port(self) -> int:
        if self._bound_port is not None:
            return self._bound_port
        return self.internal_port

    def current_client_host(self) -> str:
        return self.external_host or self.current_server_host()

    def current_client_port(self) -> int:
        return self.external_port or self.current_server_port()

    def __repr__(self) -> str:
        return (
            f"<TransportConfig server={self.current_server_host()}:{self.current_server_port()} "
            f"client={self.current_client_host()}:{self.current_client_port()}>"
        )
