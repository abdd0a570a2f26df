"""Capability protocols probed at runtime by the publisher and bootstrap.

Items are not required to inherit from anything. The publisher checks these
structural protocols with ``isinstance`` and only calls what an item exposes.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Startable(Protocol):
    """An item with background processing to begin before it is published."""

    def start_thread(self) -> None:
        """Start the item's main processing activity. Called once per bind."""


@runtime_checkable
class ProxyAware(Protocol):
    """An item that accepts references to its companion proxy or item."""

    def set_proxy(self, value: Any) -> None:
        """Receive a marshalled proxy (or a marshalled reference to itself)."""

    def set_item(self, value: Any) -> None:
        """Receive a reference to the item this object fronts for."""


@runtime_checkable
class Named(Protocol):
    """A transport-addressable reference to exactly one item."""

    @property
    def object_id(self) -> str:
        """Identifier of the item within its serving registry."""

    @property
    def type_name(self) -> str:
        """Type name of the wrapped item (for logging and repr)."""


@runtime_checkable
class BroadcastChannel(Protocol):
    """Fire-and-forget announcement of a published handle."""

    def announce(self, handle: Any, ttl: int) -> None:
        """Announce *handle* to peers, limited to *ttl* network hops."""
