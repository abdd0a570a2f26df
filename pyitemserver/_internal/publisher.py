"""Bind logic: publish an item (optionally paired with a proxy) by name.

The handshake calls made during bind (``set_item`` on the proxy, then
``start_thread`` and ``set_proxy`` on the item) are advisory. Each one is run
through :func:`_handshake`, which logs and records a failure instead of raising,
so a misbehaving item or proxy cannot block publication. Registry creation and
the final rebind are not isolated: if either fails, bind fails.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypedDict

from ..config import TransportConfig
from ..interfaces import ProxyAware, Startable
from .registry import Registry
from .remote_handle import RemoteHandle
from .rpc_serialization import MarshalledObject

logger = logging.getLogger(__name__)


class HandshakeOutcome(TypedDict):
    step: str
    ok: bool
    error: BaseException | None


def _handshake(step: str, call: Callable[[], Any]) -> HandshakeOutcome:
    try:
        call()
    except Exception as exc:
        logger.warning("[ItemServer][Publisher] %s failed, continuing with bind: %s", step, exc)
        logger.debug("Handshake failure detail for %s", step, exc_info=True)
        return HandshakeOutcome(step=step, ok=False, error=exc)
    return HandshakeOutcome(step=step, ok=True, error=None)


class Publisher:
    """Publishes items in the process registry.

    Args:
        config: Addressing the registry is created from (first bind only).
        registry_factory: Get-or-create accessor for the process registry.
    """

    def __init__(
        self,
        config: TransportConfig,
        registry_factory: Callable[[TransportConfig], Registry] = Registry.ensure_created,
    ) -> None:
        self.config = config
        self._registry_factory = registry_factory
        self.last_handshake: list[HandshakeOutcome] = []

    def bind(self, item: Any, name: str, proxy: Any = None) -> RemoteHandle:
        """Publish *item* under *name* and return its handle.

        When *proxy* is given it is the companion sent to clients: it learns the
        item's handle before the item is told about the proxy. Without a proxy the
        item receives a marshalled reference to its own handle, which it may
        distribute itself.

        Raises:
            RegistryCreationError: If the registry does not exist and cannot be created.
        """
        registry = self._registry_factory(self.config)

        if isinstance(item, RemoteHandle):
            handle = item
            target = item.item
        else:
            handle = registry.export(item)
            target = item

        outcomes: list[HandshakeOutcome] = []
        has_proxy = proxy is not None
        if has_proxy and isinstance(proxy, ProxyAware):
            outcomes.append(_handshake("proxy.set_item", lambda: proxy.set_item(handle)))
        if isinstance(target, Startable):
            outcomes.append(_handshake("item.start_thread", target.start_thread))
        if isinstance(target, ProxyAware):
            companion = proxy if has_proxy else handle
            outcomes.append(_handshake("item.set_proxy", lambda: target.set_proxy(MarshalledObject(companion))))
        self.last_handshake = outcomes

        registry.rebind(name, handle)
        logger.info("[ItemServer][Publisher] Bound %s under %r", handle.type_name, name)
        return handle
