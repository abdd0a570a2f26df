"""
pyitemserver - Publish Python objects for remote invocation under symbolic names.

pyitemserver lets a process expose local (or previously received) objects in a
process-wide registry so that remote peers can look them up and call them.
Items may optionally take part in a startup handshake and be paired with a
proxy object that is handed to clients.

Key Features:
    - One lazily created registry per process, shared by every published item
    - Dual-mode bind: plain item, or item paired with a proxy
    - Best-effort startup handshake (start_thread / set_proxy / set_item)
    - Items resolved from URLs, files, import references or remote registries
    - Multicast announcement of the served item

Basic Usage:
    >>> import pyitemserver
    >>> class Greeter:
    ...     def greet(self, name):
    ...         return f"hello {name}"
    >>> config = pyitemserver.TransportConfig("127.0.0.1", 0)
    >>> handle = pyitemserver.bind(Greeter(), "greeter", config=config)
    >>> ref = pyitemserver.ItemResolver().resolve(f"//127.0.0.1:{handle.port}/greeter")
    >>> ref.greet("world")
    'hello world'

Serve an item from the command line with ``python -m pyitemserver``.
"""

from typing import Any, Optional

from ._internal.bootstrap import Bootstrapper, main, parse_startup_args
from ._internal.broadcast import Multicast
from ._internal.publisher import HandshakeOutcome, Publisher
from ._internal.registry import Registry
from ._internal.remote_handle import RemoteHandle, RemoteItemRef
from ._internal.resolver import ItemResolver, parse_registry_address
from ._internal.rpc_serialization import MarshalledObject, accept_proxies, proxies_accepted, save_item
from .config import StartupParams, TransportConfig, TransportSettings
from .errors import (
    AnnouncementError,
    ItemServerError,
    MobileCodeRejectedError,
    NotBoundError,
    RegistryCreationError,
    RemoteInvocationError,
    ResolutionError,
)
from .interfaces import BroadcastChannel, Named, ProxyAware, Startable
from .shared import ItemBase

__version__ = "0.1.0"

__all__ = [
    "AnnouncementError",
    "Bootstrapper",
    "BroadcastChannel",
    "HandshakeOutcome",
    "ItemBase",
    "ItemResolver",
    "ItemServerError",
    "MarshalledObject",
    "MobileCodeRejectedError",
    "Multicast",
    "Named",
    "NotBoundError",
    "ProxyAware",
    "Publisher",
    "RegistryCreationError",
    "Registry",
    "RemoteHandle",
    "RemoteInvocationError",
    "RemoteItemRef",
    "ResolutionError",
    "Startable",
    "StartupParams",
    "TransportConfig",
    "TransportSettings",
    "accept_proxies",
    "bind",
    "main",
    "parse_registry_address",
    "parse_startup_args",
    "proxies_accepted",
    "save_item",
]


def bind(item: Any, name: str, proxy: Any = None, *, config: Optional[TransportConfig] = None) -> RemoteHandle:
    """Publish *item* under *name* in the process registry.

    ``config`` only matters for the first bind, which creates the registry.
    """
    return Publisher(config or TransportConfig()).bind(item, name, proxy)
