"""Remote handles for published items.

RemoteHandle is the server-side wrapper around one local item. It never
travels: marshalling a handle produces a RemoteItemRef carrying only the
object_id, type_name and the client-facing address, and the receiving process
calls back through that reference.
"""
from __future__ import annotations

import logging
import threading
from typing import Any

from ..errors import RemoteInvocationError
from .rpc_serialization import CallRequest
from .rpc_transports import PickleSocketTransport

logger = logging.getLogger(__name__)


class RemoteHandle:
    """Stable, transport-addressable wrapper around exactly one item.

    Attributes:
        item: The wrapped object.
        object_id: Identifier of the item within the serving registry.
        type_name: The item's type name (for debugging/logging).
        host: Host remote clients use to reach the registry.
        port: Port remote clients use to reach the registry.
    """

    def __init__(self, item: Any, object_id: str, host: str, port: int) -> None:
        self.item = item
        self.object_id = object_id
        self.type_name = type(item).__name__
        self.host = host
        self.port = port

    def invoke(self, method: str, *args: Any, **kwargs: Any) -> Any:
        """Call *method* on the wrapped item, as a remote caller would."""
        if method.startswith("_"):
            raise AttributeError(f"{method} is not a valid method")
        func = getattr(self.item, method)
        if not callable(func):
            raise AttributeError(f"{method} is not callable on {self.type_name}")
        return func(*args, **kwargs)

    def ref(self) -> RemoteItemRef:
        return RemoteItemRef(self.object_id, self.type_name, self.host, self.port)

    def __reduce__(self) -> tuple[Any, ...]:
        return (RemoteItemRef, (self.object_id, self.type_name, self.host, self.port))

    def __repr__(self) -> str:
        return f"<RemoteHandle id={self.object_id} type={self.type_name} at {self.host}:{self.port}>"


class RemoteItemRef:
    """Client-side reference to an item published by some registry.

    Method calls are forwarded over a lazily opened connection, either through
    :meth:`invoke` or by plain attribute access (``ref.greet("x")``).
    """

    # Preserve module identity for pickling compatibility
    __module__ = "pyitemserver._internal.remote_handle"

    def __init__(self, object_id: str, type_name: str, host: str, port: int) -> None:
        self.object_id = object_id
        self.type_name = type_name
        self.host = host
        self.port = port
        self._transport: PickleSocketTransport | None = None
        self._lock = threading.Lock()

    def invoke(self, method: str, *args: Any, **kwargs: Any) -> Any:
        request = CallRequest(kind="call", object_id=self.object_id, method=method, args=args, kwargs=kwargs)
        with self._lock:
            if self._transport is None:
                self._transport = PickleSocketTransport.connect(self.host, self.port)
            try:
                self._transport.send(request)
                response = self._transport.recv()
            except (OSError, EOFError):
                self._transport.close()
                self._transport = None
                raise
        if response.get("error") is not None:
            raise RemoteInvocationError(
                response.get("error_type") or "Exception", response["error"], response.get("traceback") or ""
            )
        return response["result"]

    # A remote item may implement any capability, so a reference exposes them
    # all and lets the serving side decide.
    def start_thread(self) -> None:
        self.invoke("start_thread")

    def set_proxy(self, value: Any) -> None:
        self.invoke("set_proxy", value)

    def set_item(self, value: Any) -> None:
        self.invoke("set_item", value)

    def close(self) -> None:
        with self._lock:
            if self._transport is not None:
                self._transport.close()
                self._transport = None

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)

        def method(*args: Any, **kwargs: Any) -> Any:
            return self.invoke(name, *args, **kwargs)

        method.__name__ = name
        return method

    def __reduce__(self) -> tuple[Any, ...]:
        return (RemoteItemRef, (self.object_id, self.type_name, self.host, self.port))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RemoteItemRef):
            return NotImplemented
        return (self.object_id, self.host, self.port) == (other.object_id, other.host, other.port)

    def __hash__(self) -> int:
        return hash((self.object_id, self.host, self.port))

    def __repr__(self) -> str:
        return f"<RemoteObject id={self.object_id} type={self.type_name} at {self.host}:{self.port}>"
