"""Process-wide name registry.

There is exactly one registry per process. It is created on first use from an
explicit :class:`~pyitemserver.config.TransportConfig` and then lives until the
process exits; its port is shared by every item the process publishes.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any

from ..config import TransportConfig
from ..errors import NotBoundError, RegistryCreationError
from .remote_handle import RemoteHandle
from .rpc_protocol import RegistryServer

logger = logging.getLogger(__name__)


class Registry:
    """Name table mapping symbolic names to remote handles.

    Use :meth:`ensure_created` rather than the constructor; it guarantees a
    single instance per process.
    """

    _instance: Registry | None = None
    _lock = threading.Lock()

    def __init__(self, config: TransportConfig) -> None:
        self.config = config
        self._table_lock = threading.Lock()
        self._bindings: dict[str, RemoteHandle] = {}
        self._exports: dict[str, RemoteHandle] = {}
        # id() is stable here because every handle keeps its item alive.
        self._handles_by_item: dict[int, RemoteHandle] = {}

        host, port = config.bind_address()
        try:
            self._server = RegistryServer((host, port), self)
        except OSError as exc:
            raise RegistryCreationError(host, port, exc) from exc
        config.note_bound_port(self._server.port)
        self._server.start()

    @classmethod
    def ensure_created(cls, config: TransportConfig) -> Registry:
        """Return the process registry, creating it from *config* if needed.

        Raises:
            RegistryCreationError: If the listening endpoint cannot be opened.
        """
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls(config)
                    logger.info(
                        "[ItemServer][Registry] Listening on %s:%d",
                        config.current_server_host(),
                        config.current_server_port(),
                    )
                    return cls._instance
        if config is not cls._instance.config:
            logger.debug("Registry already exists; ignoring %r", config)
        return cls._instance

    @classmethod
    def get(cls) -> Registry | None:
        """Get the process registry. Returns None if none was created yet."""
        return cls._instance

    @classmethod
    def shutdown_instance(cls) -> None:
        """Close the process registry and forget it (for testing/cleanup)."""
        with cls._lock:
            instance, cls._instance = cls._instance, None
        if instance is not None:
            instance.close()

    @property
    def address(self) -> tuple[str, int]:
        return (self.config.current_server_host(), self._server.port)

    def export(self, item: Any) -> RemoteHandle:
        """Return the handle for *item*, wrapping it on first use."""
        with self._table_lock:
            handle = self._handles_by_item.get(id(item))
            if handle is not None and handle.item is item:
                return handle
            handle = RemoteHandle(
                item,
                uuid.uuid4().hex,
                self.config.current_client_host(),
                self.config.current_client_port(),
            )
            self._handles_by_item[id(item)] = handle
            self._exports[handle.object_id] = handle
        logger.debug("Exported %r", handle)
        return handle

    def exported(self, object_id: str) -> RemoteHandle:
        with self._table_lock:
            handle = self._exports.get(object_id)
        if handle is None:
            raise ValueError(f"Object ID {object_id} not exported by this registry")
        return handle

    def rebind(self, name: str, handle: RemoteHandle) -> None:
        """Bind *handle* under *name*, replacing any previous binding."""
        with self._table_lock:
            self._bindings[name] = handle
            self._exports.setdefault(handle.object_id, handle)
        logger.debug("Bound %r under %r", handle, name)

    def lookup(self, name: str) -> RemoteHandle:
        with self._table_lock:
            handle = self._bindings.get(name)
        if handle is None:
            raise NotBoundError(name)
        return handle

    def names(self) -> list[str]:
        with self._table_lock:
            return sorted(self._bindings)

    def close(self) -> None:
        self._server.stop()
        logger.debug("Registry on port %d closed", self._server.port)
