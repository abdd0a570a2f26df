"""
Registry Wire Protocol.

This module contains:
- RegistryServer (threaded listener answering lookup/list/call requests)
- lookup_remote / list_remote (client side of the registry protocol)
"""

from __future__ import annotations

import logging
import pickle
import socketserver
import threading
import traceback
from typing import TYPE_CHECKING, Any

from typing_extensions import override

from ..errors import NotBoundError, RemoteInvocationError
from .rpc_serialization import ListRequest, LookupRequest, RPCResponse
from .rpc_transports import PickleSocketTransport

if TYPE_CHECKING:
    from .registry import Registry

logger = logging.getLogger(__name__)


def _error_response(exc: BaseException, tb: str = "") -> RPCResponse:
    return RPCResponse(kind="response", result=None, error=str(exc), error_type=type(exc).__name__, traceback=tb)


class _RegistryRequestHandler(socketserver.BaseRequestHandler):
    """Serves one client connection until the peer closes it."""

    server: RegistryServer

    @override
    def handle(self) -> None:
        transport = PickleSocketTransport(self.request)
        peer = self.client_address
        logger.debug("[ItemServer][Registry] Connection from %s", peer)
        while True:
            try:
                request = transport.recv()
            except pickle.UnpicklingError as exc:
                # The whole frame was consumed, so the stream is still usable.
                logger.warning("Rejected request from %s: %s", peer, exc)
                transport.send(_error_response(exc))
                continue
            except (EOFError, OSError, ValueError):
                break
            except Exception as exc:
                logger.warning("Cannot unmarshal request from %s: %s", peer, exc)
                transport.send(_error_response(exc))
                continue

            response = self.server.dispatch(request)
            try:
                transport.send(response)
            except TypeError as serialize_exc:
                logger.error("Response marshalling failed for %s: %s", peer, serialize_exc)
                transport.send(_error_response(serialize_exc))
            except OSError:
                break
        logger.debug("[ItemServer][Registry] Connection from %s closed", peer)


class RegistryServer(socketserver.ThreadingTCPServer):
    """Listening endpoint of a :class:`Registry`.

    Every connection is served on its own daemon thread, so handles may be
    invoked concurrently by many peers.
    """

    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, address: tuple[str, int], registry: Registry) -> None:
        super().__init__(address, _RegistryRequestHandler)
        self.registry = registry
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        return self.server_address[1]

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self.serve_forever,
            kwargs={"poll_interval": 0.1},
            name=f"itemserver-registry-{self.port}",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        self.shutdown()
        self.server_close()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def dispatch(self, request: Any) -> RPCResponse:
        try:
            kind = request["kind"]
            if kind == "lookup":
                result: Any = self.registry.lookup(request["name"])
            elif kind == "list":
                result = self.registry.names()
            elif kind == "call":
                handle = self.registry.exported(request["object_id"])
                result = handle.invoke(request["method"], *request["args"], **request["kwargs"])
            else:
                # Fail loud on unknown request kinds rather than silently ignoring
                raise ValueError(f"Unknown request kind: {kind!r}. Valid kinds are: 'lookup', 'list', 'call'.")
        except Exception as exc:
            logger.exception("Registry dispatch failed for %s", _describe(request))
            return _error_response(exc, traceback.format_exc())
        return RPCResponse(kind="response", result=result, error=None, error_type=None, traceback=None)


def _describe(request: Any) -> str:
    if not isinstance(request, dict):
        return type(request).__name__
    return f"{request.get('kind')}:{request.get('name') or request.get('object_id')}.{request.get('method', '')}"


def _round_trip(host: str, port: int, request: Any) -> Any:
    transport = PickleSocketTransport.connect(host, port)
    try:
        transport.send(request)
        return transport.recv()
    finally:
        transport.close()


def lookup_remote(host: str, port: int, name: str) -> Any:
    """Fetch the reference bound under *name* in the registry at host:port."""
    response = _round_trip(host, port, LookupRequest(kind="lookup", name=name))
    if response["error"] is not None:
        if response["error_type"] == NotBoundError.__name__:
            raise NotBoundError(name)
        raise RemoteInvocationError(response["error_type"] or "Exception", response["error"])
    return response["result"]


def list_remote(host: str, port: int) -> list[str]:
    """Names bound in the registry at host:port."""
    response = _round_trip(host, port, ListRequest(kind="list"))
    if response["error"] is not None:
        raise RemoteInvocationError(response["error_type"] or "Exception", response["error"])
    return list(response["result"])
