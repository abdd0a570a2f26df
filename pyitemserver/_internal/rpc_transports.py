"""
RPC Transport Layer.

PickleSocketTransport frames marshalled messages over a stream socket.
"""

from __future__ import annotations

import contextlib
import logging
import socket
import struct
import threading
from typing import Any

from .rpc_serialization import dumps, loads

logger = logging.getLogger(__name__)

MAX_MESSAGE_SIZE = 100 * 1024 * 1024  # 100MB sanity limit


class PickleSocketTransport:
    """Transport using stream sockets and length-prefixed marshalled frames.

    Frames are unmarshalled under the mobile code policy, so a peer cannot make
    this process import modules it has not loaded unless proxies are accepted.
    """

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._lock = threading.Lock()
        self._recv_lock = threading.Lock()

    @classmethod
    def connect(cls, host: str, port: int) -> PickleSocketTransport:
        sock = socket.create_connection((host, port))
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        return cls(sock)

    def send(self, obj: Any) -> None:
        """Marshal with a length prefix."""
        try:
            data = dumps(obj)
        except Exception as e:
            type_name = type(obj).__name__
            logger.error(
                "Cannot marshal object:\n"
                "  Type: %s\n"
                "  Error: %s",
                type_name,
                e,
            )
            raise TypeError(f"Cannot marshal {type_name}: {e}") from e

        msg = struct.pack(">I", len(data)) + data
        with self._lock:
            self._sock.sendall(msg)

    def recv(self) -> Any:
        """Receive a length-prefixed marshalled message."""
        with self._recv_lock:
            raw_len = self._recvall(4)
            if not raw_len or len(raw_len) < 4:
                raise ConnectionError("Socket closed or incomplete length header")
            msg_len = struct.unpack(">I", raw_len)[0]
            if msg_len > MAX_MESSAGE_SIZE:
                raise ValueError(f"Message too large: {msg_len} bytes")
            data = self._recvall(msg_len)
            if len(data) < msg_len:
                raise ConnectionError(f"Incomplete message: got {len(data)}/{msg_len} bytes")
            return loads(data)

    def _recvall(self, n: int) -> bytes:
        """Receive exactly n bytes from the socket."""
        chunks = []
        remaining = n
        while remaining > 0:
            chunk = self._sock.recv(min(remaining, 65536))
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def close(self) -> None:
        """Close the underlying socket."""
        with contextlib.suppress(Exception):
            self._sock.close()
