"""Multicast announcement of published items.

An announcement is a single UDP datagram holding the marshalled handle, i.e.
a client reference peers can call straight away.
"""

from __future__ import annotations

import contextlib
import logging
import socket
import struct
from typing import Any

from ..config import MULTICAST_GROUP, MULTICAST_PORT
from ..errors import AnnouncementError
from .rpc_serialization import dumps, loads

logger = logging.getLogger(__name__)

MAX_DATAGRAM = 65507


class Multicast:
    """Announces handles on (and listens to) a multicast group."""

    def __init__(self, group: str = MULTICAST_GROUP, port: int = MULTICAST_PORT) -> None:
        self.group = group
        self.port = port

    def announce(self, handle: Any, ttl: int) -> None:
        """Send *handle* to the group, limited to *ttl* hops. Fire and forget.

        Raises:
            AnnouncementError: If the datagram cannot be built or sent.
        """
        if not 0 <= ttl <= 255:
            raise AnnouncementError(f"TTL must be between 0 and 255, got {ttl}")
        try:
            payload = dumps(handle)
        except Exception as exc:
            raise AnnouncementError(f"Cannot marshal announcement for {handle!r}: {exc}") from exc
        if len(payload) > MAX_DATAGRAM:
            raise AnnouncementError(f"Announcement too large: {len(payload)} bytes")

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, ttl)
            sock.sendto(payload, (self.group, self.port))
        except OSError as exc:
            raise AnnouncementError(f"Cannot announce on {self.group}:{self.port}: {exc}") from exc
        finally:
            sock.close()
        logger.info("[ItemServer][Multicast] Announced %r on %s:%d (ttl=%d)", handle, self.group, self.port, ttl)

    def listen(self, timeout: float | None = None) -> Any:
        """Block until one announcement arrives and return the announced reference.

        Raises:
            TimeoutError: If *timeout* elapses first.
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            with contextlib.suppress(AttributeError, OSError):
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            sock.bind(("", self.port))
            membership = struct.pack("4sl", socket.inet_aton(self.group), socket.INADDR_ANY)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
            sock.settimeout(timeout)
            try:
                data, sender = sock.recvfrom(MAX_DATAGRAM)
            except socket.timeout as exc:
                raise TimeoutError(f"No announcement on {self.group}:{self.port} within {timeout}s") from exc
        finally:
            sock.close()
        logger.debug("Announcement from %s (%d bytes)", sender, len(data))
        return loads(data)
