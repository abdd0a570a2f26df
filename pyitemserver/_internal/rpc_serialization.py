"""
Marshalling Layer & Wire Message Types.

This module contains:
1. Wire message TypedDicts exchanged with the registry server
2. The mobile code policy (accept_proxies / proxies_accepted)
3. dumps/loads and the gzip-packed variant read by the resolver
4. MarshalledObject, the deep-copied container handed to set_proxy()
"""

from __future__ import annotations

import gzip
import io
import logging
import pickle
import sys
import threading
from pathlib import Path
from typing import Any, Literal, TypedDict

from ..errors import MobileCodeRejectedError

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"

# ---------------------------------------------------------------------------
# Wire Messages
# ---------------------------------------------------------------------------


class LookupRequest(TypedDict):
    kind: Literal["lookup"]
    name: str


class ListRequest(TypedDict):
    kind: Literal["list"]


class CallRequest(TypedDict):
    kind: Literal["call"]
    object_id: str
    method: str
    args: tuple[Any, ...]
    kwargs: dict[str, Any]


class RPCResponse(TypedDict):
    kind: Literal["response"]
    result: Any
    error: str | None
    error_type: str | None
    traceback: str | None

# ---------------------------------------------------------------------------
# Mobile Code Policy
# ---------------------------------------------------------------------------

_policy_lock = threading.Lock()
_accept_mobile_code = False


def accept_proxies() -> None:
    """Allow unmarshalling to import code this process has not loaded yet.

    Disabled by default. Hosting mobile code can overload or compromise the
    process, so enable it only in a trusted environment. This switch decides
    whether new modules may be imported; it does not make pickle safe against
    hostile peers. It governs values received from peers only: files and URLs
    named by the operator are loaded with ``trusted=True`` and may use any
    installed code.
    """
    global _accept_mobile_code
    with _policy_lock:
        _accept_mobile_code = True
    logger.info("[ItemServer][Policy] Mobile code acceptance enabled")


def reject_proxies() -> None:
    """Restore the default policy (used by tests)."""
    global _accept_mobile_code
    with _policy_lock:
        _accept_mobile_code = False


def proxies_accepted() -> bool:
    return _accept_mobile_code


class _PolicyUnpickler(pickle.Unpickler):
    """Unpickler that will not import new modules unless mobile code is accepted."""

    def find_class(self, module: str, name: str) -> Any:
        if module not in sys.modules and not _accept_mobile_code:
            raise MobileCodeRejectedError(
                f"Refusing to load {module}.{name}: module is not loaded and "
                "mobile code acceptance is disabled (see accept_proxies())"
            )
        return super().find_class(module, name)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def dumps(obj: Any) -> bytes:
    return pickle.dumps(obj, protocol=pickle.HIGHEST_PROTOCOL)


def loads(data: bytes, trusted: bool = False) -> Any:
    """Unmarshal *data*.

    Untrusted data (anything a peer sent) goes through the mobile code policy.
    Trusted data may import any module installed locally.
    """
    if trusted:
        return pickle.loads(data)
    return _PolicyUnpickler(io.BytesIO(data)).load()


def loads_packed(data: bytes, trusted: bool = False) -> Any:
    """Unmarshal *data*, inflating it first when it is gzip-packed."""
    if data[:2] == GZIP_MAGIC:
        data = gzip.decompress(data)
    return loads(data, trusted=trusted)


def save_item(item: Any, path: str | Path, compress: bool = True) -> Path:
    """Write *item* as a (by default gzip-packed) marshalled object.

    The file can be served later with a path or ``file://`` descriptor.
    """
    path = Path(path)
    data = dumps(item)
    if compress:
        data = gzip.compress(data)
    path.write_bytes(data)
    logger.debug("Saved %s to %s (%d bytes, compressed=%s)", type(item).__name__, path, len(data), compress)
    return path


class MarshalledObject:
    """A deep copy of a value, frozen in marshalled form.

    The value is pickled at construction, so later changes to the original are
    not seen and construction fails right away for values that cannot be
    marshalled. Remote handles inside the value travel as client references.
    """

    __slots__ = ("_data", "type_name")

    def __init__(self, value: Any) -> None:
        self._data = dumps(value)
        self.type_name = type(value).__name__

    def get(self) -> Any:
        """Return a fresh copy of the marshalled value."""
        return loads(self._data)

    def __getstate__(self) -> tuple[bytes, str]:
        return (self._data, self.type_name)

    def __setstate__(self, state: tuple[bytes, str]) -> None:
        self._data, self.type_name = state

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MarshalledObject):
            return NotImplemented
        return self._data == other._data

    def __hash__(self) -> int:
        return hash(self._data)

    def __repr__(self) -> str:
        return f"<MarshalledObject type={self.type_name} size={len(self._data)}>"
