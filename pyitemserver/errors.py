"""Exception taxonomy for pyitemserver.

Registry, resolution and announcement failures are fatal to the bootstrap
sequence. Only the handshake calls made during bind are caught (and logged);
see :mod:`pyitemserver._internal.publisher`.
"""

from __future__ import annotations

import pickle


class ItemServerError(Exception):
    """Base class for all pyitemserver errors."""


class RegistryCreationError(ItemServerError):
    """The registry's listening endpoint could not be established."""

    def __init__(self, host: str, port: int, reason: object) -> None:
        super().__init__(f"Cannot create registry on {host or '*'}:{port}: {reason}")
        self.host = host
        self.port = port


class ResolutionError(ItemServerError):
    """A location descriptor could not be turned into an item.

    Attributes:
        descriptor: The descriptor that failed to resolve.
        cause: The underlying exception (also available as ``__cause__``).
    """

    def __init__(self, descriptor: str, cause: BaseException) -> None:
        super().__init__(f"Cannot resolve item from {descriptor!r}: {type(cause).__name__}: {cause}")
        self.descriptor = descriptor
        self.cause = cause


class AnnouncementError(ItemServerError):
    """The broadcast announcement could not be sent."""


class NotBoundError(ItemServerError, LookupError):
    """No handle is bound under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Name not bound: {name!r}")
        self.name = name


class RemoteInvocationError(ItemServerError):
    """A method invoked on a remote item raised on the serving side."""

    def __init__(self, remote_type: str, message: str, remote_traceback: str = "") -> None:
        super().__init__(f"Remote {remote_type}: {message}")
        self.remote_type = remote_type
        self.remote_message = message
        self.remote_traceback = remote_traceback


class MobileCodeRejectedError(pickle.UnpicklingError):
    """Unmarshalling required code this process has not agreed to load."""
