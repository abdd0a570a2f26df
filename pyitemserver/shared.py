"""Base class for items published through pyitemserver."""

import logging
import threading
from typing import Any, final

from ._internal.rpc_serialization import MarshalledObject

logger = logging.getLogger(__name__)


class ItemBase:
    """Convenience base implementing both bind-time capabilities.

    Items do not need to inherit from this class; the publisher probes for
    ``start_thread``/``set_proxy``/``set_item`` structurally.
    """

    def __init__(self) -> None:
        self.proxy: Any = None
        self.item: Any = None
        self._thread: threading.Thread | None = None

    def run(self) -> None:
        """Main processing loop. Override to do background work after start_thread()."""

    @final
    def start_thread(self) -> None:
        """Start :meth:`run` on a daemon thread, once, if a subclass overrides it."""
        if self._thread is not None or type(self).run is ItemBase.run:
            return
        self._thread = threading.Thread(target=self.run, name=f"{type(self).__name__}-main", daemon=True)
        self._thread.start()

    def set_proxy(self, value: Any) -> None:
        """Store the marshalled proxy handed over at bind time."""
        self.proxy = value

    def set_item(self, value: Any) -> None:
        """Store the reference to the item this object fronts for."""
        self.item = value

    def get_proxy(self) -> Any:
        """A fresh copy of the proxy, suitable for handing to a client."""
        if isinstance(self.proxy, MarshalledObject):
            return self.proxy.get()
        return self.proxy

    def __getstate__(self) -> dict[str, Any]:
        state = self.__dict__.copy()
        state["_thread"] = None
        return state
