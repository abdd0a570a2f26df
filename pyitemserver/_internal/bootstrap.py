"""Startup sequence for serving a single item.

Six ordered, optional parameters (most important first):

1. where to get the primary item (default ``///main``)
2. external client host, if behind NAT
3. external client port, if behind NAT
4. internal host, if multi-homed
5. internal port
6. where to get a proxy item, handed to the primary item's ``set_item``

The primary item is bound under ``"main"``, announced over multicast and the
process is opened up to mobile code. Any failure is fatal.
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
import traceback
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any, TextIO

from ..config import ANNOUNCE_TTL, DEFAULT_DESCRIPTOR, MAIN_BINDING, StartupParams, TransportConfig
from ..interfaces import BroadcastChannel, ProxyAware
from .broadcast import Multicast
from .publisher import Publisher
from .registry import Registry
from .remote_handle import RemoteHandle
from .resolver import ItemResolver
from .rpc_serialization import accept_proxies

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"


def parse_startup_args(argv: Sequence[str] | None = None) -> StartupParams:
    parser = argparse.ArgumentParser(
        prog="pyitemserver",
        description="Serve an item under the name 'main' and announce it over multicast.",
    )
    parser.add_argument(
        "primary", nargs="?", default=None,
        help=f"where to get the item: scheme://..., /path/file, dir/mod.py:Class, module:attr or "
             f"//[host][:port]/[name] "
             f"(default {DEFAULT_DESCRIPTOR})",
    )
    parser.add_argument("external_host", nargs="?", default=None, help="external client host name, if using NAT")
    parser.add_argument("external_port", nargs="?", type=int, default=0, help="external client port, if using NAT")
    parser.add_argument("internal_host", nargs="?", default=None, help="internal host name, if multi-homed")
    parser.add_argument("internal_port", nargs="?", type=int, default=0, help="internal port for the registry")
    parser.add_argument("proxy", nargs="?", default=None, help="where to get a proxy item passed to set_item")
    ns = parser.parse_args(argv)
    return StartupParams(
        primary=ns.primary,
        external_host=ns.external_host,
        external_port=ns.external_port,
        internal_host=ns.internal_host,
        internal_port=ns.internal_port,
        proxy=ns.proxy,
    )


class Bootstrapper:
    """Runs the startup sequence with injected collaborators."""

    def __init__(
        self,
        resolver: ItemResolver | None = None,
        broadcast: BroadcastChannel | None = None,
        registry_factory: Callable[[TransportConfig], Registry] = Registry.ensure_created,
        accept_mobile_code: bool = True,
        out: TextIO | None = None,
    ) -> None:
        self.resolver = resolver or ItemResolver()
        self.broadcast = broadcast or Multicast()
        self._registry_factory = registry_factory
        self._accept_mobile_code = accept_mobile_code
        self._out = out

    def run(self, params: StartupParams) -> RemoteHandle:
        # Addressing first: published handles capture it.
        config = TransportConfig()
        config.configure(
            params.get("internal_host"),
            params.get("internal_port", 0),
            params.get("external_host"),
            params.get("external_port", 0),
        )

        descriptor = params.get("primary") or DEFAULT_DESCRIPTOR
        primary = self.resolver.resolve(descriptor)

        proxy_descriptor = params.get("proxy")
        if proxy_descriptor:
            proxy_item = self.resolver.resolve(proxy_descriptor)
            if isinstance(primary, ProxyAware):
                primary.set_item(proxy_item)
            else:
                logger.warning("Item from %s does not accept a proxy; ignoring %s", descriptor, proxy_descriptor)

        handle = Publisher(config, self._registry_factory).bind(primary, MAIN_BINDING)
        self.broadcast.announce(handle, ANNOUNCE_TTL)
        if self._accept_mobile_code:
            accept_proxies()
        self._report(descriptor, config, handle)
        return handle

    def _report(self, descriptor: str, config: TransportConfig, handle: RemoteHandle) -> None:
        registry = Registry.get()
        if registry is not None:
            local_host, local_port = registry.address
        else:
            local_host, local_port = config.current_server_host(), config.current_server_port()
        out = self._out or sys.stdout
        started = datetime.now().astimezone().strftime("%A, %B %d, %Y %H:%M:%S %Z")
        print(f"Server started: {started}", file=out)
        print(f"Serving item {descriptor} bound under name {MAIN_BINDING}", file=out)
        print(f"locally  operating on {local_host} port {local_port}", file=out)
        print(f"remotely operating on {handle.host} port {handle.port}", file=out)
        out.flush()
        logger.info("Serving %s as %r on %r", descriptor, MAIN_BINDING, handle)


def _configure_logging() -> None:
    level_name = os.environ.get("ITEMSERVER_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def main(argv: Sequence[str] | None = None, wait: Callable[[], Any] | None = None) -> int:
    """Process entry point. Returns the exit status.

    After a successful start the call blocks (``wait``, by default forever)
    while the registry thread serves requests.
    """
    _configure_logging()
    params = parse_startup_args(argv)
    accept_mobile_code = not os.environ.get("ITEMSERVER_REJECT_PROXIES")
    try:
        Bootstrapper(accept_mobile_code=accept_mobile_code).run(params)
    except Exception:
        traceback.print_exc(file=sys.stderr)
        return 1

    try:
        (wait or threading.Event().wait)()
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
    finally:
        Registry.shutdown_instance()
    return 0
