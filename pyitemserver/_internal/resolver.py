"""Resolve location descriptors into items.

Descriptor forms, tried in this order:

- ``//[host][:port]/[name]``: look the name up in a remote registry
  (host defaults to localhost, port to 1099, name to ``proxy``). IPv6 hosts
  are written in brackets, ``//[::1]:1099/main``.
- ``scheme://...``: fetch a marshalled object (file, http, https, ftp),
  inflating it first when it is gzip-packed.
- anything else: a file holding a marshalled object; a source file and the
  attribute to take from it (``dir/mod.py:Attr``, ``dir/mod/Attr`` or
  ``dir/mod.Attr``); or, when the text is not a path, an import reference
  (``package.module:attr`` or ``package.module.attr``). Classes are
  instantiated with no arguments.

Files and URLs are named by whoever starts the server, so they are loaded as
trusted data: any installed module may be imported while unmarshalling them.
"""
from __future__ import annotations

import importlib
import importlib.util
import logging
import os
import re
import sys
import urllib.request
import zlib
from pathlib import Path
from types import ModuleType
from typing import Any, NamedTuple

from ..config import DEFAULT_DESCRIPTOR, DEFAULT_LOOKUP_NAME, DEFAULT_REGISTRY_PORT
from ..errors import ResolutionError
from .rpc_protocol import lookup_remote
from .rpc_serialization import loads_packed

logger = logging.getLogger(__name__)

_URL_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://")


class RegistryAddress(NamedTuple):
    host: str
    port: int
    name: str


def parse_registry_address(descriptor: str) -> RegistryAddress:
    """Split ``//[host][:port]/[name]`` into its parts, applying defaults.

    Raises:
        ValueError: If the descriptor is not a registry address or its port is invalid.
    """
    if not descriptor.startswith("//"):
        raise ValueError(f"Not a registry address: {descriptor!r}")
    authority, _, name = descriptor[2:].partition("/")
    if authority.startswith("["):
        host, closed, rest = authority[1:].partition("]")
        if not closed or (rest and not rest.startswith(":")):
            raise ValueError(f"Malformed bracketed host in {descriptor!r}")
        port_text = rest[1:]
    else:
        host, _, port_text = authority.partition(":")
    if port_text:
        if not port_text.isdigit():
            raise ValueError(f"Invalid registry port {port_text!r} in {descriptor!r}")
        port = int(port_text)
        if not 0 < port <= 65535:
            raise ValueError(f"Registry port out of range: {port}")
    else:
        port = DEFAULT_REGISTRY_PORT
    return RegistryAddress(host or "localhost", port, name or DEFAULT_LOOKUP_NAME)


def _take(obj: Any, attr_path: str) -> Any:
    for part in attr_path.split("."):
        obj = getattr(obj, part)
    if isinstance(obj, type):
        obj = obj()
    return obj


def _load_reference(reference: str) -> Any:
    if ":" in reference:
        module_path, attr_path = reference.split(":", 1)
    else:
        module_path, _, attr_path = reference.rpartition(".")
    if not module_path or not attr_path:
        raise ValueError(f"Not an import reference (expected 'module:attr'): {reference!r}")
    return _take(importlib.import_module(module_path), attr_path)


def _source_reference(descriptor: str) -> tuple[Path, str] | None:
    """Find the existing source file and attribute path a descriptor names, if any."""
    file_part, colon, attr = descriptor.rpartition(":")
    if colon and file_part.endswith(".py"):
        return (Path(file_part), attr) if Path(file_part).is_file() and attr else None

    head, _, tail = descriptor.replace(os.sep, "/").rpartition("/")
    if not tail:
        return None
    if head:
        candidate = Path(head + ".py")
        if candidate.is_file():
            return candidate, tail
    stem, dot, attr = tail.partition(".")
    if dot and attr:
        candidate = Path(head, stem + ".py") if head else Path(stem + ".py")
        if candidate.is_file():
            return candidate, attr
    return None


def _load_source(path: Path) -> ModuleType:
    """Import a source file, reusing the module if this file was loaded before."""
    path = path.resolve()
    name = path.stem
    existing = sys.modules.get(name)
    if existing is not None:
        existing_file = getattr(existing, "__file__", None)
        if existing_file and Path(existing_file).resolve() == path:
            return existing
        name = f"_itemserver_unit_{path.stem}_{zlib.crc32(str(path).encode()):08x}"
        if name in sys.modules:
            return sys.modules[name]

    spec = importlib.util.spec_from_file_location(name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load {path} as a module")
    module = importlib.util.module_from_spec(spec)
    sys.modules[name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        del sys.modules[name]
        raise
    logger.debug("Loaded source unit %s as module %s", path, name)
    return module


class ItemResolver:
    """Turns descriptors into loadable items."""

    def resolve(self, descriptor: str | None = None) -> Any:
        """Resolve *descriptor* (default ``///main``) into an item.

        Raises:
            ResolutionError: Carrying the descriptor and the underlying cause.
        """
        descriptor = descriptor or DEFAULT_DESCRIPTOR
        try:
            if descriptor.startswith("//"):
                item = self._from_registry(descriptor)
            elif _URL_RE.match(descriptor):
                item = self._from_url(descriptor)
            else:
                item = self._from_path(descriptor)
        except Exception as exc:
            raise ResolutionError(descriptor, exc) from exc
        logger.info("[ItemServer][Resolver] Resolved %s from %s", type(item).__name__, descriptor)
        return item

    def _from_registry(self, descriptor: str) -> Any:
        address = parse_registry_address(descriptor)
        logger.debug("Looking up %r in registry %s:%d", address.name, address.host, address.port)
        return lookup_remote(address.host, address.port, address.name)

    def _from_url(self, descriptor: str) -> Any:
        with urllib.request.urlopen(descriptor) as response:
            data = response.read()
        logger.debug("Fetched %d bytes from %s", len(data), descriptor)
        return loads_packed(data, trusted=True)

    def _from_path(self, descriptor: str) -> Any:
        path = Path(descriptor)
        if path.is_file():
            return loads_packed(path.read_bytes(), trusted=True)
        source = _source_reference(descriptor)
        if source is not None:
            source_path, attr_path = source
            return _take(_load_source(source_path), attr_path)
        if path.is_absolute() or os.sep in descriptor or "/" in descriptor or ".py:" in descriptor:
            raise FileNotFoundError(f"No marshalled object or source file at {descriptor}")
        return _load_reference(descriptor)
