"""Registry lifecycle management utilities.

This module provides a context manager for isolating the process registry,
particularly useful in testing scenarios where each test needs a fresh
listening endpoint.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager


@contextmanager
def registry_scope() -> Generator[None, None, None]:
    """Context manager for an isolated registry scope.

    A registry created inside the scope is closed on exit and the previous
    registry (if any) is restored. State persists into the scope: a registry
    that already exists on entry is still the process registry inside it.

    Example:
        >>> from pyitemserver._internal.singleton_context import registry_scope
        >>> with registry_scope():
        ...     handle = bind(item, "demo", config=TransportConfig("127.0.0.1"))
        >>> # On exit, the registry opened by bind() is closed

    Note:
        When using pytest-xdist (parallel tests), each worker runs in a
        separate process, so this fixture provides per-worker isolation
        automatically.
    """
    # Import here to avoid circular imports
    from .registry import Registry

    previous = Registry._instance
    try:
        yield
    finally:
        current = Registry._instance
        Registry._instance = previous
        if current is not None and current is not previous:
            current.close()
