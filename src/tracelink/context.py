"""Active context management for causal propagation.

A Context is an immutable chain of key/value pairs. The ContextManager keeps
track of which Context is active, backed by contextvars so the active value
follows asyncio tasks, loop callbacks and any other continuation that copies
the current contextvars context when it is scheduled.
"""

from __future__ import annotations

import functools
import inspect
import logging
import threading
from collections.abc import Callable, Generator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

logger = logging.getLogger(__name__)


class ContextKey:
    """Opaque, unique key for values stored in a Context."""

    __slots__ = ("name",)

    def __init__(self, name: str):
        self.name = name

    def __repr__(self) -> str:
        return f"ContextKey({self.name!r})"


def create_key(name: str) -> ContextKey:
    """Create a new unique context key. Two keys with the same name differ."""
    return ContextKey(name)


class Context:
    """Immutable, chainable key/value mapping.

    set_value() never modifies the receiver; it returns a derived Context
    wrapping it, and lookups walk from the newest override back to the root.
    """

    __slots__ = ("_parent", "_key", "_value")

    def __init__(
        self,
        parent: Context | None = None,
        key: ContextKey | None = None,
        value: Any = None,
    ):
        self._parent = parent
        self._key = key
        self._value = value

    def get_value(self, key: ContextKey) -> Any:
        node: Context | None = self
        while node is not None:
            if node._key is key:
                return node._value
            node = node._parent
        return None

    def set_value(self, key: ContextKey, value: Any) -> Context:
        return Context(self, key, value)

    def delete_value(self, key: ContextKey) -> Context:
        """Return a derived context in which ``key`` resolves to None."""
        return Context(self, key, None)

    def __repr__(self) -> str:
        keys = []
        node: Context | None = self
        while node is not None and node._key is not None:
            keys.append(node._key.name)
            node = node._parent
        return f"Context(keys={keys!r})"


ROOT_CONTEXT = Context()


class ContextManager:
    """Tracks the active Context across sync and async control flow.

    Usage:
        cm = ContextManager()
        ctx = cm.active().set_value(key, "value")
        cm.with_active(ctx, do_work)

        async def handler():
            with cm.use(ctx):
                await do_async_work()   # tasks spawned here inherit ctx
    """

    def __init__(self):
        self._enabled = True
        self._current: ContextVar[Context] = self._new_var()

    @staticmethod
    def _new_var() -> ContextVar[Context]:
        return ContextVar("tracelink_active_context", default=ROOT_CONTEXT)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> ContextManager:
        """Enable the manager, starting from a fresh root context."""
        if not self._enabled:
            self._current = self._new_var()
            self._enabled = True
        return self

    def disable(self) -> ContextManager:
        """Disable the manager. active() returns ROOT_CONTEXT until re-enabled."""
        self._enabled = False
        self._current = self._new_var()
        return self

    def active(self) -> Context:
        """Get the currently active context."""
        if not self._enabled:
            return ROOT_CONTEXT
        return self._current.get()

    def with_active(self, ctx: Context, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Call ``fn`` with ``ctx`` active and return its result.

        If ``fn`` returns a coroutine, the coroutine is wrapped so that it
        also runs with ``ctx`` active when it is eventually awaited.
        """
        if not self._enabled:
            return fn(*args, **kwargs)

        var = self._current
        token = var.set(ctx)
        try:
            result = fn(*args, **kwargs)
        finally:
            var.reset(token)

        if inspect.iscoroutine(result):
            return self._run_with(ctx, result)
        return result

    async def _run_with(self, ctx: Context, coro) -> Any:
        var = self._current
        token = var.set(ctx)
        try:
            return await coro
        finally:
            var.reset(token)

    @contextmanager
    def use(self, ctx: Context) -> Generator[Context, None, None]:
        """Context manager form of with_active().

        Usage:
            with cm.use(ctx):
                ...  # cm.active() is ctx here
        """
        if not self._enabled:
            yield ctx
            return

        var = self._current
        token = var.set(ctx)
        try:
            yield ctx
        finally:
            var.reset(token)

    def bind(self, fn: Callable[..., Any], ctx: Context | None = None) -> Callable[..., Any]:
        """Wrap ``fn`` so every call runs with ``ctx`` active.

        ``ctx`` defaults to the context active when bind() is called. Use this
        at scheduling points that do not copy contextvars themselves, such as
        thread pools or third-party callback registries.
        """
        target = ctx if ctx is not None else self.active()

        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def async_wrapper(*args, **kwargs):
                with self.use(target):
                    return await fn(*args, **kwargs)

            return async_wrapper

        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            return self.with_active(target, fn, *args, **kwargs)

        return wrapper


# Global context manager instance
_context_manager: ContextManager | None = None
_manager_lock = threading.Lock()


def get_context_manager() -> ContextManager:
    """Get or create the global context manager."""
    global _context_manager

    with _manager_lock:
        if _context_manager is None:
            _context_manager = ContextManager()
        return _context_manager


def set_global_context_manager(manager: ContextManager | None) -> None:
    """Replace the global context manager (None resets to a lazily created default)."""
    global _context_manager

    with _manager_lock:
        if _context_manager is not None and _context_manager is not manager:
            _context_manager.disable()
        _context_manager = manager
        logger.debug("Global context manager replaced")
