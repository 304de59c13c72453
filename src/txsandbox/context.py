"""
Ambient context for a logical chain of asynchronous calls.

A namespace owns one ``ContextVar`` that points at a mutable slot. Entering
a chain with :meth:`Namespace.run` installs a fresh slot; every task,
``call_soon``/``call_later`` callback or other continuation scheduled from
inside copies the current context and therefore shares the same slot. Values
written with :meth:`Namespace.set` are visible to the whole chain, and to
nothing else.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from functools import wraps
from inspect import isawaitable, iscoroutinefunction
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from txsandbox.exception import NoContextError
from txsandbox.registry import NamespaceRegistry

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])
Slot = Dict[str, Any]


class Namespace:
    """Named ambient storage scoped to one chain at a time"""

    def __init__(self, name: str) -> None:
        self.name = name
        self._active: ContextVar[Optional[Slot]] = ContextVar(
            f"txsandbox.{name}", default=None
        )

    def __repr__(self) -> str:
        return f"<Namespace {self.name}>"

    @property
    def active(self) -> Optional[Slot]:
        """The slot of the currently running chain, if any"""
        return self._active.get()

    def create_context(self) -> Slot:
        """Create a new slot, inheriting the values of the active one"""
        return dict(self._active.get() or {})

    def get(self, key: str) -> Any:
        return self._require().get(key)

    def set(self, key: str, value: Any) -> Any:
        self._require()[key] = value
        return value

    def run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Execute ``fn`` in a new private slot.

        If ``fn`` is a coroutine function, or returns an awaitable, the
        returned awaitable runs inside the slot when it is awaited.
        """
        return self.bind(fn, self.create_context())(*args, **kwargs)

    def bind(self, fn: F, context: Optional[Slot] = None) -> F:
        """Wrap ``fn`` so that it always executes inside ``context``.

        Defaults to the active slot, or to a new one when called outside of
        any chain.
        """
        if context is None:
            context = self._active.get()
            if context is None:
                context = self.create_context()
        slot: Slot = context

        if iscoroutinefunction(fn):

            @wraps(fn)
            async def bound_coroutine(*args, **kwargs):
                token = self._active.set(slot)
                try:
                    return await fn(*args, **kwargs)
                finally:
                    self._active.reset(token)

            return bound_coroutine  # type: ignore

        @wraps(fn)
        def bound(*args, **kwargs):
            token = self._active.set(slot)
            try:
                result = fn(*args, **kwargs)
            finally:
                self._active.reset(token)
            if isawaitable(result):
                return self._resume(result, slot)
            return result

        return bound  # type: ignore

    async def _resume(self, awaitable: Awaitable[Any], slot: Slot) -> Any:
        token = self._active.set(slot)
        try:
            return await awaitable
        finally:
            self._active.reset(token)

    def _require(self) -> Slot:
        slot = self._active.get()
        if slot is None:
            raise NoContextError(
                f"No active context in namespace '{self.name}'. "
                "Wrap the call with Namespace.run() or Namespace.bind()"
            )
        return slot


def create_namespace(name: str) -> Namespace:
    """Create and register a namespace, replacing one with the same name"""
    namespace = Namespace(name)
    NamespaceRegistry.add(namespace)
    logger.debug("Created namespace %s", name)
    return namespace


def get_namespace(name: str) -> Optional[Namespace]:
    return NamespaceRegistry.get(name)


def reset_namespaces() -> None:
    NamespaceRegistry.reset()
