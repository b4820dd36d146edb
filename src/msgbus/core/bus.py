# src/msgbus/core/bus.py
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from msgbus.core import log
from msgbus.core.config import BusConfig
from msgbus.core.dispatcher import Dispatcher, ErrorHook, Handler

DEFAULT_SCOPE = ""


class MessageBus:
    """
    Scope name -> Dispatcher table.

    Dispatchers are created on first reference and live as long as the bus.
    The default scope is the empty string and is an ordinary entry.
    """

    def __init__(self, config: Optional[BusConfig] = None, *, on_error: Optional[ErrorHook] = None,
                 name: str = "bus"):
        self.config = config or BusConfig()
        self.on_error = on_error
        self.name = name
        self.l = log.get(self.name)
        self._scopes: Dict[str, Dispatcher] = {}
        for scope in self.config.scopes:
            self.get_dispatcher(scope)

    def get_dispatcher(self, scope: str = DEFAULT_SCOPE) -> Dispatcher:
        """Return the dispatcher for ``scope``, creating it if needed."""
        d = self._scopes.get(scope)
        if d is None:
            d = self._scopes[scope] = Dispatcher(
                scope,
                on_error=self.on_error,
                strict_types=self.config.strict_types,
                metrics=self.config.metrics,
            )
            self.l.debug("scope created %r", scope)
        return d

    # -------------------- Forwarding --------------------
    def subscribe(self, contract: type, handler: Handler, *, scope: str = DEFAULT_SCOPE, owner: Any = None) -> None:
        self.get_dispatcher(scope).subscribe(contract, handler, owner=owner)

    def unsubscribe(self, contract: type, handler: Handler, *, scope: str = DEFAULT_SCOPE, owner: Any = None) -> bool:
        # an unknown scope has nothing to remove; do not create it
        d = self._scopes.get(scope)
        if d is None:
            return False
        return d.unsubscribe(contract, handler, owner=owner)

    def dispatch(self, contract: type, *args: Any, scope: str = DEFAULT_SCOPE) -> int:
        return self.get_dispatcher(scope).dispatch(contract, *args)

    # -------------------- Introspection --------------------
    def scopes(self) -> Tuple[str, ...]:
        return tuple(self._scopes)

    def reclaim(self) -> int:
        return sum(d.reclaim() for d in self._scopes.values())

    def __contains__(self, scope: object) -> bool:
        return scope in self._scopes

    def __repr__(self) -> str:
        return f"<MessageBus {self.name} scopes={list(self._scopes)!r}>"


# ---------------- Default bus ----------------

_BUS = MessageBus()


def default_bus() -> MessageBus:
    return _BUS


def set_default_bus(bus: MessageBus) -> MessageBus:
    """Install ``bus`` as the default; returns the one it replaced."""
    global _BUS
    if not isinstance(bus, MessageBus):
        raise TypeError(f"expected MessageBus, got {type(bus).__name__}")
    prev, _BUS = _BUS, bus
    return prev


def get_dispatcher(scope: str = DEFAULT_SCOPE) -> Dispatcher:
    return _BUS.get_dispatcher(scope)


def subscribe(contract: type, handler: Handler, *, scope: str = DEFAULT_SCOPE, owner: Any = None) -> None:
    _BUS.subscribe(contract, handler, scope=scope, owner=owner)


def unsubscribe(contract: type, handler: Handler, *, scope: str = DEFAULT_SCOPE, owner: Any = None) -> bool:
    return _BUS.unsubscribe(contract, handler, scope=scope, owner=owner)


def dispatch(contract: type, *args: Any, scope: str = DEFAULT_SCOPE) -> int:
    return _BUS.dispatch(contract, *args, scope=scope)
