from __future__ import annotations

import inspect
import types
import weakref
from typing import Any, Callable, Hashable, Optional, Sequence, Tuple

from msgbus.core import log
from msgbus.core.contracts import check_args
from msgbus.core.errors import InvocationMismatch

__all__ = ["STANDALONE", "identity", "Subscriber"]

_l = log.get("subscriber")


class _Standalone:
    """Owner marker for handlers that have no owning instance."""
    __slots__ = ()

    def __repr__(self) -> str:
        return "STANDALONE"

    def __call__(self) -> "_Standalone":
        # quacks like a live weak reference
        return self


STANDALONE = _Standalone()


class _Pinned:
    """Strong stand-in for an owner that refuses weak references."""
    __slots__ = ("obj",)

    def __init__(self, obj: Any):
        self.obj = obj

    def __call__(self) -> Any:
        return self.obj


Key = Tuple[Optional[int], Hashable]


def _split(handler: Callable[..., Any], owner: Any) -> Tuple[Any, Callable[..., Any], bool]:
    """Return (owner, function, bound) for a handler.

    A bound method is always owned by its instance; a plain callable is owned
    by ``owner`` when given, otherwise it stands alone.
    """
    func = getattr(handler, "__func__", None)
    self_ = getattr(handler, "__self__", None)
    if func is not None and self_ is not None:
        if owner is not None and owner is not self_:
            raise TypeError(f"{_name(func)} is bound to {type(self_).__name__}; it cannot take another owner")
        return self_, func, True
    return owner, handler, False


def _func_key(func: Callable[..., Any]) -> Hashable:
    # builtin bound methods (lst.append) are rebuilt on every attribute access
    self_ = getattr(func, "__self__", None)
    if self_ is not None and not isinstance(self_, types.ModuleType) and getattr(func, "__func__", None) is None:
        return (id(self_), type(func), getattr(func, "__name__", None))
    return id(func)


def identity(handler: Callable[..., Any], owner: Any = None) -> Key:
    """Identity key of a (owner, callable) pair.

    A bound method is keyed by its instance and underlying function, so
    ``obj.method`` fetched twice gives the same key; the same holds for
    builtin methods such as ``lst.append``.
    """
    owner, func, _ = _split(handler, owner)
    return (None if owner is None else id(owner), _func_key(func))


def _name(func: Callable[..., Any]) -> str:
    return getattr(func, "__qualname__", None) or getattr(func, "__name__", None) or repr(func)


class Subscriber:
    """One registration: weak owner (or STANDALONE), the function and its signature."""

    __slots__ = ("contract", "key", "name", "signature", "_owner", "_func", "_bound")

    def __init__(self, contract: type, key: Key, owner_ref: Callable[[], Any],
                 func: Callable[..., Any], bound: bool, signature: Optional[inspect.Signature]):
        self.contract = contract
        self.key = key
        self.name = _name(func)
        self.signature = signature
        self._owner = owner_ref
        self._func = func
        self._bound = bound

    @classmethod
    def build(cls, contract: type, handler: Callable[..., Any], owner: Any = None) -> "Subscriber":
        if not callable(handler):
            raise TypeError(f"handler must be callable, got {handler!r}")

        owner, func, bound = _split(handler, owner)
        key = (None if owner is None else id(owner), _func_key(func))

        if owner is None:
            owner_ref: Callable[[], Any] = STANDALONE
        else:
            try:
                owner_ref = weakref.ref(owner)
            except TypeError:
                # no __weakref__ slot: held strongly until unsubscribed
                _l.warning("owner %s of %s cannot be weakly referenced; it stays alive until unsubscribed",
                           type(owner).__name__, _name(func))
                owner_ref = _Pinned(owner)

        try:
            signature: Optional[inspect.Signature] = inspect.signature(handler)
        except (TypeError, ValueError):
            # some builtins expose no signature; they are checked when called
            signature = None

        if signature is not None:
            try:
                signature.bind(*([None] * len(contract.params)))
            except TypeError as e:
                raise InvocationMismatch(contract, _name(func), f"signature {signature} does not fit: {e}") from e

        return cls(contract, key, owner_ref, func, bound, signature)

    @property
    def standalone(self) -> bool:
        return self._owner is STANDALONE

    @property
    def pinned(self) -> bool:
        """True when the owner is held strongly because it has no weakref support."""
        return isinstance(self._owner, _Pinned)

    @property
    def alive(self) -> bool:
        return self.resolve() is not None

    def resolve(self) -> Any:
        """Strong reference to the owner, STANDALONE, or None once the owner is gone."""
        return self._owner()

    def check(self, args: Sequence[Any], *, strict_types: bool = True) -> None:
        """Raise InvocationMismatch when ``args`` does not fit the contract or the handler."""
        reason = check_args(self.contract, args, strict_types=strict_types)
        if reason is not None:
            raise InvocationMismatch(self.contract, self.name, reason, tuple(args))
        if self.signature is not None:
            try:
                self.signature.bind(*args)
            except TypeError as e:
                raise InvocationMismatch(self.contract, self.name, str(e), tuple(args)) from e

    def call(self, owner: Any, args: Sequence[Any]) -> Any:
        """Call the handler; ``owner`` is what resolve() returned."""
        if self._bound:
            return self._func(owner, *args)
        return self._func(*args)

    def __repr__(self) -> str:
        state = "standalone" if self.standalone else ("alive" if self.alive else "dead")
        return f"<Subscriber {self.name} -> {self.contract.__name__} ({state})>"
