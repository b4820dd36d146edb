from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from msgbus.core import log
from msgbus.core.contracts import ensure_contract, is_contract
from msgbus.core.errors import DuplicateSubscription, HandlerFailure, InvocationMismatch, MessageBusError
from msgbus.core.metrics import Timer, inc_counter, set_gauge
from msgbus.core.subscriber import Key, Subscriber, identity

__all__ = ["Dispatcher", "SupportsDispatch", "Handler", "ErrorHook"]

Handler = Callable[..., Any]
ErrorHook = Callable[[MessageBusError], None]


class SupportsDispatch(Protocol):
    """The dispatcher surface; proxies that forward to a Dispatcher satisfy it."""

    def subscribe(self, contract: type, handler: Handler, *, owner: Any = None) -> None: ...

    def unsubscribe(self, contract: type, handler: Handler, *, owner: Any = None) -> bool: ...

    def dispatch(self, contract: type, *args: Any) -> int: ...


class Dispatcher:
    """
    One scope's subscriber registry.

    Subscribers are held per contract, keyed by (owner, function) identity.
    Owners are tracked weakly: an entry whose owner has been collected is
    dropped the next time its contract is dispatched (or on reclaim()).

    Not thread-safe. Use one Dispatcher from one thread, or guard it
    externally; dispatch itself takes no locks.
    """

    def __init__(self, scope: str = "", *, on_error: Optional[ErrorHook] = None,
                 strict_types: bool = True, metrics: bool = False):
        self._scope = str(scope)
        self.on_error = on_error
        self.strict_types = bool(strict_types)
        self.metrics = bool(metrics)
        # one logger for every scope; records carry scope=
        self.l = log.get("dispatcher")
        self._subs: Dict[type, Dict[Key, Subscriber]] = {}

    @property
    def scope(self) -> str:
        return self._scope

    # -------------------- Subscriptions --------------------
    def subscribe(self, contract: type, handler: Handler, *, owner: Any = None) -> None:
        """Register ``handler`` for ``contract``.

        Bound methods are owned by their instance; pass ``owner`` to tie a
        plain callable to an object's lifetime. Raises DuplicateSubscription
        if the same (owner, callable) pair is already registered here.

        An owner without weakref support (``__slots__`` lacking
        ``__weakref__``) is held strongly and logged; such an entry is only
        removed by unsubscribe().
        """
        contract = ensure_contract(contract)
        sub = Subscriber.build(contract, handler, owner)

        bucket = self._subs.get(contract)
        if bucket is None:
            # first time we see this contract
            bucket = self._subs[contract] = {}

        existing = bucket.get(sub.key)
        if existing is not None:
            if existing.alive:
                raise DuplicateSubscription(contract, self._scope, sub.name)
            # dead owner whose id was handed to a new object
            del bucket[sub.key]
            self._count_reclaimed(contract, 1)

        bucket[sub.key] = sub
        self.l.debug("subscribed scope=%r contract=%s fn=%s", self._scope, contract.__name__, sub.name)
        self._gauge(contract)

    def unsubscribe(self, contract: type, handler: Handler, *, owner: Any = None) -> bool:
        """Remove a registration. Missing entries are ignored; returns whether one was removed."""
        bucket = self._subs.get(contract)
        if bucket is None:
            return False
        try:
            key = identity(handler, owner)
        except TypeError:
            # an owner that could never have been subscribed with this handler
            return False

        removed = bucket.pop(key, None)
        if not bucket:
            del self._subs[contract]
        if removed is not None:
            self.l.debug("unsubscribed scope=%r contract=%s fn=%s", self._scope, contract.__name__, removed.name)
            self._gauge(contract)
        return removed is not None

    def is_subscribed(self, contract: type, handler: Handler, *, owner: Any = None) -> bool:
        bucket = self._subs.get(contract)
        if bucket is None:
            return False
        sub = bucket.get(identity(handler, owner))
        return sub is not None and sub.alive

    # -------------------- Dispatch --------------------
    def dispatch(self, contract: type, *args: Any) -> int:
        """Invoke every live subscriber of ``contract`` with ``args``.

        Subscribers are snapshotted before the first call: handlers added during
        the pass wait for the next dispatch, handlers removed during the pass
        still get this one. Per-subscriber failures are reported, never raised.
        Returns the number of handlers that completed.
        """
        contract = ensure_contract(contract)
        bucket = self._subs.get(contract)
        if not bucket:
            return 0

        snapshot = list(bucket.values())
        live: List[Tuple[Subscriber, Any]] = []
        dead: List[Subscriber] = []
        for sub in snapshot:
            owner = sub.resolve()
            if owner is None:
                dead.append(sub)
            else:
                # holding owner here keeps it alive for the whole pass
                live.append((sub, owner))

        if dead:
            self._prune(contract, dead)

        if self.metrics:
            inc_counter("msgbus_dispatch_total", scope=self._scope, contract=contract.__name__)
            with Timer("msgbus_dispatch_ms", scope=self._scope, contract=contract.__name__):
                return self._deliver(contract, live, args)
        return self._deliver(contract, live, args)

    def _deliver(self, contract: type, live: Iterable[Tuple[Subscriber, Any]], args: Tuple[Any, ...]) -> int:
        delivered = 0
        for sub, owner in live:
            try:
                sub.check(args, strict_types=self.strict_types)
            except Exception as e:
                if isinstance(e, InvocationMismatch):
                    mismatch = e
                else:
                    mismatch = InvocationMismatch(contract, sub.name, f"argument check failed: {e}", args)
                    mismatch.__cause__ = e
                self.l.warning("mismatch scope=%r contract=%s fn=%s err=%s",
                               self._scope, contract.__name__, sub.name, mismatch.reason)
                self._report(mismatch, "mismatch")
                continue

            try:
                sub.call(owner, args)
            except Exception as e:
                self.l.error("deliver error scope=%r contract=%s fn=%s err=%s",
                             self._scope, contract.__name__, sub.name, e, exc_info=True)
                failure = HandlerFailure(contract, self._scope, sub.name, e)
                failure.__cause__ = e
                self._report(failure, "handler")
                continue

            delivered += 1
            if self.metrics:
                inc_counter("msgbus_deliver_total", scope=self._scope, contract=contract.__name__)
        return delivered

    # -------------------- Reclamation --------------------
    def _prune(self, contract: type, dead: Iterable[Subscriber]) -> int:
        # the live bucket, which may differ from the snapshot
        bucket = self._subs.get(contract)
        if bucket is None:
            return 0
        n = 0
        for sub in dead:
            if bucket.get(sub.key) is sub:
                del bucket[sub.key]
                n += 1
        if not bucket:
            del self._subs[contract]
        if n:
            self.l.debug("reclaimed scope=%r contract=%s n=%d", self._scope, contract.__name__, n)
            self._count_reclaimed(contract, n)
            self._gauge(contract)
        return n

    def reclaim(self) -> int:
        """Drop every entry whose owner is gone, across all contracts."""
        n = 0
        for contract, bucket in list(self._subs.items()):
            n += self._prune(contract, [s for s in bucket.values() if not s.alive])
        return n

    # -------------------- Introspection --------------------
    def contracts(self) -> Tuple[type, ...]:
        return tuple(self._subs)

    def subscriber_count(self, contract: type) -> int:
        bucket = self._subs.get(contract)
        return 0 if bucket is None else len(bucket)

    def subscribers(self, contract: type) -> Tuple[Subscriber, ...]:
        bucket = self._subs.get(contract)
        return () if bucket is None else tuple(bucket.values())

    def __contains__(self, contract: object) -> bool:
        return is_contract(contract) and contract in self._subs

    def __len__(self) -> int:
        return sum(len(b) for b in self._subs.values())

    def __repr__(self) -> str:
        return f"<Dispatcher scope={self._scope!r} contracts={len(self._subs)} subscribers={len(self)}>"

    # -------------------- Diagnostics --------------------
    def _report(self, err: MessageBusError, kind: str) -> None:
        if self.metrics:
            inc_counter("msgbus_handler_errors_total", scope=self._scope, kind=kind)
        if self.on_error is None:
            return
        try:
            self.on_error(err)
        except Exception as e:
            self.l.error("on_error hook failed scope=%r err=%s", self._scope, e, exc_info=True)

    def _count_reclaimed(self, contract: type, n: int) -> None:
        if self.metrics:
            inc_counter("msgbus_reclaimed_total", n, scope=self._scope, contract=contract.__name__)

    def _gauge(self, contract: type) -> None:
        if self.metrics:
            set_gauge("msgbus_subscribers", float(self.subscriber_count(contract)),
                      scope=self._scope, contract=contract.__name__)

