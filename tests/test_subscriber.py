import gc
import logging

import pytest

from msgbus.core.contracts import Contract
from msgbus.core.errors import InvocationMismatch
from msgbus.core.subscriber import STANDALONE, Subscriber, identity


class Arguments(Contract):
    x: int
    y: int


class Referenced:
    def __init__(self):
        self.calls = []

    def on_args(self, x, y):
        self.calls.append((x, y))


def free(x, y):
    return x + y


# ---------------- identity ----------------

def test_bound_method_identity_is_stable_across_lookups():
    thing = Referenced()
    assert identity(thing.on_args) == identity(thing.on_args)
    assert identity(thing.on_args) != identity(Referenced().on_args)


def test_identity_of_free_function_has_no_owner():
    assert identity(free) == (None, id(free))
    owner = Referenced()
    assert identity(free, owner) == (id(owner), id(free))


def test_bound_method_rejects_foreign_owner():
    thing, other = Referenced(), Referenced()
    with pytest.raises(TypeError):
        identity(thing.on_args, other)
    # its own instance is accepted
    assert identity(thing.on_args, thing) == identity(thing.on_args)


# ---------------- Subscriber ----------------

def test_bound_subscriber_holds_owner_weakly():
    thing = Referenced()
    sub = Subscriber.build(Arguments, thing.on_args)
    assert not sub.standalone
    owner = sub.resolve()
    assert owner is thing
    sub.call(owner, (1, 2))
    assert thing.calls == [(1, 2)]

    del owner, thing
    gc.collect()
    assert sub.resolve() is None
    assert not sub.alive


def test_free_function_is_standalone():
    sub = Subscriber.build(Arguments, free)
    assert sub.standalone
    assert sub.resolve() is STANDALONE
    assert sub.call(sub.resolve(), (2, 3)) == 5


def test_explicit_owner_ties_lifetime():
    owner = Referenced()
    sub = Subscriber.build(Arguments, free, owner=owner)
    assert sub.alive
    del owner
    gc.collect()
    assert not sub.alive


def test_signature_must_fit_contract_at_build():
    def one(x):
        pass

    with pytest.raises(InvocationMismatch):
        Subscriber.build(Arguments, one)

    # varargs and defaults are fine
    Subscriber.build(Arguments, lambda *a: None)
    Subscriber.build(Arguments, lambda x, y, z=0: None)


def test_check_reports_mismatch():
    sub = Subscriber.build(Arguments, free)
    sub.check((1, 2))
    with pytest.raises(InvocationMismatch) as info:
        sub.check((1,))
    assert info.value.args_given == (1,)
    with pytest.raises(InvocationMismatch):
        sub.check(("a", 2))


def test_non_callable_rejected():
    with pytest.raises(TypeError):
        Subscriber.build(Arguments, 42)


class Slotted:
    __slots__ = ("n",)

    def __init__(self):
        self.n = 0

    def on_args(self, x, y):
        self.n += x + y


def test_owner_without_weakref_support_is_pinned(caplog):
    caplog.set_level(logging.WARNING, logger="msgbus.subscriber")
    thing = Slotted()
    sub = Subscriber.build(Arguments, thing.on_args)
    assert sub.pinned
    assert not sub.standalone
    assert sub.resolve() is thing
    assert sub.key == identity(thing.on_args)
    assert any("cannot be weakly referenced" in r.getMessage() for r in caplog.records)


def test_builtin_method_identity_is_stable():
    got = []
    assert identity(got.append) == identity(got.append)
    assert identity(got.append) != identity(got.extend)
    assert identity(got.append) != identity([].append)
    # module-level builtins keep plain identity
    assert identity(len) == (None, id(len))
