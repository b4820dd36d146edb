import gc

from msgbus.core.contracts import Contract
from msgbus.core.dispatcher import Dispatcher


class Ping(Contract):
    pass


class Pong(Contract):
    pass


class Temporary:
    pings = 0

    def on_ping(self):
        Temporary.pings += 1


def _subscribe_temporary(d: Dispatcher) -> None:
    t = Temporary()
    d.subscribe(Ping, t.on_ping)
    d.dispatch(Ping)


def test_subscription_does_not_keep_owner_alive():
    Temporary.pings = 0
    d = Dispatcher()
    _subscribe_temporary(d)
    assert Temporary.pings == 1
    gc.collect()

    # dead owner skipped, entry and bucket dropped
    assert d.dispatch(Ping) == 0
    assert Temporary.pings == 1
    assert Ping not in d


def test_dead_entries_pruned_live_ones_kept():
    d = Dispatcher()
    keeper = Temporary()
    goner = Temporary()
    d.subscribe(Ping, keeper.on_ping)
    d.subscribe(Ping, goner.on_ping)
    assert d.subscriber_count(Ping) == 2

    del goner
    gc.collect()
    assert d.subscriber_count(Ping) == 2  # lazy: nothing happens until dispatch
    assert d.dispatch(Ping) == 1
    assert d.subscriber_count(Ping) == 1


def test_explicit_owner_reclaimed_with_plain_handler():
    d = Dispatcher()
    calls = []

    def handler():
        calls.append(1)

    owner = Temporary()
    d.subscribe(Ping, handler, owner=owner)
    d.dispatch(Ping)
    del owner
    gc.collect()
    d.dispatch(Ping)
    assert calls == [1]
    assert Ping not in d


def test_standalone_handlers_never_reclaimed():
    d = Dispatcher()
    calls = []
    d.subscribe(Ping, lambda: calls.append(1))
    gc.collect()
    d.dispatch(Ping)
    d.dispatch(Ping)
    assert calls == [1, 1]


def test_reclaim_sweeps_all_contracts():
    d = Dispatcher()
    t = Temporary()
    keep = Temporary()
    d.subscribe(Ping, t.on_ping)
    d.subscribe(Pong, t.on_ping)
    d.subscribe(Pong, keep.on_ping)
    del t
    gc.collect()

    assert d.reclaim() == 2
    assert Ping not in d
    assert d.subscriber_count(Pong) == 1


def test_owner_kept_alive_for_whole_pass():
    d = Dispatcher()
    seen = []

    class Dropper:
        def __init__(self, victim_holder):
            self.holder = victim_holder

        def on_ping(self):
            # drop the last outside reference to the next subscriber
            self.holder.clear()
            gc.collect()

    class Victim:
        def on_ping(self):
            seen.append("victim")

    holder = [Victim()]
    dropper = Dropper(holder)
    d.subscribe(Ping, dropper.on_ping)
    d.subscribe(Ping, holder[0].on_ping)

    d.dispatch(Ping)
    assert seen == ["victim"]
    gc.collect()
    d.dispatch(Ping)
    assert seen == ["victim"]
    assert d.subscriber_count(Ping) == 1


def test_resubscribe_after_owner_gone_is_not_duplicate():
    d = Dispatcher()
    for _ in range(5):
        t = Temporary()
        d.subscribe(Ping, t.on_ping)
        del t
        gc.collect()
    # at most one live entry at a time, stale ones replaced or pruned on dispatch
    d.dispatch(Ping)
    assert Ping not in d
