from __future__ import annotations

import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from statistics import fmean
from typing import Any, Deque, Dict, Iterator, Optional, Tuple

# metric identity: name plus labels as sorted (k, v) pairs
Labels = Tuple[Tuple[str, str], ...]
MetricKey = Tuple[str, Labels]

_QUANTILES = (("p50", 0.50), ("p90", 0.90), ("p99", 0.99))


def _key(name: str, labels: Dict[str, Any] | None) -> MetricKey:
    return name, tuple(sorted((str(k), str(v)) for k, v in (labels or {}).items()))


# ---------------- Metric types ----------------

class _Metric:
    def __init__(self, key: MetricKey):
        self.name, self.labels = key
        self._lock = threading.Lock()

    def row(self) -> Dict[str, Any]:
        return {"name": self.name, "labels": dict(self.labels)}


class Counter(_Metric):
    def __init__(self, key: MetricKey):
        super().__init__(key)
        self._value = 0.0

    def inc(self, n: float = 1.0) -> None:
        with self._lock:
            self._value += n

    def value(self) -> float:
        return self._value

    def row(self) -> Dict[str, Any]:
        return {**super().row(), "value": self.value()}


class Gauge(Counter):
    def set(self, v: float) -> None:
        with self._lock:
            self._value = float(v)


class Histogram(_Metric):
    """Keeps the most recent observations; summaries are computed on read."""

    def __init__(self, key: MetricKey, window: int = 2048):
        super().__init__(key)
        self._window: Deque[float] = deque(maxlen=window)

    def observe(self, v: float) -> None:
        with self._lock:
            self._window.append(float(v))

    def summary(self) -> Dict[str, float]:
        with self._lock:
            vals = sorted(self._window)
        out = {"count": float(len(vals)), "min": 0.0, "max": 0.0, "mean": 0.0}
        out.update({label: 0.0 for label, _ in _QUANTILES})
        if vals:
            last = len(vals) - 1
            out.update(min=vals[0], max=vals[-1], mean=fmean(vals))
            for label, q in _QUANTILES:
                # nearest rank
                out[label] = vals[round(last * q)]
        return out

    def row(self) -> Dict[str, Any]:
        return {**super().row(), **self.summary()}


# ---------------- Registry ----------------

class _Registry:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tables: Dict[type, Dict[MetricKey, _Metric]] = {Counter: {}, Gauge: {}, Histogram: {}}

    def get(self, kind: type, name: str, labels: Dict[str, Any] | None) -> Any:
        key = _key(name, labels)
        with self._lock:
            table = self._tables[kind]
            if key not in table:
                table[key] = kind(key)
            return table[key]

    def metrics(self, kind: type) -> Tuple[Any, ...]:
        with self._lock:
            return tuple(self._tables[kind].values())

    def clear(self) -> None:
        with self._lock:
            for table in self._tables.values():
                table.clear()


_REG = _Registry()

# ---------------- Public API ----------------

def inc_counter(name: str, n: float = 1.0, **labels: Any) -> None:
    _REG.get(Counter, name, labels).inc(n)


def set_gauge(name: str, v: float, **labels: Any) -> None:
    _REG.get(Gauge, name, labels).set(v)


def observe_hist(name: str, v: float, **labels: Any) -> None:
    _REG.get(Histogram, name, labels).observe(v)


def reset() -> None:
    """Drop every recorded metric."""
    _REG.clear()


@contextmanager
def Timer(hist_name: str, **labels: Any) -> Iterator[None]:
    """Observe the block's wall time, in milliseconds, into ``hist_name``."""
    t0 = time.perf_counter()
    try:
        yield
    finally:
        observe_hist(hist_name, (time.perf_counter() - t0) * 1000.0, **labels)


def snapshot_all() -> dict:
    return {
        "counters": [m.row() for m in _REG.metrics(Counter)],
        "gauges": [m.row() for m in _REG.metrics(Gauge)],
        "hists": [m.row() for m in _REG.metrics(Histogram)],
    }


def counter_value(name: str, **labels: Any) -> float:
    """Current value of one counter; 0.0 if it was never touched."""
    key = _key(name, labels)
    for m in _REG.metrics(Counter):
        if (m.name, m.labels) == key:
            return m.value()
    return 0.0


# ---------------- Exporter (log every N seconds) ----------------

def _format(kind: str, row: Dict[str, Any]) -> str:
    head = f"[{kind}] {row['name']} {row['labels']}"
    if kind == "hist":
        return head + " " + " ".join(f"{k}={row[k]:.3f}" for k in ("count", "min", "p50", "p90", "p99", "max"))
    return f"{head} value={row['value']:.3f}"


def _emit(log: logging.Logger, json_mode: bool) -> None:
    snap = snapshot_all()
    for kind, rows in (("counter", snap["counters"]), ("gauge", snap["gauges"]), ("hist", snap["hists"])):
        for row in rows:
            log.info({"type": kind, **row} if json_mode else _format(kind, row))


_EXPORTER: Optional[Tuple[threading.Thread, threading.Event]] = None


def start_exporter(interval_sec: float = 5.0, json_mode: bool = False, logger: Optional[logging.Logger] = None) -> None:
    """Log a snapshot now and then every ``interval_sec`` on a daemon thread."""
    global _EXPORTER
    if _EXPORTER is not None:
        return
    log = logger or logging.getLogger("msgbus.metrics")
    stopped = threading.Event()
    interval = max(0.5, float(interval_sec))

    def loop() -> None:
        while True:
            _emit(log, json_mode)
            if stopped.wait(interval):
                return

    th = threading.Thread(target=loop, name="msgbus-metrics", daemon=True)
    _EXPORTER = (th, stopped)
    th.start()


def stop_exporter(timeout: float = 1.0) -> None:
    global _EXPORTER
    if _EXPORTER is None:
        return
    th, stopped = _EXPORTER
    _EXPORTER = None
    stopped.set()
    th.join(timeout=timeout)
