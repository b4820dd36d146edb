# src/msgbus/wire_config.py
from __future__ import annotations
import importlib
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml  # PyYAML

from msgbus.core import log
from msgbus.core.bus import MessageBus
from msgbus.core.config import BusConfig
from msgbus.core.contracts import ensure_contract
from msgbus.core.dispatcher import ErrorHook
from msgbus.core.metrics import start_exporter

_l = log.get("wire")


def _imp(target: str) -> Any:
    """Resolve "package.module:attr" (or "package.module.attr")."""
    if ":" in target:
        module, attr = target.split(":", 1)
    else:
        module, _, attr = target.rpartition(".")
    if not module or not attr:
        raise ValueError(f"bad import target: {target!r}")
    obj: Any = importlib.import_module(module)
    for part in attr.split("."):
        obj = getattr(obj, part)
    return obj


def build_bus(config: Optional[BusConfig] = None, *, on_error: Optional[ErrorHook] = None) -> MessageBus:
    """Apply logging/metrics settings from ``config`` and return a new bus."""
    config = config or BusConfig.from_env()
    log.setup(config.log_level, config.log_json)
    if config.metrics and config.metrics_interval > 0:
        start_exporter(interval_sec=config.metrics_interval, json_mode=bool(config.log_json))
    return MessageBus(config, on_error=on_error)


def wire(bus: MessageBus, subscriptions: List[Dict[str, Any]]) -> int:
    """Subscribe each {contract, handler, scope?} entry; returns how many were wired."""
    n = 0
    for i, s in enumerate(subscriptions or []):
        try:
            contract_ref, handler_ref = s["contract"], s["handler"]
        except (KeyError, TypeError) as e:
            raise ValueError(f"subscriptions[{i}] needs 'contract' and 'handler'") from e
        contract = ensure_contract(_imp(contract_ref))
        handler = _imp(handler_ref)
        scope = str(s.get("scope") or "")
        bus.subscribe(contract, handler, scope=scope)
        _l.info("wired %s -> %s scope=%r", handler_ref, contract.__name__, scope)
        n += 1
    return n


def build_from_yaml(yaml_path: str | Path, *, on_error: Optional[ErrorHook] = None) -> MessageBus:
    """Read a bus YAML file and return a bus with its subscriptions wired.

    bus:
      metrics: true
      scopes: [net, ui]
    subscriptions:
      - {contract: "app.messages:Ping", handler: "app.handlers:on_ping", scope: net}
    """
    data = yaml.safe_load(Path(yaml_path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{yaml_path}: top level must be a mapping")

    bus = build_bus(BusConfig.from_dict(data.get("bus")), on_error=on_error)
    wire(bus, data.get("subscriptions") or [])
    return bus
