from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

_TRUE = {"1", "true", "yes", "on"}


def _flag(raw: Any, default: bool) -> bool:
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in _TRUE


def _scopes(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        # "" is the default scope and always exists; skip blanks in CSV
        return [s.strip() for s in raw.split(",") if s.strip()]
    return [str(s) for s in raw]


@dataclass
class BusConfig:
    log_level: Optional[str] = None     # None -> LOG_LEVEL / INFO
    log_json: Optional[bool] = None     # None -> LOG_JSON
    metrics: bool = False               # record dispatch metrics
    metrics_interval: float = 0.0       # >0 starts the log exporter
    strict_types: bool = True           # isinstance checks on contract params
    scopes: List[str] = field(default_factory=list)  # created eagerly

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> "BusConfig":
        if dotenv:
            load_dotenv()
        log_json = os.getenv("LOG_JSON")
        return cls(
            log_level=os.getenv("LOG_LEVEL") or None,
            log_json=None if log_json is None else log_json == "1",
            metrics=_flag(os.getenv("MSGBUS_METRICS"), False),
            metrics_interval=float(os.getenv("MSGBUS_METRICS_INTERVAL", "0") or 0),
            strict_types=_flag(os.getenv("MSGBUS_STRICT_TYPES"), True),
            scopes=_scopes(os.getenv("MSGBUS_SCOPES")),
        )

    @classmethod
    def from_dict(cls, d: Dict[str, Any] | None) -> "BusConfig":
        """Build from a ``bus:`` mapping; unknown keys are rejected."""
        d = dict(d or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(d) - known)
        if unknown:
            raise ValueError(f"unknown bus config key(s): {', '.join(unknown)}")
        cfg = cls()
        if "log_level" in d:
            cfg.log_level = d["log_level"]
        if "log_json" in d:
            cfg.log_json = _flag(d["log_json"], False)
        cfg.metrics = _flag(d.get("metrics"), cfg.metrics)
        cfg.metrics_interval = float(d.get("metrics_interval") or 0.0)
        cfg.strict_types = _flag(d.get("strict_types"), cfg.strict_types)
        cfg.scopes = _scopes(d.get("scopes"))
        return cfg
