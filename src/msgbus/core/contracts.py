from __future__ import annotations

import inspect
import sys
import typing
from typing import Any, Sequence, Tuple

from msgbus.core.errors import NotAContract

__all__ = [
    "Param",
    "Contract",
    "define",
    "is_contract",
    "ensure_contract",
    "check_args",
]


# --------- Primitive / aliases ---------
Param = Tuple[str, Any]  # (name, annotation)

# numeric tower: an int is acceptable where a float is declared
_WIDENED = {
    float: (int, float),
    complex: (int, float, complex),
}


def _annotations(cls: type) -> dict:
    try:
        return typing.get_type_hints(cls)
    except Exception:
        # unresolved forward references: keep the raw annotations, base first
        out: dict = {}
        for base in reversed(cls.__mro__):
            if base is object:
                continue
            out.update(inspect.get_annotations(base))
        return out


class Contract:
    """A message shape: the ordered parameter list publishers and handlers agree on.

    Declare one by subclassing with annotations::

        class Arguments(Contract):
            x: int
            y: int

    Contracts are lookup keys only. The class object itself is the identity,
    so two contracts declared separately are distinct even if their
    parameters coincide.
    """

    params = ()  # ((name, annotation), ...)

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        hints = _annotations(cls)
        cls.params = tuple((n, t) for n, t in hints.items() if not n.startswith("_") and n != "params")

    def __new__(cls, *args, **kwargs):
        raise TypeError(f"{cls.__name__} is a message contract and cannot be instantiated")

    @classmethod
    def arity(cls) -> int:
        return len(cls.params)

    @classmethod
    def describe(cls) -> str:
        parts = []
        for name, ann in cls.params:
            parts.append(f"{name}: {_type_name(ann)}")
        return f"{cls.__qualname__}({', '.join(parts)})"


def _type_name(ann: Any) -> str:
    if isinstance(ann, str):
        return ann
    if isinstance(ann, type) and typing.get_origin(ann) is None:
        return ann.__name__
    return repr(ann).replace("typing.", "")


def define(name: str, *types: Any) -> type:
    """Build a contract class at runtime; parameters are named arg0..argN."""
    annotations = {f"arg{i}": t for i, t in enumerate(types)}
    module = sys._getframe(1).f_globals.get("__name__", __name__)
    return type(name, (Contract,), {"__annotations__": annotations, "__module__": module})


def is_contract(obj: Any) -> bool:
    return isinstance(obj, type) and issubclass(obj, Contract) and obj is not Contract


def ensure_contract(obj: Any) -> type:
    if not is_contract(obj):
        raise NotAContract(obj)
    return obj


def _accepts(ann: Any, value: Any) -> bool:
    # only plain classes are enforced; typing constructs, strings and Any pass
    if ann is Any or ann is object or not isinstance(ann, type) or typing.get_origin(ann) is not None:
        return True
    try:
        return isinstance(value, _WIDENED.get(ann, ann))
    except TypeError:
        # classes that refuse isinstance(), e.g. a Protocol that is not runtime_checkable
        return True


def check_args(contract: type, args: Sequence[Any], *, strict_types: bool = True) -> str | None:
    """Return a reason string when ``args`` does not fit ``contract``, else None."""
    if len(args) != len(contract.params):
        return f"expected {len(contract.params)} argument(s), got {len(args)}"
    if strict_types:
        for (name, ann), value in zip(contract.params, args):
            if not _accepts(ann, value):
                return f"{name} expects {_type_name(ann)}, got {type(value).__name__}"
    return None
