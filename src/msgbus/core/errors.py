from __future__ import annotations

from typing import Any, Optional, Tuple

__all__ = [
    "MessageBusError",
    "NotAContract",
    "DuplicateSubscription",
    "InvocationMismatch",
    "HandlerFailure",
]


class MessageBusError(Exception):
    """Base class for every error raised or reported by the bus."""


class NotAContract(MessageBusError, TypeError):
    def __init__(self, obj: Any):
        super().__init__(f"not a message contract: {obj!r}")
        self.obj = obj


class DuplicateSubscription(MessageBusError):
    """The same (owner, callable) pair is already subscribed to a contract in this scope."""
    def __init__(self, contract: type, scope: str, handler: str):
        super().__init__(f"listener added twice: {handler} -> {contract.__name__} (scope={scope!r})")
        self.contract = contract
        self.scope = scope
        self.handler = handler


class InvocationMismatch(MessageBusError, TypeError):
    """An argument list does not fit a contract or a handler's parameters."""
    def __init__(self, contract: type, handler: str, reason: str, args: Tuple[Any, ...] = ()):
        super().__init__(f"{handler} cannot take {contract.__name__}{tuple(args)!r}: {reason}")
        self.contract = contract
        self.handler = handler
        self.reason = reason
        self.args_given = tuple(args)


class HandlerFailure(MessageBusError):
    """A subscriber raised while handling a dispatch; the original is ``error``."""
    def __init__(self, contract: type, scope: str, handler: str, error: BaseException):
        super().__init__(f"error dispatching {contract.__name__} (scope={scope!r}) to {handler}: {error}")
        self.contract = contract
        self.scope = scope
        self.handler = handler
        self.error: Optional[BaseException] = error
