"""Handler decorator — registers an async function as a job payload."""

from __future__ import annotations

import functools
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from phasegate.core.errors import UnknownHandlerError


@dataclass
class HandlerMetadata:
    name: str
    func: Callable[..., Awaitable[Any]]
    description: str = ""
    tags: list[str] = field(default_factory=list)


class HandlerRegistry:
    """Named job handlers, looked up by `HandlerPayload.handler`."""

    def __init__(self):
        self._handlers: dict[str, HandlerMetadata] = {}

    def register(self, meta: HandlerMetadata) -> None:
        self._handlers[meta.name] = meta

    def get(self, name: str, job_id: str | None = None) -> HandlerMetadata:
        try:
            return self._handlers[name]
        except KeyError:
            raise UnknownHandlerError(name, job_id) from None

    def names(self) -> list[str]:
        return sorted(self._handlers)

    def clear(self) -> None:
        self._handlers.clear()

    def __contains__(self, name: str) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


# Registry populated at import time by @handler; runners may be given their own.
_default_registry = HandlerRegistry()


def handler(
    name: str | None = None,
    description: str | None = None,
    tags: list[str] | None = None,
    registry: HandlerRegistry | None = None,
):
    """Decorator to mark an async function as a job handler."""

    def decorator(func: Callable) -> Callable:
        handler_name = name or func.__name__

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            return await func(*args, **kwargs)

        meta = HandlerMetadata(
            name=handler_name,
            func=wrapper,
            description=description or func.__doc__ or "",
            tags=tags or [],
        )
        (registry if registry is not None else _default_registry).register(meta)
        wrapper._phasegate_handler = meta
        return wrapper

    return decorator


def parse_duration_ms(value: str | int | float) -> int:
    """Parse a duration like '500ms', '90s', '30m', '1h' (or bare milliseconds)."""
    if isinstance(value, (int, float)):
        return int(value)
    text = value.strip().lower()
    if text.endswith("ms"):
        return int(float(text[:-2]))
    if text.endswith("s"):
        return int(float(text[:-1]) * 1000)
    if text.endswith("m"):
        return int(float(text[:-1]) * 60_000)
    if text.endswith("h"):
        return int(float(text[:-1]) * 3_600_000)
    return int(text)


def get_registry() -> HandlerRegistry:
    return _default_registry
