from __future__ import annotations

from .base import BaseProducer

# Global in-process registry: kind -> producer class
_REGISTRY: dict[str, type[BaseProducer]] = {}


def register(cls: type[BaseProducer]) -> type[BaseProducer]:
    """
    Class decorator or direct call to register a producer class.
    Requires cls.kind to be a non-empty string.
    """
    kind = getattr(cls, "kind", "") or ""
    if not isinstance(kind, str) or not kind.strip():
        raise ValueError(f"Cannot register producer {cls!r}: missing/empty 'kind'.")
    key = kind.strip().lower()
    if key in _REGISTRY and _REGISTRY[key] is not cls:
        raise ValueError(f"Producer kind {key!r} already registered to {_REGISTRY[key]!r}.")
    _REGISTRY[key] = cls
    return cls


def get(kind: str) -> type[BaseProducer]:
    """
    Look up a producer class by kind (case-insensitive).
    Raises KeyError if not found.
    """
    key = (kind or "").strip().lower()
    if key not in _REGISTRY:
        raise KeyError(f"No producer registered for kind {kind!r}.")
    return _REGISTRY[key]


def all_kinds() -> dict[str, type[BaseProducer]]:
    return dict(_REGISTRY)
