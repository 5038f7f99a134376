"""Minimizer engine implementations + registry."""

from __future__ import annotations

from typing import Any, Callable, Dict

from .common import Engine, EngineStat, NLL_ERRORDEF
from .iminuit_engine import MinuitEngine
from .scipy_minimize import ScipyEngine

# Engines carry per-fit state, so the registry holds factories.
_BACKENDS: Dict[str, Callable[..., Engine]] = {
    "iminuit": MinuitEngine,
    "scipy": ScipyEngine,
}


def get_backend(name: str, **options: Any) -> Engine:
    """Return a new engine instance by name."""
    try:
        factory = _BACKENDS[name]
    except KeyError as e:
        raise ValueError(
            f"Unknown backend {name!r}. Available: {tuple(_BACKENDS.keys())}"
        ) from e
    return factory(**options)


AVAILABLE_BACKENDS = tuple(_BACKENDS.keys())

__all__ = [
    "AVAILABLE_BACKENDS",
    "Engine",
    "EngineStat",
    "MinuitEngine",
    "NLL_ERRORDEF",
    "ScipyEngine",
    "get_backend",
]
