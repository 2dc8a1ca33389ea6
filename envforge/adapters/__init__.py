"""Adapters — the boundary to external collaborators.

Public re-exports for convenient access.
"""

from envforge.adapters.base import Adapter, ExecutionContext
from envforge.adapters.mock import MockAdapter
from envforge.adapters.registry import AdapterRegistry, default_registry

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "ExecutionContext",
    "MockAdapter",
    "default_registry",
]
