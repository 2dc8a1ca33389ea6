"""
Adapter registry — central dispatch for every external action.

The engine, the recovery policy and the teardown bookkeeping all run
actions through ``AdapterRegistry.execute``. It resolves the adapter,
validates, executes, and always returns a Receipt.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from envforge.adapters.base import Adapter, ExecutionContext
from envforge.core.models.action import Action, Receipt

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Registry and dispatcher for adapters.

    Args:
        project_root: Default working directory for actions.
        mock_mode: If True, every action succeeds without side effects.
    """

    def __init__(self, project_root: str = ".", mock_mode: bool = False):
        self._adapters: dict[str, Adapter] = {}
        self._project_root = project_root
        self._mock_mode = mock_mode

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    @property
    def project_root(self) -> str:
        return self._project_root

    def register(self, adapter: Adapter) -> None:
        name = adapter.name
        if name in self._adapters:
            logger.warning("Overwriting existing adapter: %s", name)
        self._adapters[name] = adapter
        logger.debug("Registered adapter: %s", name)

    def get(self, name: str) -> Adapter | None:
        return self._adapters.get(name)

    def list_adapters(self) -> list[str]:
        return list(self._adapters.keys())

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Availability of all registered adapters."""
        status = {}
        for name, adapter in self._adapters.items():
            try:
                available = adapter.is_available()
            except Exception:
                available = False
            status[name] = {
                "name": name,
                "available": available,
                "type": adapter.__class__.__name__,
            }
        return status

    def execute(self, action: Action) -> Receipt:
        """Run ``action`` through its adapter. Never raises."""
        start_time = time.monotonic()

        if self._mock_mode:
            return Receipt.success(
                adapter=action.adapter,
                action_id=action.id,
                output=f"[mock] {action.adapter}:{action.id} executed",
                exit_code=0,
                metadata={"mock": True},
            )

        adapter = self._adapters.get(action.adapter)
        if adapter is None:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"No adapter registered for '{action.adapter}'",
            )

        context = ExecutionContext(
            action=action,
            project_root=self._project_root,
            params=action.params,
        )

        try:
            is_valid, error_msg = adapter.validate(context)
        except Exception as e:
            is_valid, error_msg = False, f"validation error: {e}"
        if not is_valid:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Validation failed: {error_msg}",
            )

        try:
            receipt = adapter.execute(context)
        except Exception as e:
            # Adapters should never raise, but the engine must not crash.
            logger.error("Adapter %s raised during execution: %s", action.adapter, e)
            receipt = Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Unexpected error: {e}",
            )

        if not receipt.duration_ms:
            receipt.duration_ms = int((time.monotonic() - start_time) * 1000)
        return receipt


def default_registry(project_root: str = ".", mock_mode: bool = False) -> AdapterRegistry:
    """Registry with the shell adapter registered."""
    from envforge.adapters.shell.command import ShellCommandAdapter

    registry = AdapterRegistry(project_root=project_root, mock_mode=mock_mode)
    registry.register(ShellCommandAdapter())
    return registry
