"""
Mock adapter — stand-in for the shell adapter in tests and --mock runs.

Returns success by default. Individual action ids can be told to fail
always, or to fail a number of times before succeeding.
"""

from __future__ import annotations

from envforge.adapters.base import Adapter, ExecutionContext
from envforge.core.models.action import Receipt


class MockAdapter(Adapter):
    """Universal mock adapter for testing."""

    def __init__(
        self,
        adapter_name: str = "shell",
        available: bool = True,
        default_output: str = "[mock] executed",
    ):
        self._name = adapter_name
        self._available = available
        self._default_output = default_output
        self._failures: dict[str, tuple[str, int | None]] = {}
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        """All execution contexts this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    @property
    def called_ids(self) -> list[str]:
        """Action ids in call order."""
        return [ctx.action.id for ctx in self._call_log]

    def calls_for(self, action_id: str) -> int:
        return self.called_ids.count(action_id)

    def is_available(self) -> bool:
        return self._available

    def set_failure(self, action_id: str, error: str = "Mock failure", times: int | None = None) -> None:
        """Make ``action_id`` fail; ``times=None`` means always."""
        self._failures[action_id] = (error, times)

    def clear_failure(self, action_id: str) -> None:
        self._failures.pop(action_id, None)

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        self._call_log.append(context)
        action_id = context.action.id

        if action_id in self._failures:
            error, remaining = self._failures[action_id]
            if remaining is None or remaining > 0:
                if remaining is not None:
                    self._failures[action_id] = (error, remaining - 1)
                return Receipt.failure(
                    adapter=self._name,
                    action_id=action_id,
                    error=error,
                    exit_code=1,
                )

        return Receipt.success(
            adapter=self._name,
            action_id=action_id,
            output=self._default_output,
            exit_code=0,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Clear call log and configured failures."""
        self._call_log.clear()
        self._failures.clear()
