"""Process exit codes shared by the engine, the use cases and the CLI."""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    STEP_FAILED = 1
    CONFIG_ERROR = 2
    VERIFICATION_FAILED = 3
    REMEDIATION_FAILED = 4
    RESIDUAL = 5
