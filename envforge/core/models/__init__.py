"""
Domain models — Pydantic types for envforge.

All models are re-exported here for convenient access:

    from envforge.core.models import Action, Receipt, StepDefinition, ExecutionState
"""

from envforge.core.models.action import Action, Receipt
from envforge.core.models.cleanup import (
    CATEGORY_ORDER,
    BackupArchive,
    CleanupCategory,
    CleanupReport,
    CleanupTarget,
    TargetOutcome,
    TargetStatus,
)
from envforge.core.models.destroy import DestroyStatus, TerraformDestroyResult
from envforge.core.models.settings import Settings, StepConfig
from envforge.core.models.state import CompletionRecord, ExecutionState
from envforge.core.models.step import (
    RecoveryCategory,
    StepDefinition,
    StepKeyError,
    StepKind,
)

__all__ = [
    "CATEGORY_ORDER",
    # action.py
    "Action",
    # cleanup.py
    "BackupArchive",
    "CleanupCategory",
    "CleanupReport",
    "CleanupTarget",
    # state.py
    "CompletionRecord",
    # destroy.py
    "DestroyStatus",
    "ExecutionState",
    "Receipt",
    # step.py
    "RecoveryCategory",
    # settings.py
    "Settings",
    "StepConfig",
    "StepDefinition",
    "StepKeyError",
    "StepKind",
    "TargetOutcome",
    "TargetStatus",
    "TerraformDestroyResult",
]
