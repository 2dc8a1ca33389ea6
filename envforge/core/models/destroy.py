"""
Destroy results — one per infrastructure environment directory.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel


class DestroyStatus(StrEnum):
    """Classification of a destroy attempt.

    ``warning`` means the destroy call succeeded but residual state was
    detected afterwards.
    """

    SUCCESS = "success"
    WARNING = "warning"
    FAILURE = "failure"
    SKIPPED = "skipped"


# Backend kinds whose state lives outside this machine.
REMOTE_BACKENDS = frozenset({"s3", "gcs", "azurerm", "remote", "http", "consul", "cos", "oss"})


class TerraformDestroyResult(BaseModel):
    """Outcome for one environment. Serialized as a summary file entry."""

    environment: str
    status: DestroyStatus
    backend_kind: str = "unknown"
    message: str = ""

    @property
    def remote_backend(self) -> bool:
        return self.backend_kind in REMOTE_BACKENDS or self.backend_kind == "unknown"

    def to_summary_entry(self) -> dict[str, str]:
        """The `{environment, status, backend, message}` wire shape."""
        return {
            "environment": self.environment,
            "status": self.status.value,
            "backend": self.backend_kind,
            "message": self.message,
        }

    def describe(self) -> str:
        return f"{self.environment}: {self.status.value} - {self.message} (backend: {self.backend_kind})"
