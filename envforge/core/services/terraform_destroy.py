"""
Destroy coordinator — tear down each infrastructure environment.

For every environment directory:

    detect backend   regex over *.tf, no HCL parsing
    init             ``terraform init -upgrade``
    destroy          ``terraform destroy -auto-approve``
    inventory        ``terraform state list``; non-empty → warning

Results keep the order environments were processed in. A failure in
one environment never stops the next.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from pathlib import Path

from envforge.core.models.destroy import REMOTE_BACKENDS, DestroyStatus, TerraformDestroyResult
from envforge.core.persistence.audit import AuditWriter

logger = logging.getLogger(__name__)

_BACKEND_RE = re.compile(r'backend\s*"([^"]+)"')

_DESTROY_TIMEOUT = 1800
_INIT_TIMEOUT = 600
_STATE_TIMEOUT = 120


# ═══════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════


def detect_backend(env_dir: Path) -> str:
    """First ``backend "<kind>"`` declaration in the env's .tf files.

    ``backend.tf`` is checked first; returns ``"unknown"`` when nothing
    matches or the files cannot be read.
    """
    candidates = sorted(env_dir.glob("*.tf"), key=lambda p: (p.name != "backend.tf", p.name))
    for tf_file in candidates:
        try:
            content = tf_file.read_text(encoding="utf-8", errors="replace")
        except OSError:
            continue
        match = _BACKEND_RE.search(content)
        if match:
            return match.group(1)
    return "unknown"


def discover_environments(envs_root: Path, names: list[str] | None = None) -> list[Path]:
    """Environment directories to destroy.

    With explicit ``names`` the configured order is kept (missing ones
    are logged and dropped); otherwise every subdirectory, sorted.
    """
    if names:
        found = []
        for name in names:
            env_dir = envs_root / name
            if env_dir.is_dir():
                found.append(env_dir)
            else:
                logger.warning("Configured environment not found: %s", env_dir)
        return found

    if not envs_root.is_dir():
        return []
    return sorted(p for p in envs_root.iterdir() if p.is_dir() and not p.name.startswith("."))


class TerraformCli:
    """Thin subprocess wrapper around the terraform binary."""

    def __init__(self, binary: str = "terraform"):
        self.binary = binary

    def available(self) -> bool:
        return shutil.which(self.binary) is not None

    def run(self, *args: str, cwd: Path, timeout: int = 60) -> subprocess.CompletedProcess[str]:
        """Run a terraform command."""
        return subprocess.run(
            [self.binary, *args],
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=timeout,
        )


def _tail(result: subprocess.CompletedProcess[str]) -> str:
    text = (result.stderr or result.stdout or "").strip()
    return text.splitlines()[-1] if text else f"exit status {result.returncode}"


# ═══════════════════════════════════════════════════════════════════
#  Coordinator
# ═══════════════════════════════════════════════════════════════════


class DestroyCoordinator:
    """Destroy environments one by one and classify each outcome.

    Args:
        cli: Terraform wrapper (default: the ``terraform`` on PATH).
        dry_run: Record every environment as skipped without running anything.
        audit: Event ledger.
    """

    def __init__(
        self,
        cli: TerraformCli | None = None,
        *,
        dry_run: bool = False,
        audit: AuditWriter | None = None,
    ):
        self._cli = cli or TerraformCli()
        self._dry_run = dry_run
        self._audit = audit or AuditWriter()

    def destroy_all(self, environments: list[Path]) -> list[TerraformDestroyResult]:
        """Destroy ``environments`` in the given order."""
        self._audit.emit("destroy.start", "begin", str(len(environments)))
        results: list[TerraformDestroyResult] = []
        if not environments:
            logger.info("No infrastructure environments found")
        for env_dir in environments:
            result = self.destroy(env_dir)
            results.append(result)
            self._audit.emit(f"destroy.{result.environment}", result.status.value, result.message)
        self._audit.emit("destroy.end", "complete", str(len(results)))
        return results

    def destroy(self, env_dir: Path) -> TerraformDestroyResult:
        """Destroy a single environment directory."""
        env = env_dir.name
        backend = detect_backend(env_dir)
        logger.info("Terraform destroy in %s (backend: %s)", env_dir, backend)

        def result(status: DestroyStatus, message: str) -> TerraformDestroyResult:
            return TerraformDestroyResult(
                environment=env, status=status, backend_kind=backend, message=message,
            )

        if backend == "unknown":
            logger.warning(
                "%s: backend type could not be confirmed; assuming remote backend for safety", env,
            )
        elif backend in REMOTE_BACKENDS:
            logger.warning(
                "%s: remote backend detected (%s); verify remote state is cleaned up", env, backend,
            )

        if self._dry_run:
            return result(DestroyStatus.SKIPPED, "dry-run")

        if not self._cli.available():
            logger.warning("terraform not installed; skipping destroy for %s", env)
            return result(DestroyStatus.SKIPPED, "terraform unavailable")

        try:
            init = self._cli.run("init", "-upgrade", "-input=false", cwd=env_dir, timeout=_INIT_TIMEOUT)
            if init.returncode != 0:
                logger.error("terraform init failed in %s: %s", env_dir, _tail(init))
                return result(DestroyStatus.FAILURE, "terraform init failed")

            destroy = self._cli.run(
                "destroy", "-auto-approve", "-input=false", "-no-color",
                cwd=env_dir, timeout=_DESTROY_TIMEOUT,
            )
        except subprocess.TimeoutExpired as e:
            logger.error("terraform timed out in %s: %s", env_dir, e)
            return result(DestroyStatus.FAILURE, "terraform timed out")
        except OSError as e:
            logger.error("terraform could not run in %s: %s", env_dir, e)
            return result(DestroyStatus.FAILURE, f"terraform could not run: {e}")

        if destroy.returncode != 0:
            logger.error("terraform destroy failed in %s: %s", env_dir, _tail(destroy))
            return result(DestroyStatus.FAILURE, "destroy failed")

        residual = self._state_inventory(env_dir)
        if residual:
            logger.warning("%s: destroy succeeded but %d resources remain in state", env, len(residual))
            return result(DestroyStatus.WARNING, "destroy succeeded but state not empty")
        return result(DestroyStatus.SUCCESS, "destroy succeeded")

    def _state_inventory(self, env_dir: Path) -> list[str]:
        """Resources still in state; empty when the list cannot be read."""
        try:
            listing = self._cli.run("state", "list", cwd=env_dir, timeout=_STATE_TIMEOUT)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("terraform state list unavailable in %s: %s", env_dir, e)
            return []
        if listing.returncode != 0:
            return []
        return [line.strip() for line in listing.stdout.splitlines() if line.strip()]
