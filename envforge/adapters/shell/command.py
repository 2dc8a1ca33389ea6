"""
Shell command adapter — run a command, capture its exit status and text.

Every provisioning step, verification command and remediation in the
default configuration goes through here.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from pathlib import Path

from envforge.adapters.base import Adapter, ExecutionContext
from envforge.core.models.action import Receipt

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 900


class ShellCommandAdapter(Adapter):
    """Execute shell commands and capture output.

    Action params:
        command (str): The command to execute.
        timeout (int): Timeout in seconds (default: 900).
        cwd (str): Working directory, relative to the repository root.
        env (dict): Extra environment variables.
    """

    @property
    def name(self) -> str:
        return "shell"

    def is_available(self) -> bool:
        return shutil.which("sh") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        if not context.action.params.get("command", ""):
            return False, "Missing required param: 'command'"

        cwd = context.working_dir
        if cwd and not Path(cwd).is_dir():
            return False, f"Working directory does not exist: {cwd}"

        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        command = context.action.params.get("command", "")
        timeout = context.action.params.get("timeout", DEFAULT_TIMEOUT)
        cwd = context.working_dir
        env = None
        if context.action.params.get("env"):
            env = {**os.environ, **context.action.params["env"]}

        logger.debug("Executing: %s (cwd=%s)", command, cwd)
        start = time.monotonic()

        try:
            result = subprocess.run(
                command,
                shell=True,
                cwd=cwd,
                env=env,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Command timed out after {timeout}s",
                metadata={"command": command, "timeout": timeout},
            )
        except OSError as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Command execution error: {e}",
                metadata={"command": command},
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        output = result.stdout.strip()
        stderr = result.stderr.strip()

        if result.returncode == 0:
            return Receipt.success(
                adapter=self.name,
                action_id=context.action.id,
                output=output,
                duration_ms=elapsed_ms,
                exit_code=0,
                metadata={"command": command, "stderr": stderr},
            )
        return Receipt.failure(
            adapter=self.name,
            action_id=context.action.id,
            error=stderr or output or f"Command exited with code {result.returncode}",
            output=output,
            duration_ms=elapsed_ms,
            exit_code=result.returncode,
            metadata={"command": command},
        )
