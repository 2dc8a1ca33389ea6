"""
Handoff signaler — pass work to a privileged host process via a file.

    dispatch(script):
        write script to the marker path
        try to launch it elevated     (failure → warning only)
        poll until the file is gone   (bounded by timeout)

The host script deletes itself as its last act, so disappearance is the
only completion signal. A file still present at timeout means manual
action is required, whether or not the launch succeeded: "still
running" and "crashed" cannot be told apart.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_MARKER_PATH = "/mnt/c/ProgramData/envforge/uninstall-host.ps1"
DEFAULT_LAUNCHER = (
    "powershell.exe", "-NoProfile", "-ExecutionPolicy", "Bypass", "-File", "{script}",
)


class HandoffStatus(StrEnum):
    COMPLETED = "completed"
    MANUAL_REQUIRED = "manual-required"


@dataclass
class PollResult:
    """Outcome of one handoff."""

    status: HandoffStatus
    marker_path: str
    triggered: bool = False
    waited: float = 0.0
    host_path: str = ""
    error: str = ""

    @property
    def completed(self) -> bool:
        return self.status == HandoffStatus.COMPLETED

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "marker_path": self.marker_path,
            "host_path": self.host_path,
            "triggered": self.triggered,
            "waited": round(self.waited, 1),
            "error": self.error,
        }


# ═══════════════════════════════════════════════════════════════════
#  Host script
# ═══════════════════════════════════════════════════════════════════


def _ps_quote(value: str) -> str:
    """Single-quoted PowerShell literal."""
    return "'" + value.replace("'", "''") + "'"


def _ps_expand(value: str) -> str:
    """Double-quoted PowerShell string so $env: references expand."""
    return '"' + value.replace("`", "``").replace('"', '`"') + '"'


def _ps_array(items: list[str], quote: Callable[[str], str]) -> str:
    if not items:
        return "@()"
    body = ",\n".join(f"    {quote(item)}" for item in items)
    return f"@(\n{body}\n)"


_SCRIPT_TEMPLATE = """\
# envforge host cleanup. Deletes itself when finished.
[CmdletBinding()]
param([switch]$Elevated)

$identity = [Security.Principal.WindowsIdentity]::GetCurrent()
$principal = New-Object Security.Principal.WindowsPrincipal($identity)
if (-not $principal.IsInRole([Security.Principal.WindowsBuiltinRole]::Administrator)) {{
    $argv = @('-NoProfile','-ExecutionPolicy','Bypass','-File',$MyInvocation.MyCommand.Definition,'-Elevated')
    Start-Process -FilePath 'PowerShell.exe' -ArgumentList $argv -Verb RunAs
    exit
}}

function Write-Info {{ param($Message) Write-Host "[host] $Message" -ForegroundColor Cyan }}
function Write-Warn {{ param($Message) Write-Host "[host] $Message" -ForegroundColor Yellow }}

$packages = {packages}
foreach ($pkg in $packages) {{
    if (-not (Get-Command winget -ErrorAction SilentlyContinue)) {{
        Write-Warn "winget not available; skipping $pkg."
        continue
    }}
    Write-Info "Uninstalling $pkg via winget..."
    & winget uninstall --id $pkg --silent --accept-source-agreements --accept-package-agreements *> $null
    if ($LASTEXITCODE -ne 0) {{ Write-Warn "winget uninstall for $pkg returned exit code $LASTEXITCODE." }}
}}

$paths = {paths}
foreach ($path in $paths) {{
    if ([string]::IsNullOrWhiteSpace($path)) {{ continue }}
    if (Test-Path $path) {{
        Write-Info "Deleting $path"
        try {{
            Remove-Item -Path $path -Recurse -Force -ErrorAction Stop
        }} catch {{
            Write-Warn "Failed to delete ${{path}}: $($_.Exception.Message)"
        }}
    }}
}}

$envVars = {env_vars}
foreach ($name in $envVars) {{
    [Environment]::SetEnvironmentVariable($name, $null, [EnvironmentVariableTarget]::User)
    [Environment]::SetEnvironmentVariable($name, $null, [EnvironmentVariableTarget]::Machine)
}}

Write-Info "Host cleanup complete. A reboot is recommended."
Remove-Item -Path $MyInvocation.MyCommand.Definition -Force
"""


def render_host_script(
    paths: list[str],
    packages: list[str],
    env_vars: list[str],
) -> str:
    """PowerShell script that elevates, uninstalls, cleans up, then deletes itself."""
    return _SCRIPT_TEMPLATE.format(
        packages=_ps_array(packages, _ps_quote),
        paths=_ps_array(paths, _ps_expand),
        env_vars=_ps_array(env_vars, _ps_quote),
    )


def to_host_path(path: Path) -> str:
    """Windows form of ``path`` via ``wslpath -w``, or the path unchanged."""
    wslpath = shutil.which("wslpath")
    if wslpath is None:
        return str(path)
    try:
        result = subprocess.run(
            [wslpath, "-w", str(path)],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired):
        return str(path)
    converted = result.stdout.strip()
    return converted if result.returncode == 0 and converted else str(path)


# ═══════════════════════════════════════════════════════════════════
#  Signaler
# ═══════════════════════════════════════════════════════════════════


def _launch(argv: list[str]) -> tuple[bool, str]:
    """Start the privileged launcher without waiting for the script."""
    if shutil.which(argv[0]) is None:
        return False, f"{argv[0]} not available"
    try:
        subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        return False, str(e)
    return True, ""


class HandoffSignaler:
    """Write a marker script, trigger it, and wait for it to vanish.

    Args:
        marker_path: Well-known location of the script.
        launcher: argv template; ``{script}`` is replaced by the host path.
        poll_interval: Seconds between existence checks.
        timeout: Max seconds to wait.
        launch: Process starter, ``argv -> (started, error)``.
        path_converter: Local path → path as seen by the host.
        sleep / clock: Injectable for tests.
    """

    def __init__(
        self,
        marker_path: Path | str = DEFAULT_MARKER_PATH,
        *,
        launcher: list[str] | tuple[str, ...] = DEFAULT_LAUNCHER,
        poll_interval: float = 2.0,
        timeout: float = 120.0,
        launch: Callable[[list[str]], tuple[bool, str]] = _launch,
        path_converter: Callable[[Path], str] = to_host_path,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.marker_path = Path(marker_path)
        self.launcher = list(launcher)
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._launch = launch
        self._path_converter = path_converter
        self._sleep = sleep
        self._clock = clock

    def write_marker(self, script: str) -> None:
        """Atomically place ``script`` at the marker path (mode 0600)."""
        self.marker_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.marker_path.parent, prefix=".handoff_", suffix=".tmp",
        )
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\r\n") as fh:
                fh.write(script)
            os.chmod(tmp, 0o600)
            os.replace(tmp, self.marker_path)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise

    def dispatch(self, script: str) -> PollResult:
        """Hand ``script`` to the privileged side and wait for completion."""
        self.write_marker(script)
        host_path = self._path_converter(self.marker_path)
        logger.info("Handoff script written to %s", self.marker_path)

        argv = [part.replace("{script}", host_path) for part in self.launcher]
        triggered, error = self._launch(argv)
        if triggered:
            logger.info("Host cleanup launched (administrator approval required)")
        else:
            logger.warning("Could not launch host cleanup automatically: %s", error)

        waited = self._poll()
        if not self.marker_path.exists():
            logger.info("Host cleanup finished after %.1fs", waited)
            return PollResult(
                status=HandoffStatus.COMPLETED,
                marker_path=str(self.marker_path),
                triggered=triggered,
                waited=waited,
                host_path=host_path,
                error=error,
            )

        logger.warning(
            "Host cleanup not confirmed after %.0fs; run %s manually as administrator",
            waited, host_path,
        )
        return PollResult(
            status=HandoffStatus.MANUAL_REQUIRED,
            marker_path=str(self.marker_path),
            triggered=triggered,
            waited=waited,
            host_path=host_path,
            error=error,
        )

    def _poll(self) -> float:
        """Wait until the marker is gone or the timeout passes."""
        start = self._clock()
        while self.marker_path.exists():
            elapsed = self._clock() - start
            if elapsed >= self.timeout:
                return elapsed
            self._sleep(min(self.poll_interval, self.timeout - elapsed))
        return self._clock() - start
