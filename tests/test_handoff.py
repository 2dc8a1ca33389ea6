"""
Tests for the host handoff — marker file, launch, bounded polling.

Time is simulated: ``sleep`` advances a fake clock, so no test waits.
"""

import os
import stat
from pathlib import Path

import pytest

from envforge.core.services.handoff import (
    HandoffSignaler,
    HandoffStatus,
    render_host_script,
)


class FakeTime:
    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []
        self.on_sleep = None

    def clock(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep is not None:
            self.on_sleep(len(self.sleeps))


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture
def marker(tmp_path: Path) -> Path:
    return tmp_path / "ProgramData" / "envforge" / "uninstall-host.ps1"


def _signaler(marker: Path, fake_time: FakeTime, launch, **kwargs) -> HandoffSignaler:
    return HandoffSignaler(
        marker,
        launch=launch,
        path_converter=lambda p: "C:\\ProgramData\\envforge\\uninstall-host.ps1",
        sleep=fake_time.sleep,
        clock=fake_time.clock,
        poll_interval=kwargs.pop("poll_interval", 2.0),
        timeout=kwargs.pop("timeout", 10.0),
        **kwargs,
    )


class TestMarker:
    def test_written_with_crlf_and_private_mode(self, marker, fake_time):
        signaler = _signaler(marker, fake_time, launch=lambda argv: (True, ""))
        signaler.write_marker("line one\nline two\n")

        assert marker.read_bytes() == b"line one\r\nline two\r\n"
        assert stat.S_IMODE(os.stat(marker).st_mode) == 0o600
        assert [p.name for p in marker.parent.iterdir()] == [marker.name]


class TestDispatch:
    def test_completed_when_host_deletes_marker(self, marker, fake_time):
        launched = []

        def launch(argv):
            launched.append(argv)
            return True, ""

        fake_time.on_sleep = lambda n: marker.unlink() if n == 2 else None
        result = _signaler(marker, fake_time, launch).dispatch("Write-Host hi\n")

        assert result.status == HandoffStatus.COMPLETED
        assert result.completed
        assert result.triggered
        assert result.waited == pytest.approx(4.0)
        assert launched[0][-1] == "C:\\ProgramData\\envforge\\uninstall-host.ps1"
        assert launched[0][0] == "powershell.exe"

    def test_still_present_at_timeout_is_manual(self, marker, fake_time):
        result = _signaler(marker, fake_time, launch=lambda argv: (True, "")).dispatch("x\n")

        assert result.status == HandoffStatus.MANUAL_REQUIRED
        assert result.triggered
        assert result.waited == pytest.approx(10.0)
        assert sum(fake_time.sleeps) == pytest.approx(10.0)
        assert marker.exists()

    def test_launch_failure_still_polls(self, marker, fake_time, caplog):
        with caplog.at_level("WARNING"):
            result = _signaler(
                marker, fake_time, launch=lambda argv: (False, "powershell.exe not available"),
            ).dispatch("x\n")

        assert result.status == HandoffStatus.MANUAL_REQUIRED
        assert not result.triggered
        assert result.error == "powershell.exe not available"
        assert fake_time.sleeps
        assert "Could not launch" in caplog.text

    def test_untriggered_but_consumed_is_completed(self, marker, fake_time):
        fake_time.on_sleep = lambda n: marker.unlink()
        result = _signaler(marker, fake_time, launch=lambda argv: (False, "no launcher")).dispatch("x\n")
        assert result.completed

    def test_custom_launcher_template(self, marker, fake_time):
        seen = []
        signaler = _signaler(
            marker, fake_time,
            launch=lambda argv: (seen.append(argv), (True, ""))[1],
            launcher=["cmd.exe", "/c", "start", "{script}"],
            timeout=0.0,
        )
        signaler.dispatch("x\n")
        assert seen == [["cmd.exe", "/c", "start", "C:\\ProgramData\\envforge\\uninstall-host.ps1"]]

    def test_to_dict(self, marker, fake_time):
        result = _signaler(marker, fake_time, launch=lambda argv: (True, ""), timeout=0.0).dispatch("x")
        data = result.to_dict()
        assert data["status"] == "manual-required"
        assert data["marker_path"] == str(marker)


class TestHostScript:
    def test_contents(self):
        script = render_host_script(
            paths=[r"$env:LOCALAPPDATA\Cursor"],
            packages=["Cursor.Cursor"],
            env_vars=["GH_TOKEN"],
        )
        assert "'Cursor.Cursor'" in script
        assert '"$env:LOCALAPPDATA\\Cursor"' in script
        assert "'GH_TOKEN'" in script
        assert "winget uninstall" in script
        assert "-Verb RunAs" in script
        assert script.rstrip().endswith("Remove-Item -Path $MyInvocation.MyCommand.Definition -Force")

    def test_quotes_are_escaped(self):
        script = render_host_script(paths=[], packages=["O'Brien.Tool"], env_vars=[])
        assert "'O''Brien.Tool'" in script
        assert "$paths = @()" in script
