"""
Unit tests for the destroy coordinator (mocked subprocess).

Every test mocks subprocess.run so no real `terraform` CLI is needed.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from envforge.core.models.destroy import DestroyStatus
from envforge.core.persistence.audit import AuditWriter
from envforge.core.services.terraform_destroy import (
    DestroyCoordinator,
    TerraformCli,
    detect_backend,
    discover_environments,
)


# ═══════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════


def _write_tf(path: Path, content: str = "# empty\n") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)


def _env(root: Path, name: str, backend: str | None = "local") -> Path:
    env_dir = root / name
    block = f'terraform {{\n  backend "{backend}" {{}}\n}}\n' if backend else "# no backend\n"
    _write_tf(env_dir / "main.tf", block)
    return env_dir


def _mock_result(stdout: str = "", stderr: str = "", rc: int = 0):
    """Create a mock subprocess.CompletedProcess."""
    return subprocess.CompletedProcess(
        args=["terraform"], returncode=rc,
        stdout=stdout, stderr=stderr,
    )


class _ScriptedRun:
    """subprocess.run stand-in answering by terraform sub-command."""

    def __init__(self, **by_command):
        self.by_command = by_command
        self.calls: list[tuple[str, ...]] = []

    def __call__(self, argv, **kwargs):
        args = tuple(argv[1:])
        self.calls.append(args)
        answer = self.by_command.get(args[0], _mock_result())
        if isinstance(answer, BaseException):
            raise answer
        return answer

    def commands(self) -> list[str]:
        return [c[0] for c in self.calls]


@pytest.fixture
def terraform_on_path():
    with patch("envforge.core.services.terraform_destroy.shutil.which",
               return_value="/usr/bin/terraform"):
        yield


def _destroy(env_dir: Path, run: _ScriptedRun, **kwargs):
    with patch("envforge.core.services.terraform_destroy.subprocess.run", side_effect=run):
        return DestroyCoordinator(**kwargs).destroy(env_dir)


# ═══════════════════════════════════════════════════════════════════
#  Backend detection / discovery
# ═══════════════════════════════════════════════════════════════════


class TestDetectBackend:
    def test_local(self, tmp_path: Path):
        assert detect_backend(_env(tmp_path, "dev", "local")) == "local"

    def test_backend_tf_wins(self, tmp_path: Path):
        env_dir = _env(tmp_path, "dev", "local")
        _write_tf(env_dir / "backend.tf", 'terraform {\n  backend "s3" {}\n}\n')
        assert detect_backend(env_dir) == "s3"

    def test_unknown_without_block(self, tmp_path: Path):
        assert detect_backend(_env(tmp_path, "dev", None)) == "unknown"

    def test_no_tf_files(self, tmp_path: Path):
        (tmp_path / "empty").mkdir()
        assert detect_backend(tmp_path / "empty") == "unknown"


class TestDiscoverEnvironments:
    def test_sorted_subdirectories(self, tmp_path: Path):
        for name in ("staging", "dev", ".terraform"):
            (tmp_path / name).mkdir()
        (tmp_path / "README.md").write_text("x")
        assert [p.name for p in discover_environments(tmp_path)] == ["dev", "staging"]

    def test_configured_order_kept(self, tmp_path: Path):
        for name in ("a", "b"):
            (tmp_path / name).mkdir()
        found = discover_environments(tmp_path, ["b", "missing", "a"])
        assert [p.name for p in found] == ["b", "a"]

    def test_missing_root(self, tmp_path: Path):
        assert discover_environments(tmp_path / "nope") == []


# ═══════════════════════════════════════════════════════════════════
#  Single environment
# ═══════════════════════════════════════════════════════════════════


@pytest.mark.usefixtures("terraform_on_path")
class TestDestroy:
    def test_success(self, tmp_path: Path):
        run = _ScriptedRun(destroy=_mock_result(stdout="Destroy complete!"))
        result = _destroy(_env(tmp_path, "dev"), run)

        assert result.status == DestroyStatus.SUCCESS
        assert result.environment == "dev"
        assert result.backend_kind == "local"
        assert run.commands() == ["init", "destroy", "state"]
        assert "-auto-approve" in run.calls[1]

    def test_residual_state_is_warning(self, tmp_path: Path):
        run = _ScriptedRun(state=_mock_result(stdout="aws_s3_bucket.logs\n"))
        result = _destroy(_env(tmp_path, "dev"), run)

        assert result.status == DestroyStatus.WARNING
        assert "state not empty" in result.message

    def test_unreadable_state_counts_as_clean(self, tmp_path: Path):
        run = _ScriptedRun(state=_mock_result(stderr="No state file", rc=1))
        assert _destroy(_env(tmp_path, "dev"), run).status == DestroyStatus.SUCCESS

    def test_destroy_failure(self, tmp_path: Path):
        run = _ScriptedRun(destroy=_mock_result(stderr="Error: locked", rc=1))
        result = _destroy(_env(tmp_path, "dev"), run)

        assert result.status == DestroyStatus.FAILURE
        assert result.message == "destroy failed"
        assert "state" not in run.commands()

    def test_init_failure_skips_destroy(self, tmp_path: Path):
        run = _ScriptedRun(init=_mock_result(stderr="Error: provider", rc=1))
        result = _destroy(_env(tmp_path, "dev"), run)

        assert result.status == DestroyStatus.FAILURE
        assert result.message == "terraform init failed"
        assert run.commands() == ["init"]

    def test_timeout_is_failure(self, tmp_path: Path):
        run = _ScriptedRun(destroy=subprocess.TimeoutExpired(["terraform"], 1800))
        assert _destroy(_env(tmp_path, "dev"), run).status == DestroyStatus.FAILURE

    def test_dry_run_runs_nothing(self, tmp_path: Path):
        run = _ScriptedRun()
        result = _destroy(_env(tmp_path, "dev"), run, dry_run=True)

        assert result.status == DestroyStatus.SKIPPED
        assert run.calls == []

    def test_remote_backend_warns_but_proceeds(self, tmp_path: Path, caplog):
        run = _ScriptedRun()
        with caplog.at_level("WARNING"):
            result = _destroy(_env(tmp_path, "prod", "s3"), run)

        assert result.status == DestroyStatus.SUCCESS
        assert result.remote_backend
        assert "remote backend detected" in caplog.text


class TestTerraformUnavailable:
    def test_skipped(self, tmp_path: Path):
        with patch("envforge.core.services.terraform_destroy.shutil.which", return_value=None):
            run = _ScriptedRun()
            result = _destroy(_env(tmp_path, "dev"), run)

        assert result.status == DestroyStatus.SKIPPED
        assert result.message == "terraform unavailable"
        assert run.calls == []


# ═══════════════════════════════════════════════════════════════════
#  All environments
# ═══════════════════════════════════════════════════════════════════


@pytest.mark.usefixtures("terraform_on_path")
class TestDestroyAll:
    def test_failure_does_not_stop_next_environment(self, tmp_path: Path):
        envs = [_env(tmp_path, "dev"), _env(tmp_path, "staging"), _env(tmp_path, "prod")]

        def run(argv, cwd, **kwargs):
            if argv[1] == "destroy" and cwd.endswith("staging"):
                return _mock_result(stderr="boom", rc=1)
            return _mock_result()

        audit = AuditWriter()
        with patch("envforge.core.services.terraform_destroy.subprocess.run", side_effect=run):
            results = DestroyCoordinator(audit=audit).destroy_all(envs)

        assert [(r.environment, r.status) for r in results] == [
            ("dev", DestroyStatus.SUCCESS),
            ("staging", DestroyStatus.FAILURE),
            ("prod", DestroyStatus.SUCCESS),
        ]
        events = [e.event for e in audit.entries]
        assert events == ["destroy.start", "destroy.dev", "destroy.staging", "destroy.prod", "destroy.end"]

    def test_custom_binary(self, tmp_path: Path):
        cli = TerraformCli(binary="tofu")
        with patch("envforge.core.services.terraform_destroy.subprocess.run",
                   return_value=_mock_result()) as mock_run:
            cli.run("version", cwd=tmp_path)
        assert mock_run.call_args[0][0] == ["tofu", "version"]
        assert mock_run.call_args[1]["cwd"] == str(tmp_path)
