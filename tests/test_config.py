"""
Tests for configuration loading — envforge.yml parsing and validation.
"""

import textwrap
from pathlib import Path

import pytest

from envforge.core.config.loader import (
    ConfigError,
    find_config_file,
    load_settings,
    project_root,
)
from envforge.core.models.settings import Settings
from envforge.core.models.step import RecoveryCategory, StepKind


@pytest.fixture
def valid_config(tmp_path: Path) -> Path:
    """Create a valid envforge.yml in a temp directory."""
    content = textwrap.dedent("""\
        version: 1
        state_dir: .envforge

        provisioning:
          steps:
            - key: toolchain
              label: Toolchain
              command: ./install.sh
            - key: verify-lint
              label: Linting
              command: make lint
              kind: verify

        verification:
          max_retries: 2
          steps:
            - key: lint
              label: Linting
              command: make lint
              category: lint

        teardown:
          parallelism: 8
          categories:
            repo:
              - "{root}/node_modules"
    """)
    path = tmp_path / "envforge.yml"
    path.write_text(content)
    return path


class TestLoadSettings:
    def test_valid(self, valid_config: Path):
        settings = load_settings(valid_config)

        assert settings.state_dir == ".envforge"
        assert [s.key for s in settings.provisioning_steps()] == ["toolchain", "verify-lint"]
        assert settings.provisioning_steps()[1].kind == StepKind.VERIFY
        assert settings.provisioning_steps()[1].max_retries == 2
        assert settings.teardown.parallelism == 8
        assert list(settings.teardown.categories) == ["repo"]

    def test_verification_steps_are_always_verify(self, valid_config: Path):
        (step,) = load_settings(valid_config).verification_steps()
        assert step.kind == StepKind.VERIFY
        assert step.category == RecoveryCategory.LINT

    def test_empty_file_means_defaults(self, tmp_path: Path):
        path = tmp_path / "envforge.yml"
        path.write_text("")
        assert load_settings(path) == Settings()

    def test_no_file_anywhere_means_defaults(self, monkeypatch):
        monkeypatch.setattr("envforge.core.config.loader.find_config_file", lambda: None)
        settings = load_settings()
        assert "repo" in settings.teardown.categories
        assert settings.provisioning_steps()[0].key == "toolchain"

    def test_explicit_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "envforge.yml")

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "envforge.yml"
        path.write_text("provisioning: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_settings(path)

    def test_non_mapping(self, tmp_path: Path):
        path = tmp_path / "envforge.yml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_settings(path)

    def test_bad_step_key(self, tmp_path: Path):
        path = tmp_path / "envforge.yml"
        path.write_text(textwrap.dedent("""\
            provisioning:
              steps:
                - key: "has spaces=bad"
                  command: "true"
        """))
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_settings(path)

    def test_zero_parallelism(self, tmp_path: Path):
        path = tmp_path / "envforge.yml"
        path.write_text("teardown:\n  parallelism: 0\n")
        with pytest.raises(ConfigError):
            load_settings(path)


class TestFindConfigFile:
    def test_walks_up(self, tmp_path: Path):
        (tmp_path / "envforge.yml").write_text("version: 1\n")
        nested = tmp_path / "apps" / "web" / "src"
        nested.mkdir(parents=True)
        assert find_config_file(nested) == (tmp_path / "envforge.yml").resolve()

    def test_nearest_wins(self, tmp_path: Path):
        (tmp_path / "envforge.yml").write_text("version: 1\n")
        nested = tmp_path / "sub"
        nested.mkdir()
        (nested / "envforge.yml").write_text("version: 1\n")
        assert find_config_file(nested) == (nested / "envforge.yml").resolve()


class TestProjectRoot:
    def test_from_config(self, valid_config: Path):
        assert project_root(valid_config) == valid_config.parent.resolve()

    def test_from_cwd(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert project_root(None) == tmp_path.resolve()
