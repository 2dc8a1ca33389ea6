"""
Tests for the recovery policy — remediation ladder, ceiling, aborts.
"""

import pytest

from envforge.adapters.mock import MockAdapter
from envforge.adapters.registry import AdapterRegistry
from envforge.core.engine.exit_codes import ExitCode
from envforge.core.engine.recovery import RecoveryPolicy, build_ladder
from envforge.core.models.action import Action
from envforge.core.models.settings import RemediationSettings
from envforge.core.models.step import RecoveryCategory, infer_category


@pytest.fixture
def policy(registry: AdapterRegistry) -> RecoveryPolicy:
    return RecoveryPolicy(registry)


def _remediations(mock: MockAdapter) -> list[str]:
    return [i for i in mock.called_ids if i.startswith("remediate:")]


class TestLadder:
    def test_attempt_zero_is_locked_reinstall_everywhere(self):
        ladder = build_ladder()
        for category in RecoveryCategory:
            assert ladder.select(category, 0).key == "reinstall-locked"

    @pytest.mark.parametrize(
        "category, expected",
        [
            (RecoveryCategory.LINT, "lint-autofix"),
            (RecoveryCategory.E2E, "browser-deps"),
            (RecoveryCategory.UNIT, "clear-build-cache"),
            (RecoveryCategory.TYPECHECK, "clear-build-cache"),
            (RecoveryCategory.GENERIC, "clear-build-cache"),
        ],
    )
    def test_attempt_one_is_category_specific(self, category, expected):
        assert build_ladder().select(category, 1).key == expected

    def test_attempt_two_purges(self):
        assert build_ladder().select(RecoveryCategory.LINT, 2).key == "purge-reinstall"

    def test_out_of_range_is_none(self):
        assert build_ladder().select(RecoveryCategory.LINT, 3) is None

    def test_commands_come_from_settings(self):
        ladder = build_ladder(RemediationSettings(lint_autofix="ruff check --fix ."))
        assert ladder.select(RecoveryCategory.LINT, 1).action.command == "ruff check --fix ."


class TestCategoryInference:
    @pytest.mark.parametrize(
        "label, expected",
        [
            ("Linting", RecoveryCategory.LINT),
            ("Type checking", RecoveryCategory.TYPECHECK),
            ("Playwright tests", RecoveryCategory.E2E),
            ("Unit tests", RecoveryCategory.UNIT),
            ("Docker build", RecoveryCategory.GENERIC),
        ],
    )
    def test_infer(self, label, expected):
        assert infer_category(label) == expected


class TestVerify:
    def test_success_first_try(self, policy, mock_adapter):
        code = policy.verify("Linting", Action.shell("lint", "pnpm lint"), 3)
        assert code == ExitCode.SUCCESS
        assert mock_adapter.called_ids == ["lint"]

    def test_ceiling_is_max_retries_plus_one(self, policy, mock_adapter):
        mock_adapter.set_failure("lint")
        result = policy.attempt("Linting", Action.shell("lint", "pnpm lint"), 3)

        assert result.exit_code == ExitCode.VERIFICATION_FAILED
        assert mock_adapter.calls_for("lint") == 4
        assert result.attempts == 4
        assert result.remediations == ["reinstall-locked", "lint-autofix", "purge-reinstall"]

    def test_zero_retries_means_single_attempt(self, policy, mock_adapter):
        mock_adapter.set_failure("unit")
        assert policy.verify("Unit tests", Action.shell("unit", "pnpm test"), 0) == (
            ExitCode.VERIFICATION_FAILED
        )
        assert mock_adapter.call_count == 1

    def test_remediation_runs_between_attempts(self, policy, mock_adapter):
        mock_adapter.set_failure("e2e", times=2)
        result = policy.attempt("Playwright tests", Action.shell("e2e", "pnpm test:e2e"), 3)

        assert result.ok
        assert mock_adapter.called_ids == [
            "e2e", "remediate:reinstall-locked",
            "e2e", "remediate:browser-deps",
            "e2e",
        ]

    def test_failed_remediation_aborts_without_retry(self, policy, mock_adapter):
        mock_adapter.set_failure("lint")
        mock_adapter.set_failure("remediate:reinstall-locked", error="lockfile out of date")

        result = policy.attempt("Linting", Action.shell("lint", "pnpm lint"), 3)

        assert result.exit_code == ExitCode.REMEDIATION_FAILED
        assert mock_adapter.calls_for("lint") == 1
        assert "lockfile out of date" in result.message

    def test_explicit_category_overrides_label(self, policy, mock_adapter):
        mock_adapter.set_failure("check", times=2)
        policy.attempt("Check", Action.shell("check", "make check"), 3, category=RecoveryCategory.LINT)
        assert _remediations(mock_adapter) == ["remediate:reinstall-locked", "remediate:lint-autofix"]
