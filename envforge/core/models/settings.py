"""
Settings — the envforge.yml schema.

Every section has defaults that reproduce the stock platform: the
setup pipeline (toolchain, onboarding, infrastructure bootstrap,
repository hardening, then verification) and the uninstall target
lists. A repository only needs an envforge.yml to deviate from them.

Paths may use ``{root}`` (repository root) and ``{home}`` placeholders,
``~`` and ``$VARS``; globs are expanded at resolution time.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from envforge.core.models.action import Action
from envforge.core.models.step import (
    RecoveryCategory,
    StepDefinition,
    StepKind,
    validate_step_key,
)


class StepConfig(BaseModel):
    """A pipeline step as written in envforge.yml."""

    key: str
    label: str = ""
    command: str
    kind: StepKind = StepKind.PROVISION
    category: RecoveryCategory | None = None
    max_retries: int | None = None
    cwd: str | None = None
    timeout: int = 900
    env: dict[str, str] = Field(default_factory=dict)

    @field_validator("key")
    @classmethod
    def _check_key(cls, value: str) -> str:
        return validate_step_key(value)

    def to_step(self, default_retries: int = 3) -> StepDefinition:
        params: dict = {"timeout": self.timeout}
        if self.cwd:
            params["cwd"] = self.cwd
        if self.env:
            params["env"] = dict(self.env)
        return StepDefinition(
            key=self.key,
            label=self.label or self.key,
            action=Action.shell(self.key, self.command, **params),
            kind=self.kind,
            category=self.category,
            max_retries=self.max_retries if self.max_retries is not None else default_retries,
        )


def _default_provisioning_steps() -> list[StepConfig]:
    return [
        StepConfig(key="toolchain", label="Toolchain", command="bash scripts/install-toolchain.sh"),
        StepConfig(key="onboarding", label="Onboarding", command="bash scripts/onboard.sh"),
        StepConfig(
            key="infra-bootstrap",
            label="Infrastructure bootstrap",
            command="bash scripts/bootstrap-infra.sh",
        ),
        StepConfig(
            key="repo-hardening",
            label="Repository hardening",
            command="bash scripts/github-hardening.sh",
        ),
        *_default_verification_steps(),
    ]


def _default_verification_steps() -> list[StepConfig]:
    return [
        StepConfig(
            key="verify-lint",
            label="Linting",
            command="pnpm lint",
            kind=StepKind.VERIFY,
            category=RecoveryCategory.LINT,
        ),
        StepConfig(
            key="verify-typecheck",
            label="Type checking",
            command="pnpm type-check",
            kind=StepKind.VERIFY,
            category=RecoveryCategory.TYPECHECK,
        ),
        StepConfig(
            key="verify-unit",
            label="Unit tests",
            command="pnpm --filter @ai-dev-platform/web test",
            kind=StepKind.VERIFY,
            category=RecoveryCategory.UNIT,
        ),
        StepConfig(
            key="verify-e2e",
            label="Playwright tests",
            command="pnpm --filter @ai-dev-platform/web test:e2e",
            kind=StepKind.VERIFY,
            category=RecoveryCategory.E2E,
        ),
    ]


class ProvisioningSettings(BaseModel):
    steps: list[StepConfig] = Field(default_factory=_default_provisioning_steps)


class RemediationSettings(BaseModel):
    """Commands the recovery policy may run between verification attempts."""

    reinstall_locked: str = "pnpm install --frozen-lockfile"
    lint_autofix: str = "pnpm lint --fix"
    browser_deps: str = "pnpm --filter @ai-dev-platform/web exec playwright install --with-deps"
    clear_build_cache: str = "rm -rf .turbo apps/web/.next node_modules/.cache"
    purge_and_reinstall: str = "pnpm store prune && rm -rf node_modules && pnpm install --force"
    timeout: int = 900


class VerificationSettings(BaseModel):
    steps: list[StepConfig] = Field(default_factory=_default_verification_steps)
    max_retries: int = 3
    remediation: RemediationSettings = Field(default_factory=RemediationSettings)


def _default_categories() -> dict[str, list[str]]:
    return {
        "repo": [
            "{root}/node_modules",
            "{root}/.pnpm-store",
            "{root}/.turbo",
            "{root}/.playwright",
            "{root}/.cache",
            "{root}/.pnpm-debug.log",
            "{root}/.onboarding_complete",
            "{root}/tmp",
            "{root}/artifacts",
            "{root}/apps/web/node_modules",
            "{root}/apps/web/.next",
            "{root}/apps/web/playwright-report",
            "{root}/apps/web/test-results",
            "{root}/apps/web/playwright-report.zip",
            "{root}/packages/*/node_modules",
            "{root}/.git/hooks/pre-commit",
            "{root}/.git/hooks/pre-push",
        ],
        "infra-local": [
            "{root}/infra/terraform/.terraform",
            "{root}/infra/terraform/.terraform.lock.hcl",
            "{root}/infra/terraform/terraform.tfstate",
            "{root}/infra/terraform/terraform.tfstate.backup",
            "{root}/infra/terraform/envs/*/.terraform",
            "{root}/infra/terraform/envs/*/.terraform.lock.hcl",
            "{root}/infra/terraform/envs/*/terraform.tfstate",
            "{root}/infra/terraform/envs/*/terraform.tfstate.backup",
        ],
        "home-cache": [
            "{home}/.cursor",
            "{home}/.codex",
            "{home}/.cache/Cursor",
            "{home}/.cache/ms-playwright",
            "{home}/.cache/pnpm",
            "{home}/.local/share/pnpm",
            "{home}/.pnpm-store",
            "{home}/.turbo",
            "{home}/.npm",
            "{home}/.config/gcloud",
            "{home}/.terraform.d",
        ],
    }


class TeardownSettings(BaseModel):
    pre_steps: list[StepConfig] = Field(default_factory=list)
    categories: dict[str, list[str]] = Field(default_factory=_default_categories)
    parallelism: int = 4
    delete_attempts: int = 3
    retry_delay: float = 1.0
    blocking_processes: list[str] = Field(
        default_factory=lambda: ["node", "turbo", "pnpm", "esbuild", "terraform"]
    )
    backup_dir: str | None = None
    terraform_envs_root: str = "infra/terraform/envs"
    environments: list[str] = Field(default_factory=list)
    summary_file: str = "uninstall-terraform-summary.json"

    @field_validator("parallelism")
    @classmethod
    def _check_parallelism(cls, value: int) -> int:
        if value < 1:
            raise ValueError("parallelism must be >= 1")
        return value


class HandoffSettings(BaseModel):
    marker_path: str = "/mnt/c/ProgramData/envforge/uninstall-host.ps1"
    launcher: list[str] = Field(
        default_factory=lambda: [
            "powershell.exe", "-NoProfile", "-ExecutionPolicy", "Bypass", "-File", "{script}",
        ]
    )
    poll_interval: float = 2.0
    timeout: float = 120.0
    packages: list[str] = Field(
        default_factory=lambda: [
            "Cursor.Cursor",
            "Docker.DockerDesktop",
            "Docker.DockerDesktop.App",
            "Docker.DockerDesktopEdge",
        ]
    )
    paths: list[str] = Field(
        default_factory=lambda: [
            r"$env:LOCALAPPDATA\envforge",
            r"$env:LOCALAPPDATA\Cursor",
            r"$env:LOCALAPPDATA\Programs\Cursor",
            r"$env:APPDATA\Cursor",
            r"$env:UserProfile\.cursor",
            r"$env:UserProfile\.pnpm-store",
            r"$env:UserProfile\.turbo",
            r"$env:UserProfile\AppData\Local\Docker",
            r"$env:UserProfile\AppData\Roaming\Docker",
            r"$env:ProgramData\DockerDesktop",
        ]
    )
    env_vars: list[str] = Field(
        default_factory=lambda: [
            "INFISICAL_TOKEN", "GH_TOKEN", "WSLENV",
            "DOCKER_CERT_PATH", "DOCKER_HOST", "DOCKER_DISTRO_NAME",
        ]
    )


class Settings(BaseModel):
    """Root configuration — loaded from envforge.yml or all defaults."""

    version: int = 1
    state_dir: str = ".state"
    provisioning: ProvisioningSettings = Field(default_factory=ProvisioningSettings)
    verification: VerificationSettings = Field(default_factory=VerificationSettings)
    teardown: TeardownSettings = Field(default_factory=TeardownSettings)
    handoff: HandoffSettings = Field(default_factory=HandoffSettings)

    def provisioning_steps(self) -> list[StepDefinition]:
        retries = self.verification.max_retries
        return [s.to_step(retries) for s in self.provisioning.steps]

    def verification_steps(self) -> list[StepDefinition]:
        retries = self.verification.max_retries
        steps = []
        for config in self.verification.steps:
            step = config.to_step(retries)
            if step.kind != StepKind.VERIFY:
                step = step.model_copy(update={"kind": StepKind.VERIFY})
            steps.append(step)
        return steps

    def teardown_steps(self) -> list[StepDefinition]:
        return [s.to_step() for s in self.teardown.pre_steps]
