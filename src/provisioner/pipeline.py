"""Straight-line provisioning pipeline with explicit data dependencies.

Each step declares the named outputs it requires and the ones it provides
(``app_id``, ``tenant_id``, ``principal_id``, ...). A pipeline refuses to
build if a step requires an output that no earlier step provides, so the
order is enforced by data dependency rather than position alone.

Execution is sequential and halts at the first failed resource. Steps already
applied are left in place; re-running converges.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .azure_cloud import CloudProvisioner
from .config import Config
from .errors import ProvisioningError
from .github import RepoSecretsManager
from .intake import intake_resources
from .models import ProvisioningSpec
from .reconciler import Outcome, ReconcileResult, Reconciler, Resource
from .resources import (
    ApplicationResource,
    AzureSession,
    BranchPolicyResource,
    EnvironmentResource,
    FederatedCredentialResource,
    GitHubSession,
    ManagedEnvironmentResource,
    ProviderRegistration,
    RepositorySecretResource,
    ResourceGroupResource,
    RoleAssignmentResource,
    ServicePrincipalResource,
)

logger = logging.getLogger(__name__)

MANAGED_BY_TAG = "azprov"

# Secret name -> pipeline output holding its value
IDENTITY_SECRETS: dict[str, str] = {
    "AZURE_CLIENT_ID": "app_id",
    "AZURE_TENANT_ID": "tenant_id",
    "AZURE_SUBSCRIPTION_ID": "subscription_id",
}


class PipelineError(Exception):
    """Raised when steps are declared in an order their data cannot satisfy."""

    pass


@dataclass(frozen=True)
class Step:
    """A named group of resources reconciled together."""

    name: str
    resources: Callable[[Mapping[str, str]], Sequence[Resource]]
    requires: tuple[str, ...] = ()
    provides: tuple[str, ...] = ()


@dataclass
class StepResult:
    name: str
    results: list[ReconcileResult] = field(default_factory=list)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None and all(r.success for r in self.results)


@dataclass
class PipelineResult:
    """Result of a full pipeline run."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    steps: list[StepResult] = field(default_factory=list)
    outputs: dict[str, str] = field(default_factory=dict)
    halted_at: str | None = None

    @property
    def success(self) -> bool:
        return self.halted_at is None and all(s.success for s in self.steps)

    @property
    def results(self) -> list[ReconcileResult]:
        return [r for s in self.steps for r in s.results]

    @property
    def all_satisfied(self) -> bool:
        """True when the run changed nothing."""
        return self.success and all(
            r.outcome == Outcome.ALREADY_SATISFIED for r in self.results
        )

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()


class Pipeline:
    """Ordered steps whose inputs are the outputs of earlier steps."""

    def __init__(self, steps: Sequence[Step], reconciler: Reconciler | None = None) -> None:
        self._validate(steps)
        self._steps = list(steps)
        self._reconciler = reconciler or Reconciler()

    @property
    def step_names(self) -> list[str]:
        return [s.name for s in self._steps]

    @staticmethod
    def _validate(steps: Sequence[Step]) -> None:
        errors: list[str] = []
        seen: set[str] = set()
        available: set[str] = set()

        for step in steps:
            if step.name in seen:
                errors.append(f"duplicate step name '{step.name}'")
            seen.add(step.name)

            missing = [r for r in step.requires if r not in available]
            if missing:
                errors.append(
                    f"step '{step.name}' requires {missing} which no earlier step provides"
                )
            available.update(step.provides)

        if errors:
            raise PipelineError("Invalid pipeline:\n  - " + "\n  - ".join(errors))

    def run(self, initial_outputs: Mapping[str, str] | None = None) -> PipelineResult:
        """Run every step in order, halting at the first failure."""
        result = PipelineResult(outputs=dict(initial_outputs or {}))

        for step in self._steps:
            step_result = self._run_step(step, result.outputs)
            result.steps.append(step_result)
            if not step_result.success:
                result.halted_at = step.name
                logger.error(
                    f"Provisioning halted at step '{step.name}'",
                    extra={"step": step.name, "error": step_result.error},
                )
                break

        result.end_time = datetime.now(UTC)
        outcomes: dict[str, int] = {}
        for r in result.results:
            outcomes[r.outcome.value] = outcomes.get(r.outcome.value, 0) + 1
        logger.info(
            f"Provisioning finished: success={result.success}, "
            f"duration={result.duration_seconds:.1f}s",
            extra={"outcomes": outcomes, "halted_at": result.halted_at},
        )
        return result

    def _run_step(self, step: Step, outputs: dict[str, str]) -> StepResult:
        step_result = StepResult(name=step.name)
        logger.info(f"Step '{step.name}'", extra={"step": step.name})

        try:
            resources = step.resources(outputs)
        except ProvisioningError as e:
            step_result.error = str(e)
            return step_result

        for resource in resources:
            reconciled = self._reconciler.reconcile(resource)
            step_result.results.append(reconciled)
            if not reconciled.success:
                step_result.error = reconciled.reason
                return step_result
            outputs.update(reconciled.outputs)

        missing = [p for p in step.provides if not outputs.get(p)]
        if missing:
            step_result.error = f"step did not produce {missing}"
        return step_result


def build_pipeline(
    config: Config,
    spec: ProvisioningSpec,
    cloud: CloudProvisioner,
    repo: RepoSecretsManager,
    database_values: Mapping[str, str] | None = None,
    reconciler: Reconciler | None = None,
) -> Pipeline:
    """Assemble the standard provisioning pipeline.

    Raises:
        EmptySecretValueError: If set-new intake is missing a value. Checked
            here so that nothing is provisioned with incomplete input.
    """
    location = spec.location or config.location
    tags = {**spec.tags, "managedBy": MANAGED_BY_TAG}
    repository = config.github_repository
    database_resources = intake_resources(
        config.secret_mode, config.secret_prefix, repo, database_values
    )

    def environments(o: Mapping[str, str]) -> list[Resource]:
        resources: list[Resource] = []
        for env in spec.environments:
            resources.append(EnvironmentResource(repo, env.name, env.to_request_body()))
            resources += [
                BranchPolicyResource(repo, env.name, pattern) for pattern in env.branch_patterns
            ]
        return resources

    def identity_secrets(o: Mapping[str, str]) -> list[Resource]:
        return [
            RepositorySecretResource(repo, name, o[output], overwrite=config.overwrite_secrets)
            for name, output in IDENTITY_SECRETS.items()
        ]

    steps: list[Step] = [
        Step(
            "azure-login",
            lambda o: [AzureSession(cloud, config.subscription_id)],
            provides=("tenant_id", "subscription_id"),
        ),
        Step(
            "resource-providers",
            lambda o: [ProviderRegistration(cloud, ns) for ns in spec.providers],
            requires=("subscription_id",),
        ),
        Step(
            "resource-group",
            lambda o: [
                ResourceGroupResource(
                    cloud, o["subscription_id"], spec.resource_group_name, location, tags
                )
            ],
            requires=("subscription_id",),
            provides=("resource_group_id",),
        ),
    ]

    cae = spec.container_apps_environment
    if cae is not None:
        steps.append(
            Step(
                "container-apps-environment",
                lambda o: [
                    ManagedEnvironmentResource(
                        cloud, spec.resource_group_name, cae.name, location, tags
                    )
                ],
                requires=("resource_group_id",),
                provides=("container_apps_environment_id",),
            )
        )

    steps += [
        Step(
            "application",
            lambda o: [ApplicationResource(cloud, spec.application_display_name(repository))],
            provides=("app_id",),
        ),
        Step(
            "service-principal",
            lambda o: [ServicePrincipalResource(cloud, o["app_id"])],
            requires=("app_id",),
            provides=("principal_id",),
        ),
        Step(
            "federated-credentials",
            lambda o: [
                FederatedCredentialResource(cloud, o["app_id"], fc.to_payload(repository))
                for fc in spec.federated_credentials
            ],
            requires=("app_id",),
        ),
        Step(
            "role-assignment",
            lambda o: [
                RoleAssignmentResource(
                    cloud, o["principal_id"], spec.role_definition_name, o["resource_group_id"]
                )
            ],
            requires=("principal_id", "resource_group_id"),
        ),
        Step(
            "github-login",
            lambda o: [GitHubSession(repo)],
            provides=("github_host",),
        ),
        Step(
            "identity-secrets",
            identity_secrets,
            requires=("app_id", "tenant_id", "subscription_id", "github_host"),
        ),
        Step(
            "database-secrets",
            lambda o: database_resources,
            requires=("github_host",),
        ),
        Step(
            "environments",
            environments,
            requires=("github_host",),
        ),
    ]

    return Pipeline(steps, reconciler=reconciler)


def summarize(result: PipelineResult) -> list[dict[str, Any]]:
    """Flatten a run into rows for display."""
    rows: list[dict[str, Any]] = []
    for step in result.steps:
        for r in step.results:
            rows.append(
                {
                    "step": step.name,
                    "kind": r.kind,
                    "key": r.key,
                    "outcome": r.outcome.value,
                    "reason": r.reason,
                }
            )
        if step.error and all(r.success for r in step.results):
            rows.append(
                {
                    "step": step.name,
                    "kind": "step",
                    "key": step.name,
                    "outcome": Outcome.FAILED.value,
                    "reason": step.error,
                }
            )
    return rows
