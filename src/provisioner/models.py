"""Pydantic models for the provisioning spec with validation.

These models provide:
1. Type-safe YAML parsing
2. Validation at the boundary (fail fast, fail loudly)
3. Desired-state payloads for the Azure and GitHub APIs
"""

from __future__ import annotations

import re
from typing import Annotated, Any

from pydantic import BaseModel, Field, ValidationInfo, field_validator

GITHUB_OIDC_ISSUER = "https://token.actions.githubusercontent.com"
AZURE_AD_TOKEN_EXCHANGE_AUDIENCE = "api://AzureADTokenExchange"

# Placeholder substituted with owner/repo in federated credential subjects
REPO_PLACEHOLDER = "{repo}"

DEFAULT_PROVIDERS: tuple[str, ...] = (
    "Microsoft.App",
    "Microsoft.OperationalInsights",
    "Microsoft.ContainerRegistry",
)

VALID_PROVIDER_NAMESPACE_PATTERN = r"^[A-Za-z][A-Za-z0-9]*(\.[A-Za-z][A-Za-z0-9]*)+$"
VALID_RESOURCE_GROUP_PATTERN = r"^[-\w\._\(\)]{1,90}$"
VALID_CREDENTIAL_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_-]{2,119}$"
VALID_ENVIRONMENT_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]{0,254}$"
VALID_BRANCH_PATTERN = r"^[^\s~^:?\[\\]{1,255}$"
MAX_WAIT_TIMER_MINUTES = 43200


# =============================================================================
# Azure
# =============================================================================


class ContainerAppsEnvironmentConfig(BaseModel):
    """Container Apps managed environment."""

    model_config = {"extra": "ignore"}

    name: Annotated[str, Field(min_length=2, max_length=60)]


class ApplicationConfig(BaseModel):
    """Entra ID application registration backing the CI identity."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    display_name: Annotated[str, Field(min_length=1, max_length=120, alias="displayName")]


class FederatedCredentialConfig(BaseModel):
    """OIDC federated credential trusting GitHub Actions tokens.

    The subject may contain ``{repo}``, replaced with owner/repo.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: str
    subject: Annotated[str, Field(min_length=1)]
    issuer: str = GITHUB_OIDC_ISSUER
    audiences: list[str] = Field(default_factory=lambda: [AZURE_AD_TOKEN_EXCHANGE_AUDIENCE])
    description: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not re.match(VALID_CREDENTIAL_NAME_PATTERN, v):
            raise ValueError(
                "name must be 3-120 characters of letters, digits, '-' or '_' "
                "and start with a letter or digit"
            )
        return v

    @field_validator("issuer")
    @classmethod
    def validate_issuer(cls, v: str) -> str:
        if not v.startswith("https://"):
            raise ValueError("issuer must be an https URL")
        return v

    @field_validator("audiences")
    @classmethod
    def validate_audiences(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("audiences must not be empty")
        return v

    def to_payload(self, repository: str) -> dict[str, Any]:
        """Build the Graph federatedIdentityCredential payload."""
        payload: dict[str, Any] = {
            "name": self.name,
            "issuer": self.issuer,
            "subject": self.subject.replace(REPO_PLACEHOLDER, repository),
            "audiences": list(self.audiences),
        }
        if self.description:
            payload["description"] = self.description
        return payload


def default_federated_credentials() -> list[FederatedCredentialConfig]:
    return [
        FederatedCredentialConfig(
            name="production",
            subject="repo:{repo}:environment:production",
            description="GitHub Actions deployments to the production environment",
        ),
        FederatedCredentialConfig(
            name="main-branch",
            subject="repo:{repo}:ref:refs/heads/main",
            description="GitHub Actions runs on the main branch",
        ),
        FederatedCredentialConfig(
            name="staging",
            subject="repo:{repo}:environment:staging",
            description="GitHub Actions deployments to the staging environment",
        ),
    ]


# =============================================================================
# GitHub
# =============================================================================


class EnvironmentConfig(BaseModel):
    """GitHub deployment environment with its branch policy."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: str
    wait_timer: Annotated[int, Field(ge=0, le=MAX_WAIT_TIMER_MINUTES, alias="waitTimer")] = 0
    protected_branches: bool = Field(False, alias="protectedBranches")
    custom_branch_policies: bool = Field(False, alias="customBranchPolicies")
    branch_patterns: list[str] = Field(
        default_factory=list, alias="branchPatterns", validate_default=True
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not re.match(VALID_ENVIRONMENT_NAME_PATTERN, v):
            raise ValueError(f"invalid environment name: {v}")
        return v

    @field_validator("custom_branch_policies")
    @classmethod
    def validate_single_policy(cls, v: bool, info: ValidationInfo) -> bool:
        # The API rejects both flags set at once
        if v and info.data.get("protected_branches"):
            raise ValueError("protectedBranches and customBranchPolicies are mutually exclusive")
        return v

    @field_validator("branch_patterns")
    @classmethod
    def validate_branch_patterns(cls, v: list[str], info: ValidationInfo) -> list[str]:
        # Custom policies without patterns leave no branch able to deploy
        custom = info.data.get("custom_branch_policies", False)
        if custom and not v:
            raise ValueError("customBranchPolicies requires at least one branchPatterns entry")
        if v and not custom:
            raise ValueError("branchPatterns requires customBranchPolicies: true")
        for pattern in v:
            if not re.match(VALID_BRANCH_PATTERN, pattern):
                raise ValueError(f"invalid branch name pattern: {pattern}")
        duplicates = sorted({p for p in v if v.count(p) > 1})
        if duplicates:
            raise ValueError(f"duplicate branch name patterns: {duplicates}")
        return v

    def branch_policy(self) -> dict[str, bool] | None:
        if not (self.protected_branches or self.custom_branch_policies):
            return None
        return {
            "protected_branches": self.protected_branches,
            "custom_branch_policies": self.custom_branch_policies,
        }

    def to_request_body(self) -> dict[str, Any]:
        """Body for PUT /repos/{owner}/{repo}/environments/{name}."""
        return {
            "wait_timer": self.wait_timer,
            "deployment_branch_policy": self.branch_policy(),
        }


def default_environments() -> list[EnvironmentConfig]:
    return [
        EnvironmentConfig(name="production", protected_branches=True),
        EnvironmentConfig(name="staging"),
    ]


# =============================================================================
# Provisioning spec
# =============================================================================


class ProvisioningSpec(BaseModel):
    """Desired state for one repository's Azure + GitHub wiring."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    resource_group_name: str = Field(alias="resourceGroupName")
    location: str | None = None
    tags: dict[str, str] = Field(default_factory=dict)

    providers: list[str] = Field(default_factory=lambda: list(DEFAULT_PROVIDERS))
    container_apps_environment: ContainerAppsEnvironmentConfig | None = Field(
        None, alias="containerAppsEnvironment"
    )
    application: ApplicationConfig | None = None
    federated_credentials: list[FederatedCredentialConfig] = Field(
        default_factory=default_federated_credentials, alias="federatedCredentials"
    )
    role_definition_name: str = Field("Contributor", alias="roleDefinitionName")
    environments: list[EnvironmentConfig] = Field(
        default_factory=default_environments
    )

    @field_validator("resource_group_name")
    @classmethod
    def validate_resource_group_name(cls, v: str) -> str:
        if not re.match(VALID_RESOURCE_GROUP_PATTERN, v) or v.endswith("."):
            raise ValueError(f"invalid resource group name: {v}")
        return v

    @field_validator("providers")
    @classmethod
    def validate_providers(cls, v: list[str]) -> list[str]:
        for namespace in v:
            if not re.match(VALID_PROVIDER_NAMESPACE_PATTERN, namespace):
                raise ValueError(f"invalid resource provider namespace: {namespace}")
        return v

    @field_validator("federated_credentials")
    @classmethod
    def validate_unique_credentials(
        cls, v: list[FederatedCredentialConfig]
    ) -> list[FederatedCredentialConfig]:
        names = [c.name for c in v]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate federated credential names: {duplicates}")
        return v

    @field_validator("environments")
    @classmethod
    def validate_unique_environments(cls, v: list[EnvironmentConfig]) -> list[EnvironmentConfig]:
        names = [e.name for e in v]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate environment names: {duplicates}")
        return v

    def application_display_name(self, repository: str) -> str:
        """Display name of the AD application, derived from the repo if unset."""
        if self.application:
            return self.application.display_name
        return f"github-oidc-{repository.replace('/', '-')}"
