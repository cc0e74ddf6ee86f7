"""Desired-state descriptors for every provisioned entity.

Each class pairs an identity key with target attributes and knows how to
read and mutate its entity through a CloudProvisioner or RepoSecretsManager.
"""

from __future__ import annotations

import logging
from typing import Any

from .azure_cloud import AccountInfo, CloudProvisioner
from .errors import MissingSecretsError
from .github import RepoSecretsManager
from .reconciler import Resource
from .security import log_security_audit_event

logger = logging.getLogger(__name__)

REGISTERED = "Registered"
REGISTERING = "Registering"


def _normalize_location(location: str | None) -> str:
    return (location or "").replace(" ", "").lower()


def _normalize_scope(scope: str | None) -> str:
    return (scope or "").rstrip("/").lower()


# =============================================================================
# Sessions
# =============================================================================


class AzureSession(Resource):
    """Logged-in az CLI session, optionally pinned to a subscription."""

    kind = "azure-login"

    def __init__(self, cloud: CloudProvisioner, subscription_id: str | None = None) -> None:
        self._cloud = cloud
        self._subscription_id = subscription_id

    @property
    def key(self) -> str:
        return self._subscription_id or "default-subscription"

    def fetch(self) -> AccountInfo | None:
        return self._cloud.get_account()

    def matches(self, current: AccountInfo) -> bool:
        if not self._subscription_id:
            return True
        return current.subscription_id.lower() == self._subscription_id.lower()

    def apply(self) -> AccountInfo:
        return self._cloud.login(self._subscription_id)

    def outputs(self, state: AccountInfo) -> dict[str, str]:
        return {"tenant_id": state.tenant_id, "subscription_id": state.subscription_id}


class GitHubSession(Resource):
    """Logged-in gh CLI session."""

    kind = "github-login"

    def __init__(self, repo: RepoSecretsManager) -> None:
        self._repo = repo

    @property
    def key(self) -> str:
        return self._repo.repository

    def fetch(self) -> str | None:
        return self._repo.get_login()

    def apply(self) -> str:
        return self._repo.login()

    def outputs(self, state: str) -> dict[str, str]:
        return {"github_host": state}


# =============================================================================
# Azure Resource Manager
# =============================================================================


class ProviderRegistration(Resource):
    """Resource provider registration.

    Registration completes asynchronously on the Azure side, so a provider
    still Registering from an earlier run is not registered again.
    """

    kind = "resource-provider"

    def __init__(self, cloud: CloudProvisioner, namespace: str) -> None:
        self._cloud = cloud
        self._namespace = namespace

    @property
    def key(self) -> str:
        return self._namespace

    def fetch(self) -> str | None:
        return self._cloud.get_provider_state(self._namespace)

    def matches(self, current: str) -> bool:
        if current == REGISTERING:
            logger.info(
                f"Provider '{self._namespace}' is still registering",
                extra={"namespace": self._namespace, "state": current},
            )
            return True
        return current == REGISTERED

    def apply(self) -> str | None:
        return self._cloud.register_provider(self._namespace)


class ResourceGroupResource(Resource):
    """Resource group, checked by existence only.

    A resource group's location cannot change after creation.
    """

    kind = "resource-group"

    def __init__(
        self,
        cloud: CloudProvisioner,
        subscription_id: str,
        name: str,
        location: str,
        tags: dict[str, str] | None = None,
    ) -> None:
        self._cloud = cloud
        self._subscription_id = subscription_id
        self._name = name
        self._location = location
        self._tags = tags or {}

    @property
    def key(self) -> str:
        return self._name

    def fetch(self) -> str | None:
        if self._cloud.resource_group_exists(self._name):
            return f"/subscriptions/{self._subscription_id}/resourceGroups/{self._name}"
        return None

    def apply(self) -> str:
        return self._cloud.create_resource_group(self._name, self._location, self._tags)

    def outputs(self, state: str) -> dict[str, str]:
        return {"resource_group_id": state}


class ManagedEnvironmentResource(Resource):
    kind = "container-apps-environment"

    def __init__(
        self,
        cloud: CloudProvisioner,
        resource_group: str,
        name: str,
        location: str,
        tags: dict[str, str] | None = None,
    ) -> None:
        self._cloud = cloud
        self._resource_group = resource_group
        self._name = name
        self._location = location
        self._tags = tags or {}

    @property
    def key(self) -> str:
        return self._name

    def fetch(self) -> dict[str, Any] | None:
        return self._cloud.get_managed_environment(self._resource_group, self._name)

    def matches(self, current: dict[str, Any]) -> bool:
        return _normalize_location(current.get("location")) == _normalize_location(self._location)

    def apply(self) -> dict[str, Any]:
        return self._cloud.create_managed_environment(
            self._resource_group, self._name, self._location, self._tags
        )

    def outputs(self, state: dict[str, Any]) -> dict[str, str]:
        return {"container_apps_environment_id": state["id"]}


# =============================================================================
# Entra ID
# =============================================================================


class ApplicationResource(Resource):
    """AD application, identified by display name."""

    kind = "ad-application"

    def __init__(self, cloud: CloudProvisioner, display_name: str) -> None:
        self._cloud = cloud
        self._display_name = display_name

    @property
    def key(self) -> str:
        return self._display_name

    def fetch(self) -> str | None:
        return self._cloud.find_application(self._display_name)

    def apply(self) -> str:
        return self._cloud.create_application(self._display_name)

    def outputs(self, state: str) -> dict[str, str]:
        return {"app_id": state}


class ServicePrincipalResource(Resource):
    kind = "service-principal"

    def __init__(self, cloud: CloudProvisioner, app_id: str) -> None:
        self._cloud = cloud
        self._app_id = app_id

    @property
    def key(self) -> str:
        return self._app_id

    def fetch(self) -> str | None:
        return self._cloud.get_service_principal(self._app_id)

    def apply(self) -> str:
        return self._cloud.create_service_principal(self._app_id)

    def outputs(self, state: str) -> dict[str, str]:
        return {"principal_id": state}


class FederatedCredentialResource(Resource):
    """OIDC federated credential, unique by name per application.

    A credential with the same name but a different issuer, subject or
    audience list is updated in place.
    """

    kind = "federated-credential"

    def __init__(self, cloud: CloudProvisioner, app_id: str, payload: dict[str, Any]) -> None:
        self._cloud = cloud
        self._app_id = app_id
        self._payload = payload
        self._current: dict[str, Any] | None = None

    @property
    def key(self) -> str:
        return self._payload["name"]

    def fetch(self) -> dict[str, Any] | None:
        self._current = next(
            (
                c
                for c in self._cloud.list_federated_credentials(self._app_id)
                if c.get("name") == self._payload["name"]
            ),
            None,
        )
        return self._current

    def matches(self, current: dict[str, Any]) -> bool:
        return (
            current.get("issuer") == self._payload["issuer"]
            and current.get("subject") == self._payload["subject"]
            and sorted(current.get("audiences") or []) == sorted(self._payload["audiences"])
        )

    def apply(self) -> dict[str, Any]:
        if self._current is not None:
            logger.warning(
                f"Federated credential '{self.key}' differs from desired state, updating",
                extra={"app_id": self._app_id, "subject": self._payload["subject"]},
            )
            action = "update"
            state = self._cloud.update_federated_credential(self._app_id, self._payload)
        else:
            action = "create"
            state = self._cloud.create_federated_credential(self._app_id, self._payload)
        log_security_audit_event(
            "federated_credential",
            target_resource=f"{self._app_id}/{self.key}",
            action=action,
            result="success",
        )
        return state


class RoleAssignmentResource(Resource):
    """Role assignment identified by (principal, role, exact scope)."""

    kind = "role-assignment"

    def __init__(self, cloud: CloudProvisioner, principal_id: str, role: str, scope: str) -> None:
        self._cloud = cloud
        self._principal_id = principal_id
        self._role = role
        self._scope = scope

    @property
    def key(self) -> str:
        return f"{self._role}@{self._scope}"

    def fetch(self) -> dict[str, Any] | None:
        # The list may include assignments inherited from parent scopes
        wanted_scope = _normalize_scope(self._scope)
        return next(
            (
                a
                for a in self._cloud.list_role_assignments(self._principal_id, self._scope)
                if a.get("roleDefinitionName") == self._role
                and _normalize_scope(a.get("scope")) == wanted_scope
            ),
            None,
        )

    def apply(self) -> dict[str, Any]:
        state = self._cloud.create_role_assignment(self._principal_id, self._role, self._scope)
        log_security_audit_event(
            "role_assignment",
            target_resource=self._scope,
            action=f"assign {self._role} to {self._principal_id}",
            result="success",
        )
        return state


# =============================================================================
# GitHub
# =============================================================================


class RepositorySecretResource(Resource):
    """Repository secret. Values are write-only, so only presence is observable."""

    kind = "github-secret"

    def __init__(
        self,
        repo: RepoSecretsManager,
        name: str,
        value: str,
        overwrite: bool = False,
    ) -> None:
        self._repo = repo
        self._name = name
        self._value = value
        self._overwrite = overwrite

    @property
    def key(self) -> str:
        return self._name

    def fetch(self) -> bool | None:
        return True if self._name in self._repo.list_secret_names() else None

    def matches(self, current: bool) -> bool:
        if self._overwrite:
            return False
        logger.warning(
            f"Secret '{self._name}' exists and its value cannot be verified; "
            f"rerun with --overwrite-secrets if the identity it holds has changed",
            extra={"repository": self._repo.repository, "secret": self._name},
        )
        return True

    def apply(self) -> bool:
        self._repo.set_secret(self._name, self._value)
        log_security_audit_event(
            "repository_secret",
            target_resource=f"{self._repo.repository}/{self._name}",
            action="set",
            result="success",
        )
        return True


class RequiredSecrets(Resource):
    """A set of secrets that must already exist.

    There is nothing to apply: a missing secret fails the run, naming every
    missing secret at once.
    """

    kind = "github-secret-set"

    def __init__(self, repo: RepoSecretsManager, names: list[str]) -> None:
        self._repo = repo
        self._names = names
        self._existing: set[str] = set()

    @property
    def key(self) -> str:
        return ",".join(self._names)

    def fetch(self) -> set[str]:
        self._existing = self._repo.list_secret_names()
        return self._existing

    def matches(self, current: set[str]) -> bool:
        return set(self._names) <= current

    def apply(self) -> None:
        raise MissingSecretsError([n for n in self._names if n not in self._existing])


class EnvironmentResource(Resource):
    """Deployment environment with wait timer and branch policy."""

    kind = "github-environment"

    def __init__(self, repo: RepoSecretsManager, name: str, body: dict[str, Any]) -> None:
        self._repo = repo
        self._name = name
        self._body = body

    @property
    def key(self) -> str:
        return self._name

    def fetch(self) -> dict[str, Any] | None:
        return self._repo.get_environment(self._name)

    def matches(self, current: dict[str, Any]) -> bool:
        wait_timer = next(
            (
                rule.get("wait_timer", 0)
                for rule in current.get("protection_rules") or []
                if rule.get("type") == "wait_timer"
            ),
            0,
        )
        return (
            wait_timer == self._body["wait_timer"]
            and current.get("deployment_branch_policy") == self._body["deployment_branch_policy"]
        )

    def apply(self) -> dict[str, Any]:
        return self._repo.put_environment(self._name, self._body)


class BranchPolicyResource(Resource):
    """Branch name pattern allowed to deploy to an environment with custom policies."""

    kind = "github-branch-policy"

    def __init__(self, repo: RepoSecretsManager, environment: str, pattern: str) -> None:
        self._repo = repo
        self._environment = environment
        self._pattern = pattern

    @property
    def key(self) -> str:
        return f"{self._environment}:{self._pattern}"

    def fetch(self) -> bool | None:
        return True if self._pattern in self._repo.list_branch_policies(self._environment) else None

    def apply(self) -> bool:
        self._repo.create_branch_policy(self._environment, self._pattern)
        return True
