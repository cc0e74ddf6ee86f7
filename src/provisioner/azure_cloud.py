"""Azure side of provisioning: CLI session, ARM resources and Entra ID objects.

ARM resources (provider registrations, resource groups, the Container Apps
environment) go through azure-mgmt-resource, authenticated with the
operator's Azure CLI session. Entra ID objects and role assignments go
through the az CLI, which wraps Microsoft Graph.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Protocol

from azure.core.exceptions import ResourceNotFoundError
from azure.mgmt.resource import ResourceManagementClient
from azure.mgmt.resource.resources.models import GenericResource, ResourceGroup

from .errors import CommandError, MissingToolError, ProvisioningError, ResourceConflictError
from .security import get_cli_credential
from .shell import CommandRunner

logger = logging.getLogger(__name__)

MANAGED_ENVIRONMENT_API_VERSION = "2024-03-01"

# az CLI reports conflicts in stderr only; these are the known phrasings
CONFLICT_PATTERN = re.compile(r"already exists|RoleAssignmentExists", re.IGNORECASE)
NOT_FOUND_PATTERN = re.compile(r"does not exist|not found|ResourceNotFound", re.IGNORECASE)


@dataclass(frozen=True)
class AccountInfo:
    """Active Azure CLI session."""

    tenant_id: str
    subscription_id: str
    user: str | None = None


class CloudProvisioner(Protocol):
    """Capability interface for the Azure calls the pipeline needs."""

    def get_account(self) -> AccountInfo | None: ...

    def login(self, subscription_id: str | None = None) -> AccountInfo: ...

    def get_provider_state(self, namespace: str) -> str | None: ...

    def register_provider(self, namespace: str) -> str | None: ...

    def resource_group_exists(self, name: str) -> bool: ...

    def create_resource_group(self, name: str, location: str, tags: dict[str, str]) -> str: ...

    def get_managed_environment(self, resource_group: str, name: str) -> dict[str, Any] | None: ...

    def create_managed_environment(
        self, resource_group: str, name: str, location: str, tags: dict[str, str]
    ) -> dict[str, Any]: ...

    def find_application(self, display_name: str) -> str | None: ...

    def create_application(self, display_name: str) -> str: ...

    def get_service_principal(self, app_id: str) -> str | None: ...

    def create_service_principal(self, app_id: str) -> str: ...

    def list_federated_credentials(self, app_id: str) -> list[dict[str, Any]]: ...

    def create_federated_credential(
        self, app_id: str, credential: dict[str, Any]
    ) -> dict[str, Any]: ...

    def update_federated_credential(
        self, app_id: str, credential: dict[str, Any]
    ) -> dict[str, Any]: ...

    def list_role_assignments(self, principal_id: str, scope: str) -> list[dict[str, Any]]: ...

    def create_role_assignment(
        self, principal_id: str, role: str, scope: str
    ) -> dict[str, Any]: ...


def resource_group_id(subscription_id: str, name: str) -> str:
    return f"/subscriptions/{subscription_id}/resourceGroups/{name}"


@contextmanager
def _payload_file(payload: dict[str, Any]) -> Iterator[str]:
    """Write a JSON payload to a temporary file, removed on exit."""
    fd, path = tempfile.mkstemp(prefix="azprov-", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f)
        yield path
    finally:
        os.unlink(path)


class AzureCloudProvisioner:
    """CloudProvisioner backed by the az CLI and azure-mgmt-resource."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        client_factory: Callable[[str], ResourceManagementClient] | None = None,
    ) -> None:
        """Initialize the provisioner.

        Args:
            runner: Command runner for az invocations.
            client_factory: Builds a ResourceManagementClient for a subscription.
        """
        self._runner = runner or CommandRunner()
        self._client_factory = client_factory or self._default_client
        self._client: ResourceManagementClient | None = None
        self._subscription_id: str | None = None

    @staticmethod
    def _default_client(subscription_id: str) -> ResourceManagementClient:
        return ResourceManagementClient(
            credential=get_cli_credential(),
            subscription_id=subscription_id,
        )

    def _az(self, *args: str, **kwargs: Any) -> Any:
        """Run an az command with JSON output, mapping conflicts."""
        cmd = ["az", *args, "--output", "json"]
        try:
            return self._runner.run_json(cmd, **kwargs)
        except MissingToolError:
            raise
        except CommandError as e:
            if CONFLICT_PATTERN.search(e.stderr):
                raise ResourceConflictError(e.stderr) from e
            raise

    def _require_subscription(self) -> str:
        if self._subscription_id is None:
            self.get_account()
        if self._subscription_id is None:
            raise ProvisioningError("Not logged in to Azure. Run 'az login'.")
        return self._subscription_id

    @property
    def resource_client(self) -> ResourceManagementClient:
        if self._client is None:
            self._client = self._client_factory(self._require_subscription())
        return self._client

    # -------------------------------------------------------------------------
    # CLI session
    # -------------------------------------------------------------------------

    def get_account(self) -> AccountInfo | None:
        """Return the active az CLI account, or None when not logged in."""
        self._runner.require("az")
        try:
            data = self._az("account", "show")
        except CommandError:
            return None
        if not data:
            return None

        account = AccountInfo(
            tenant_id=data["tenantId"],
            subscription_id=data["id"],
            user=(data.get("user") or {}).get("name"),
        )
        if account.subscription_id != self._subscription_id:
            self._subscription_id = account.subscription_id
            self._client = None
        return account

    def login(self, subscription_id: str | None = None) -> AccountInfo:
        """Log in interactively if needed and select the subscription."""
        if self.get_account() is None:
            logger.info("Not logged in to Azure, starting interactive login")
            self._runner.run(["az", "login"], capture=False, timeout=None)

        if subscription_id:
            self._runner.run(["az", "account", "set", "--subscription", subscription_id])

        account = self.get_account()
        if account is None:
            raise ProvisioningError("Azure login did not produce an active session")
        return account

    # -------------------------------------------------------------------------
    # ARM resources (azure-mgmt-resource)
    # -------------------------------------------------------------------------

    def get_provider_state(self, namespace: str) -> str | None:
        try:
            provider = self.resource_client.providers.get(namespace)
        except ResourceNotFoundError:
            return None
        return provider.registration_state

    def register_provider(self, namespace: str) -> str | None:
        provider = self.resource_client.providers.register(namespace)
        return provider.registration_state

    def resource_group_exists(self, name: str) -> bool:
        return bool(self.resource_client.resource_groups.check_existence(name))

    def create_resource_group(self, name: str, location: str, tags: dict[str, str]) -> str:
        rg = self.resource_client.resource_groups.create_or_update(
            resource_group_name=name,
            parameters=ResourceGroup(location=location, tags=tags),
        )
        logger.info(f"Resource group '{name}' created in {location}")
        return rg.id

    def _managed_environment_id(self, resource_group: str, name: str) -> str:
        return (
            f"{resource_group_id(self._require_subscription(), resource_group)}"
            f"/providers/Microsoft.App/managedEnvironments/{name}"
        )

    def get_managed_environment(self, resource_group: str, name: str) -> dict[str, Any] | None:
        env_id = self._managed_environment_id(resource_group, name)
        try:
            resource = self.resource_client.resources.get_by_id(
                resource_id=env_id,
                api_version=MANAGED_ENVIRONMENT_API_VERSION,
            )
        except ResourceNotFoundError:
            return None
        return {"id": resource.id, "name": resource.name, "location": resource.location}

    def create_managed_environment(
        self, resource_group: str, name: str, location: str, tags: dict[str, str]
    ) -> dict[str, Any]:
        env_id = self._managed_environment_id(resource_group, name)
        poller = self.resource_client.resources.begin_create_or_update_by_id(
            resource_id=env_id,
            api_version=MANAGED_ENVIRONMENT_API_VERSION,
            parameters=GenericResource(location=location, tags=tags, properties={}),
        )
        resource = poller.result()
        return {"id": resource.id, "name": resource.name, "location": resource.location}

    # -------------------------------------------------------------------------
    # Entra ID objects and RBAC (az CLI)
    # -------------------------------------------------------------------------

    def find_application(self, display_name: str) -> str | None:
        app_ids = self._az("ad", "app", "list", "--display-name", display_name, "--query", "[].appId")
        if not app_ids:
            return None
        if len(app_ids) > 1:
            logger.warning(
                f"Found {len(app_ids)} applications named '{display_name}', using the first",
                extra={"display_name": display_name, "app_ids": app_ids},
            )
        return app_ids[0]

    def create_application(self, display_name: str) -> str:
        return self._az("ad", "app", "create", "--display-name", display_name, "--query", "appId")

    def get_service_principal(self, app_id: str) -> str | None:
        try:
            return self._az("ad", "sp", "show", "--id", app_id, "--query", "id")
        except MissingToolError:
            raise
        except CommandError as e:
            if not NOT_FOUND_PATTERN.search(e.stderr):
                raise
            return None

    def create_service_principal(self, app_id: str) -> str:
        return self._az("ad", "sp", "create", "--id", app_id, "--query", "id")

    def list_federated_credentials(self, app_id: str) -> list[dict[str, Any]]:
        return self._az("ad", "app", "federated-credential", "list", "--id", app_id) or []

    def create_federated_credential(
        self, app_id: str, credential: dict[str, Any]
    ) -> dict[str, Any]:
        """Create a federated credential from a JSON payload file."""
        with _payload_file(credential) as path:
            return self._az(
                "ad", "app", "federated-credential", "create",
                "--id", app_id,
                "--parameters", f"@{path}",
            )

    def update_federated_credential(
        self, app_id: str, credential: dict[str, Any]
    ) -> dict[str, Any]:
        with _payload_file(credential) as path:
            self._az(
                "ad", "app", "federated-credential", "update",
                "--id", app_id,
                "--federated-credential-id", credential["name"],
                "--parameters", f"@{path}",
            )
        return credential

    def list_role_assignments(self, principal_id: str, scope: str) -> list[dict[str, Any]]:
        return (
            self._az("role", "assignment", "list", "--assignee", principal_id, "--scope", scope)
            or []
        )

    def create_role_assignment(self, principal_id: str, role: str, scope: str) -> dict[str, Any]:
        return self._az(
            "role", "assignment", "create",
            "--assignee-object-id", principal_id,
            "--assignee-principal-type", "ServicePrincipal",
            "--role", role,
            "--scope", scope,
        )
