"""GitHub side of provisioning: repository secrets and deployment environments.

Secrets go through the gh CLI, which handles the libsodium sealing the
secrets API requires. Environments go through the REST API with httpx,
authenticated with the token of the gh CLI session.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol
from urllib.parse import urlparse

import httpx

from .errors import GitHubApiError, ProvisioningError, ResourceConflictError
from .shell import CommandRunner

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"
HTTP_TIMEOUT_SECONDS = 30
POLICIES_PER_PAGE = 100


class RepoSecretsManager(Protocol):
    """Capability interface for the GitHub calls the pipeline needs."""

    @property
    def repository(self) -> str: ...

    def get_login(self) -> str | None: ...

    def login(self) -> str: ...

    def list_secret_names(self) -> set[str]: ...

    def set_secret(self, name: str, value: str) -> None: ...

    def get_environment(self, name: str) -> dict[str, Any] | None: ...

    def put_environment(self, name: str, body: dict[str, Any]) -> dict[str, Any]: ...

    def list_branch_policies(self, environment: str) -> set[str]: ...

    def create_branch_policy(self, environment: str, pattern: str) -> dict[str, Any]: ...


def host_for_api_url(api_url: str) -> str:
    """Map an API base URL to the gh CLI hostname.

    https://api.github.com -> github.com, https://ghe.example.com/api/v3 -> ghe.example.com
    """
    host = urlparse(api_url).hostname or "github.com"
    if host == "api.github.com":
        return "github.com"
    return host


class GitHubRepoSecretsManager:
    """RepoSecretsManager backed by the gh CLI and the REST API."""

    def __init__(
        self,
        repository: str,
        api_url: str = DEFAULT_API_URL,
        runner: CommandRunner | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            repository: Target repository as owner/repo.
            api_url: REST API base URL.
            runner: Command runner for gh invocations.
            transport: Optional httpx transport (used by tests).
        """
        self._repository = repository
        self._api_url = api_url.rstrip("/")
        self._host = host_for_api_url(api_url)
        self._runner = runner or CommandRunner()
        self._transport = transport
        self._token: str | None = None

    @property
    def repository(self) -> str:
        return self._repository

    # -------------------------------------------------------------------------
    # CLI session
    # -------------------------------------------------------------------------

    def get_login(self) -> str | None:
        """Return the gh hostname when authenticated, else None."""
        self._runner.require("gh")
        result = self._runner.run(
            ["gh", "auth", "status", "--hostname", self._host],
            check=False,
        )
        return self._host if result.returncode == 0 else None

    def login(self) -> str:
        logger.info(f"Not logged in to {self._host}, starting interactive login")
        self._runner.run(
            ["gh", "auth", "login", "--hostname", self._host],
            capture=False,
            timeout=None,
        )
        host = self.get_login()
        if host is None:
            raise ProvisioningError(f"GitHub login to {self._host} did not succeed")
        self._token = None
        return host

    def _auth_token(self) -> str:
        if self._token is None:
            result = self._runner.run(["gh", "auth", "token", "--hostname", self._host])
            token = (result.stdout or "").strip()
            if not token:
                raise ProvisioningError(f"gh returned an empty token for {self._host}")
            self._token = token
        return self._token

    # -------------------------------------------------------------------------
    # Secrets (gh CLI)
    # -------------------------------------------------------------------------

    def list_secret_names(self) -> set[str]:
        data = self._runner.run_json(
            ["gh", "secret", "list", "--repo", self._repository, "--json", "name"]
        )
        return {item["name"] for item in data or []}

    def set_secret(self, name: str, value: str) -> None:
        # Value goes on stdin so it never appears in the process list
        self._runner.run(
            ["gh", "secret", "set", name, "--repo", self._repository],
            input=value,
        )

    # -------------------------------------------------------------------------
    # Environments (REST)
    # -------------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self._auth_token()}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
        }
        try:
            with httpx.Client(
                base_url=self._api_url,
                headers=headers,
                timeout=HTTP_TIMEOUT_SECONDS,
                transport=self._transport,
            ) as client:
                return client.request(method, path, json=body, params=params)
        except httpx.RequestError as e:
            raise GitHubApiError(f"{method} {path} failed: {e}") from e

    def get_environment(self, name: str) -> dict[str, Any] | None:
        path = f"/repos/{self._repository}/environments/{name}"
        response = self._request("GET", path)
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise GitHubApiError(
                f"GET {path} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return response.json()

    def put_environment(self, name: str, body: dict[str, Any]) -> dict[str, Any]:
        path = f"/repos/{self._repository}/environments/{name}"
        response = self._request("PUT", path, body)
        if response.status_code not in (200, 201):
            raise GitHubApiError(
                f"PUT {path} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        logger.info(f"Environment '{name}' configured", extra={"repository": self._repository})
        return response.json()

    def list_branch_policies(self, environment: str) -> set[str]:
        """Names of the branch patterns allowed to deploy to an environment."""
        path = f"/repos/{self._repository}/environments/{environment}/deployment-branch-policies"
        names: set[str] = set()
        page = 1
        while True:
            response = self._request("GET", path, params={"per_page": POLICIES_PER_PAGE, "page": page})
            if response.status_code != 200:
                raise GitHubApiError(
                    f"GET {path} returned {response.status_code}: {response.text}",
                    status_code=response.status_code,
                )
            policies = response.json().get("branch_policies") or []
            names.update(p["name"] for p in policies)
            if len(policies) < POLICIES_PER_PAGE:
                return names
            page += 1

    def create_branch_policy(self, environment: str, pattern: str) -> dict[str, Any]:
        path = f"/repos/{self._repository}/environments/{environment}/deployment-branch-policies"
        response = self._request("POST", path, {"name": pattern, "type": "branch"})
        # 303 See Other points at the existing policy with this pattern
        if response.status_code == 303:
            raise ResourceConflictError(f"Branch policy '{pattern}' already exists on '{environment}'")
        if response.status_code not in (200, 201):
            raise GitHubApiError(
                f"POST {path} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        logger.info(
            f"Branch policy '{pattern}' added to environment '{environment}'",
            extra={"repository": self._repository},
        )
        return response.json()
