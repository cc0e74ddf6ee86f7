"""Exception hierarchy for provisioning calls against external providers.

Errors raised by the cloud and repository adapters all derive from
ProvisioningError so the reconciler can tell a provider failure apart from
a programming error.
"""

from __future__ import annotations


class ProvisioningError(Exception):
    """Raised when an external provider call fails."""

    pass


class CommandError(ProvisioningError):
    """Raised when an external CLI exits with a non-zero status."""

    def __init__(self, cmd: list[str], returncode: int, stderr: str = "") -> None:
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = self.stderr or f"exit code {returncode}"
        super().__init__(f"Command failed: {' '.join(cmd[:4])}: {detail}")


class MissingToolError(CommandError):
    """Raised when a required CLI is not installed."""

    def __init__(self, tool: str, hint: str = "") -> None:
        super().__init__([tool], 127, f"{tool} not found on PATH. {hint}".strip())
        self.tool = tool


class ResourceConflictError(ProvisioningError):
    """Raised when a mutation fails because the target already exists."""

    pass


class GitHubApiError(ProvisioningError):
    """Raised when a GitHub REST call returns an unexpected status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MissingSecretsError(ProvisioningError):
    """Raised when required repository secrets are absent."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Missing required secrets: {', '.join(missing)}")


class EmptySecretValueError(ProvisioningError):
    """Raised when a secret value to be set is empty."""

    def __init__(self, names: list[str]) -> None:
        self.names = names
        super().__init__(f"Empty value for required secrets: {', '.join(names)}")
