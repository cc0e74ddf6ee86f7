"""Security enforcement for the secretless provisioning model.

The pipeline exists so that CI workflows can reach Azure through OIDC
federation instead of a stored service principal secret. Provisioning itself
runs under the operator's own Azure CLI session.

SECURITY INVARIANTS:
1. Service principal secret variables must never be present in the environment
2. AzureCliCredential is the ONLY credential type used for SDK calls
3. Secret values are never logged, only secret names
"""

from __future__ import annotations

import logging
import os

from azure.identity import AzureCliCredential

logger = logging.getLogger(__name__)

# Environment variables that indicate credential leakage
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "AZURE_CLIENT_SECRET",
    "AZURE_CLIENT_CERTIFICATE_PATH",
    "AZURE_CLIENT_CERTIFICATE_PASSWORD",
    "AZURE_USERNAME",
    "AZURE_PASSWORD",
)

SECRETLESS_VIOLATION_MESSAGE = """
SECURITY VIOLATION DETECTED

Detected: {env_var}

This environment variable indicates service principal or password-based
authentication. Provisioning runs under your own Azure CLI session and sets
up OIDC federation so that no stored secret is needed.

RESOLUTION:
  1. Unset all credential environment variables
  2. Run 'az login' with your own account
  3. Re-run the provisioning command
"""


class SecretlessViolationError(Exception):
    """Raised when credential secrets are found in the environment.

    This is a fatal error; provisioning must not proceed.
    """

    pass


def enforce_secretless_architecture() -> None:
    """Enforce that no credential secrets are present in the environment.

    Raises:
        SecretlessViolationError: If any credential environment variables detected.
    """
    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        if os.environ.get(env_var):
            logger.critical(
                "Secretless architecture violation",
                extra={
                    "security_event": "credential_detected",
                    "env_var": env_var,
                    "action": "startup_blocked",
                },
            )
            raise SecretlessViolationError(SECRETLESS_VIOLATION_MESSAGE.format(env_var=env_var))

    logger.debug(
        "Secretless architecture verified",
        extra={"security_event": "secretless_verified", "credential_type": "AzureCli"},
    )


def get_cli_credential() -> AzureCliCredential:
    """Get an AzureCliCredential after verifying the environment is secretless.

    This is the ONLY way to obtain SDK credentials in this codebase.

    Raises:
        SecretlessViolationError: If credential environment variables detected.
    """
    enforce_secretless_architecture()
    return AzureCliCredential()


def log_security_audit_event(
    event_type: str,
    target_resource: str | None = None,
    action: str | None = None,
    result: str | None = None,
) -> None:
    """Log a security-relevant audit event with structured fields.

    Args:
        event_type: Type of security event (role_assignment, secret, federation).
        target_resource: Resource being changed.
        action: Action being performed.
        result: Result of the action.
    """
    logger.info(
        f"Security audit: {event_type}",
        extra={
            "security_audit": True,
            "event_type": event_type,
            "target_resource": target_resource,
            "action": action,
            "result": result,
        },
    )
