"""Database-connection secret intake.

Three modes, chosen by the caller:

- set-new: every required value must be supplied and non-empty, then each
  secret is (re)written.
- verify-existing: the required names must already exist in the repository.
  Every missing name is reported together; nothing is written.
- skip: nothing happens.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from .config import SecretIntakeMode
from .errors import EmptySecretValueError, MissingSecretsError
from .github import RepoSecretsManager
from .reconciler import Resource
from .resources import RepositorySecretResource, RequiredSecrets

logger = logging.getLogger(__name__)

REQUIRED_DATABASE_FIELDS: tuple[str, ...] = ("HOST", "PORT", "USER", "DATABASE", "PASSWORD")

# Fields whose values are masked when prompted for
SENSITIVE_FIELDS: frozenset[str] = frozenset({"PASSWORD"})


def secret_name(prefix: str, field: str) -> str:
    return f"{prefix}_{field}" if prefix else field


def required_secret_names(prefix: str) -> list[str]:
    return [secret_name(prefix, f) for f in REQUIRED_DATABASE_FIELDS]


def find_missing_secrets(existing: set[str], required: list[str]) -> list[str]:
    """Required names absent from existing, in required order."""
    return [name for name in required if name not in existing]


def verify_required_secrets(repo: RepoSecretsManager, prefix: str) -> None:
    """Check that every required database secret exists.

    Raises:
        MissingSecretsError: Listing every missing name.
    """
    missing = find_missing_secrets(repo.list_secret_names(), required_secret_names(prefix))
    if missing:
        raise MissingSecretsError(missing)
    logger.info(
        "All required database secrets present",
        extra={"repository": repo.repository, "prefix": prefix},
    )


def validate_secret_values(prefix: str, values: Mapping[str, str]) -> dict[str, str]:
    """Return the required values keyed by secret name.

    Raises:
        EmptySecretValueError: If any required value is missing or blank.
    """
    names = required_secret_names(prefix)
    empty = [name for name in names if not (values.get(name) or "").strip()]
    if empty:
        raise EmptySecretValueError(empty)
    return {name: values[name] for name in names}


def values_from_env(prefix: str, environ: Mapping[str, str]) -> dict[str, str]:
    """Pick up values from environment variables named like the secrets."""
    return {
        name: environ[name] for name in required_secret_names(prefix) if environ.get(name)
    }


def intake_resources(
    mode: SecretIntakeMode,
    prefix: str,
    repo: RepoSecretsManager,
    values: Mapping[str, str] | None = None,
) -> list[Resource]:
    """Build the resources the chosen intake mode reconciles.

    Raises:
        EmptySecretValueError: In set-new mode, before anything is written.
    """
    if mode == SecretIntakeMode.SKIP:
        return []

    if mode == SecretIntakeMode.VERIFY_EXISTING:
        return [RequiredSecrets(repo, required_secret_names(prefix))]

    checked = validate_secret_values(prefix, values or {})
    # The operator chose to set new values, so existing secrets are overwritten
    return [
        RepositorySecretResource(repo, name, value, overwrite=True)
        for name, value in checked.items()
    ]
