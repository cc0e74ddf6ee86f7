"""Configuration management with validation.

Where to provision (subscription, repository, spec file) and how to treat
database secrets come from here; what to provision comes from the YAML spec.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .github import DEFAULT_API_URL


class SecretIntakeMode(str, Enum):
    """How database-connection secrets are handled."""

    SET_NEW = "set-new"
    VERIFY_EXISTING = "verify-existing"
    SKIP = "skip"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


DEFAULT_LOCATION = "westeurope"
DEFAULT_SPEC_FILE = "provisioning.yaml"
DEFAULT_SECRET_PREFIX = "DB"

# Input validation patterns
VALID_REPOSITORY_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9-]{0,38}/[A-Za-z0-9._-]{1,100}$"
VALID_SUBSCRIPTION_ID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
VALID_LOCATION_PATTERN = r"^[a-z]{2,}[a-z0-9]*$"
VALID_SECRET_PREFIX_PATTERN = r"^([A-Z][A-Z0-9_]*)?$"


@dataclass(frozen=True)
class Config:
    """Provisioning configuration.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-run.
    """

    github_repository: str
    spec_file: Path = field(default_factory=lambda: Path(DEFAULT_SPEC_FILE))

    # Azure
    subscription_id: str | None = None
    location: str = DEFAULT_LOCATION

    # Database secret intake
    secret_mode: SecretIntakeMode = SecretIntakeMode.SKIP
    secret_prefix: str = DEFAULT_SECRET_PREFIX

    # Identity secrets already present are left alone unless this is set
    overwrite_secrets: bool = False

    github_api_url: str = DEFAULT_API_URL

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.github_repository:
            errors.append("GITHUB_REPOSITORY is required")
        elif not re.match(VALID_REPOSITORY_PATTERN, self.github_repository):
            errors.append(f"GITHUB_REPOSITORY must be owner/repo: {self.github_repository}")

        if self.subscription_id and not re.match(
            VALID_SUBSCRIPTION_ID_PATTERN, self.subscription_id.lower()
        ):
            errors.append(f"AZURE_SUBSCRIPTION_ID must be a valid GUID: {self.subscription_id}")

        if not self.location:
            errors.append("AZURE_LOCATION is required")
        elif not re.match(VALID_LOCATION_PATTERN, self.location.lower()):
            errors.append(f"AZURE_LOCATION must be a valid Azure region: {self.location}")

        if not re.match(VALID_SECRET_PREFIX_PATTERN, self.secret_prefix):
            errors.append(
                f"DB_SECRETS_PREFIX must be upper-case letters, digits or '_': {self.secret_prefix}"
            )

        if not self.github_api_url.startswith("https://"):
            errors.append(f"GITHUB_API_URL must be an https URL: {self.github_api_url}")

        if not self.spec_file.is_file():
            errors.append(f"Spec file does not exist: {self.spec_file}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            GITHUB_REPOSITORY: Target repository as owner/repo
            SPEC_FILE: Path to the provisioning spec (default: provisioning.yaml)
            AZURE_SUBSCRIPTION_ID: Subscription to select after login (optional)
            AZURE_LOCATION: Default location (default: westeurope)
            DB_SECRETS_MODE: One of set-new, verify-existing, skip (default: skip)
            DB_SECRETS_PREFIX: Namespace tag for database secrets (default: DB)
            OVERWRITE_SECRETS: If "true", re-set identity secrets that exist
            GITHUB_API_URL: REST API base (default: https://api.github.com)
        """

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            github_repository=os.environ.get("GITHUB_REPOSITORY", ""),
            spec_file=Path(os.environ.get("SPEC_FILE", DEFAULT_SPEC_FILE)),
            subscription_id=os.environ.get("AZURE_SUBSCRIPTION_ID") or None,
            location=os.environ.get("AZURE_LOCATION", DEFAULT_LOCATION),
            secret_mode=parse_secret_mode(os.environ.get("DB_SECRETS_MODE")),
            secret_prefix=os.environ.get("DB_SECRETS_PREFIX", DEFAULT_SECRET_PREFIX),
            overwrite_secrets=get_bool("OVERWRITE_SECRETS", False),
            github_api_url=os.environ.get("GITHUB_API_URL", DEFAULT_API_URL),
        )


def parse_secret_mode(value: str | None) -> SecretIntakeMode:
    if not value:
        return SecretIntakeMode.SKIP
    try:
        return SecretIntakeMode(value)
    except ValueError as e:
        valid = [m.value for m in SecretIntakeMode]
        raise ConfigurationError(f"DB_SECRETS_MODE must be one of {valid}: {value}") from e
