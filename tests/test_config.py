"""Tests for configuration loading."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from provisioner.config import (
    Config,
    ConfigurationError,
    SecretIntakeMode,
    parse_secret_mode,
)

SUBSCRIPTION_ID = "12345678-1234-1234-1234-123456789012"


class TestConfig:
    """Tests for Config class."""

    def test_valid_config(self, spec_file: Path) -> None:
        """Test creating a valid configuration."""
        config = Config(
            github_repository="octo/app",
            spec_file=spec_file,
            subscription_id=SUBSCRIPTION_ID,
        )

        assert config.location == "westeurope"
        assert config.secret_mode == SecretIntakeMode.SKIP
        assert config.secret_prefix == "DB"
        assert config.overwrite_secrets is False

    def test_missing_repository(self, spec_file: Path) -> None:
        """Test that missing repository raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(github_repository="", spec_file=spec_file)

        assert "GITHUB_REPOSITORY" in str(exc_info.value)

    @pytest.mark.parametrize("repository", ["octo", "octo/app/extra", "-octo/app", "octo/"])
    def test_invalid_repository(self, spec_file: Path, repository: str) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(github_repository=repository, spec_file=spec_file)

        assert "owner/repo" in str(exc_info.value)

    def test_invalid_subscription_id(self, spec_file: Path) -> None:
        """Test that invalid subscription ID format raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(github_repository="octo/app", spec_file=spec_file, subscription_id="not-a-guid")

        assert "GUID" in str(exc_info.value)

    def test_uppercase_subscription_id_accepted(self, spec_file: Path) -> None:
        config = Config(
            github_repository="octo/app",
            spec_file=spec_file,
            subscription_id=SUBSCRIPTION_ID.upper(),
        )

        assert config.subscription_id == SUBSCRIPTION_ID.upper()

    def test_invalid_location(self, spec_file: Path) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(github_repository="octo/app", spec_file=spec_file, location="west europe!")

        assert "AZURE_LOCATION" in str(exc_info.value)

    @pytest.mark.parametrize("prefix", ["db", "1DB", "DB-PROD"])
    def test_invalid_secret_prefix(self, spec_file: Path, prefix: str) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(github_repository="octo/app", spec_file=spec_file, secret_prefix=prefix)

        assert "DB_SECRETS_PREFIX" in str(exc_info.value)

    def test_empty_secret_prefix_allowed(self, spec_file: Path) -> None:
        config = Config(github_repository="octo/app", spec_file=spec_file, secret_prefix="")

        assert config.secret_prefix == ""

    def test_api_url_must_be_https(self, spec_file: Path) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(
                github_repository="octo/app",
                spec_file=spec_file,
                github_api_url="http://ghe.internal/api/v3",
            )

        assert "GITHUB_API_URL" in str(exc_info.value)

    def test_missing_spec_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(github_repository="octo/app", spec_file=tmp_path / "absent.yaml")

        assert "Spec file does not exist" in str(exc_info.value)

    def test_all_errors_reported_together(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(
                github_repository="",
                spec_file=tmp_path / "absent.yaml",
                subscription_id="bad",
            )

        message = str(exc_info.value)
        assert "GITHUB_REPOSITORY" in message
        assert "GUID" in message
        assert "Spec file" in message


class TestConfigFromEnv:
    """Tests for loading config from environment."""

    def test_from_env(self, spec_file: Path) -> None:
        """Test loading config from environment variables."""
        env = {
            "GITHUB_REPOSITORY": "octo/app",
            "SPEC_FILE": str(spec_file),
            "AZURE_SUBSCRIPTION_ID": SUBSCRIPTION_ID,
            "AZURE_LOCATION": "northeurope",
            "DB_SECRETS_MODE": "verify-existing",
            "DB_SECRETS_PREFIX": "ORDERS_DB",
            "OVERWRITE_SECRETS": "true",
        }

        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.github_repository == "octo/app"
        assert config.spec_file == spec_file
        assert config.subscription_id == SUBSCRIPTION_ID
        assert config.location == "northeurope"
        assert config.secret_mode == SecretIntakeMode.VERIFY_EXISTING
        assert config.secret_prefix == "ORDERS_DB"
        assert config.overwrite_secrets is True

    def test_from_env_defaults(self, spec_file: Path) -> None:
        env = {"GITHUB_REPOSITORY": "octo/app", "SPEC_FILE": str(spec_file)}

        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.subscription_id is None
        assert config.secret_mode == SecretIntakeMode.SKIP
        assert config.github_api_url == "https://api.github.com"

    def test_from_env_missing_repository(self, spec_file: Path) -> None:
        with patch.dict(os.environ, {"SPEC_FILE": str(spec_file)}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "GITHUB_REPOSITORY is required" in str(exc_info.value)

    def test_from_env_invalid_mode(self, spec_file: Path) -> None:
        env = {
            "GITHUB_REPOSITORY": "octo/app",
            "SPEC_FILE": str(spec_file),
            "DB_SECRETS_MODE": "maybe",
        }

        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "DB_SECRETS_MODE" in str(exc_info.value)


class TestParseSecretMode:
    @pytest.mark.parametrize(
        ("value", "mode"),
        [
            (None, SecretIntakeMode.SKIP),
            ("", SecretIntakeMode.SKIP),
            ("skip", SecretIntakeMode.SKIP),
            ("set-new", SecretIntakeMode.SET_NEW),
            ("verify-existing", SecretIntakeMode.VERIFY_EXISTING),
        ],
    )
    def test_valid_modes(self, value: str | None, mode: SecretIntakeMode) -> None:
        assert parse_secret_mode(value) == mode

    def test_invalid_mode(self) -> None:
        with pytest.raises(ConfigurationError):
            parse_secret_mode("SET_NEW")
