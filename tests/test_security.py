"""Tests for secretless architecture enforcement.

These tests verify that provisioning refuses to run when service principal
or password credentials are present in the environment.
"""

from __future__ import annotations

import logging
import os
from unittest import mock

import pytest

from provisioner.security import (
    FORBIDDEN_CREDENTIAL_ENV_VARS,
    SecretlessViolationError,
    enforce_secretless_architecture,
    get_cli_credential,
    log_security_audit_event,
)


class TestSecretlessEnforcement:
    """Tests for secretless architecture enforcement."""

    def test_clean_environment_passes(self) -> None:
        """Test that enforcement passes with no credential env vars."""
        with mock.patch.dict(os.environ, {}, clear=True):
            # Should not raise
            enforce_secretless_architecture()

    @pytest.mark.parametrize("env_var", FORBIDDEN_CREDENTIAL_ENV_VARS)
    def test_forbidden_env_var_raises(self, env_var: str) -> None:
        """Test that each forbidden env var raises SecretlessViolationError."""
        with mock.patch.dict(os.environ, {env_var: "some-secret-value"}):
            with pytest.raises(SecretlessViolationError) as exc_info:
                enforce_secretless_architecture()

            assert env_var in str(exc_info.value)

    def test_azure_client_secret_rejected(self) -> None:
        """Test AZURE_CLIENT_SECRET specifically is rejected."""
        with mock.patch.dict(os.environ, {"AZURE_CLIENT_SECRET": "my-secret"}):
            with pytest.raises(SecretlessViolationError) as exc_info:
                enforce_secretless_architecture()

            assert "AZURE_CLIENT_SECRET" in str(exc_info.value)
            assert "SECURITY VIOLATION" in str(exc_info.value)

    def test_empty_value_is_not_a_violation(self) -> None:
        with mock.patch.dict(os.environ, {"AZURE_CLIENT_SECRET": ""}, clear=True):
            enforce_secretless_architecture()

    def test_secret_value_not_in_message(self) -> None:
        with mock.patch.dict(os.environ, {"AZURE_PASSWORD": "hunter2"}):
            with pytest.raises(SecretlessViolationError) as exc_info:
                enforce_secretless_architecture()

            assert "hunter2" not in str(exc_info.value)

    def test_client_id_alone_is_allowed(self) -> None:
        """A bare client ID is not a credential."""
        with mock.patch.dict(os.environ, {"AZURE_CLIENT_ID": "abc"}, clear=True):
            enforce_secretless_architecture()


class TestGetCliCredential:
    """Tests for the Azure CLI credential getter."""

    def test_rejects_secret_env_var(self) -> None:
        with mock.patch.dict(os.environ, {"AZURE_CLIENT_SECRET": "secret"}):
            with pytest.raises(SecretlessViolationError):
                get_cli_credential()

    @mock.patch("provisioner.security.AzureCliCredential")
    def test_returns_cli_credential(self, mock_credential_class: mock.Mock) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            credential = get_cli_credential()

        mock_credential_class.assert_called_once_with()
        assert credential is mock_credential_class.return_value


class TestSecurityAudit:
    def test_audit_event_fields(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="provisioner.security"):
            log_security_audit_event(
                "role_assignment",
                target_resource="/subscriptions/x/resourceGroups/rg",
                action="assign Contributor",
                result="success",
            )

        record = caplog.records[-1]
        assert record.getMessage() == "Security audit: role_assignment"
        assert record.security_audit is True
        assert record.target_resource == "/subscriptions/x/resourceGroups/rg"
