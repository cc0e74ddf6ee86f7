"""Pytest configuration and fixtures."""

import os
import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for fakes imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from fakes import FakeCloudProvisioner, FakeRepoSecretsManager  # noqa: E402
from provisioner.security import FORBIDDEN_CREDENTIAL_ENV_VARS  # noqa: E402

REPOSITORY = "octo/app"

MINIMAL_SPEC = """\
resourceGroupName: rg-app
location: westeurope
"""


@pytest.fixture
def spec_file(tmp_path: Path) -> Path:
    """A minimal provisioning spec on disk."""
    path = tmp_path / "provisioning.yaml"
    path.write_text(MINIMAL_SPEC)
    return path


@pytest.fixture
def cloud() -> FakeCloudProvisioner:
    return FakeCloudProvisioner()


@pytest.fixture
def repo() -> FakeRepoSecretsManager:
    return FakeRepoSecretsManager(REPOSITORY)


@pytest.fixture
def clean_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove credential variables a developer shell might carry."""
    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        monkeypatch.delenv(env_var, raising=False)
    assert not any(os.environ.get(v) for v in FORBIDDEN_CREDENTIAL_ENV_VARS)
