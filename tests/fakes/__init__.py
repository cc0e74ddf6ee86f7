"""In-memory fakes for integration-style tests.

The pipeline talks to Azure and GitHub only through the CloudProvisioner and
RepoSecretsManager protocols, and to the CLIs only through CommandRunner.
These fakes implement those seams with in-memory state so whole pipeline
runs can be exercised without network access or installed tools.

Key Features:
- In-memory state for every provisioned entity
- Per-method call counters for idempotence assertions
- Conflict and failure injection by method name
- Scripted subprocess results for adapter tests

Usage:
    from fakes import FakeCloudProvisioner, FakeRepoSecretsManager

    cloud = FakeCloudProvisioner()
    repo = FakeRepoSecretsManager("octo/app")
    result = build_pipeline(config, spec, cloud, repo).run()

    assert cloud.calls["create_resource_group"] == 1
"""

from .cloud import SUBSCRIPTION_ID, TENANT_ID, FakeCloudProvisioner
from .repo import FakeRepoSecretsManager
from .runner import FakeRunner

__all__ = [
    "SUBSCRIPTION_ID",
    "TENANT_ID",
    "FakeCloudProvisioner",
    "FakeRepoSecretsManager",
    "FakeRunner",
]
