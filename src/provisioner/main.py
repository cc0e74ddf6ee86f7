"""Headless entry point: provision everything from environment configuration.

Exit codes:
    0: every step converged
    1: configuration, spec, missing tool, login, input or provider failure
    2: credential secrets detected in the environment
"""

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import Mapping
from datetime import UTC, datetime

from .azure_cloud import AzureCloudProvisioner, CloudProvisioner
from .config import Config, ConfigurationError, SecretIntakeMode
from .errors import ProvisioningError
from .github import GitHubRepoSecretsManager, RepoSecretsManager
from .intake import values_from_env
from .pipeline import PipelineResult, build_pipeline
from .security import SecretlessViolationError, enforce_secretless_architecture
from .spec_loader import SpecLoadError, load_spec

# LogRecord attributes that are not user-supplied extras
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name", "msg", "args", "created", "filename", "funcName", "levelname",
        "levelno", "lineno", "module", "msecs", "pathname", "process",
        "processName", "relativeCreated", "stack_info", "exc_info", "exc_text",
        "thread", "threadName", "taskName", "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO, json_format: bool = True) -> None:
    """Configure root logging on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)-8s %(name)s: %(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    # Reduce noise from SDKs
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def run_provisioning(
    config: Config,
    cloud: CloudProvisioner | None = None,
    repo: RepoSecretsManager | None = None,
    database_values: Mapping[str, str] | None = None,
) -> tuple[int, PipelineResult | None]:
    """Load the spec, build the pipeline and run it.

    Returns:
        Exit code and the pipeline result (None if the run never started).
    """
    logger = logging.getLogger(__name__)

    try:
        enforce_secretless_architecture()
    except SecretlessViolationError as e:
        logger.critical(
            "Security violation: credentials detected in environment",
            extra={"error": str(e)},
        )
        return 2, None

    try:
        spec = load_spec(config.spec_file)
    except SpecLoadError as e:
        logger.error(
            "Provisioning spec loading failed",
            extra={"error": str(e), "spec_file": str(config.spec_file)},
        )
        return 1, None

    cloud = cloud or AzureCloudProvisioner()
    repo = repo or GitHubRepoSecretsManager(config.github_repository, config.github_api_url)

    try:
        pipeline = build_pipeline(config, spec, cloud, repo, database_values)
    except ProvisioningError as e:
        logger.error("Invalid provisioning input", extra={"error": str(e)})
        return 1, None

    logger.info(
        "Starting provisioning",
        extra={
            "repository": config.github_repository,
            "resource_group": spec.resource_group_name,
            "steps": pipeline.step_names,
            "secret_mode": config.secret_mode.value,
        },
    )

    try:
        result = pipeline.run()
    except SecretlessViolationError as e:
        logger.critical(
            "Security violation: credentials detected in environment",
            extra={"error": str(e)},
        )
        return 2, None

    return (0 if result.success else 1), result


def main() -> int:
    """Run the full pipeline from environment variables."""
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    database_values = None
    if config.secret_mode == SecretIntakeMode.SET_NEW:
        database_values = values_from_env(config.secret_prefix, os.environ)

    exit_code, _ = run_provisioning(config, database_values=database_values)
    return exit_code


def run() -> None:
    """Console entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
