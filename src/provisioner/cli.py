"""Azure + GitHub provisioning CLI (azprov).

Usage:
    azprov provision --repo owner/repo --spec provisioning.yaml
    azprov secrets verify --repo owner/repo --prefix DB
    azprov secrets set --repo owner/repo --prefix DB
    azprov image publish myorg/api v1
    azprov info
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path

import click

from .config import (
    DEFAULT_LOCATION,
    DEFAULT_SECRET_PREFIX,
    DEFAULT_SPEC_FILE,
    Config,
    ConfigurationError,
    SecretIntakeMode,
)
from .errors import EmptySecretValueError, MissingSecretsError, ProvisioningError
from .github import DEFAULT_API_URL, GitHubRepoSecretsManager
from .image import DEFAULT_DOCKERFILE, DEFAULT_PLATFORM, ImagePipeline
from .intake import (
    REQUIRED_DATABASE_FIELDS,
    SENSITIVE_FIELDS,
    intake_resources,
    secret_name,
    values_from_env,
    verify_required_secrets,
)
from .main import run_provisioning, setup_logging
from .pipeline import summarize
from .reconciler import Outcome, Reconciler

OUTCOME_STYLES: dict[str, tuple[str, str]] = {
    Outcome.APPLIED.value: ("+", "green"),
    Outcome.ALREADY_SATISFIED.value: ("=", "blue"),
    Outcome.FAILED.value: ("x", "red"),
}

TOOLS = (("Azure CLI", "az"), ("GitHub CLI", "gh"), ("Docker", "docker"))


def collect_secret_values(prefix: str) -> dict[str, str]:
    """Gather set-new values from the environment, prompting only on a terminal."""
    values = values_from_env(prefix, os.environ)
    if not sys.stdin.isatty():
        return values

    for field in REQUIRED_DATABASE_FIELDS:
        name = secret_name(prefix, field)
        if name not in values:
            values[name] = click.prompt(
                name,
                hide_input=field in SENSITIVE_FIELDS,
                default="",
                show_default=False,
            )
    return values


def echo_results(rows: list[dict[str, object]]) -> None:
    for row in rows:
        symbol, color = OUTCOME_STYLES[str(row["outcome"])]
        line = f"  {symbol} {row['step']:<28} {row['kind']:<28} {row['key']}"
        click.secho(line, fg=color)
        if row.get("reason"):
            click.secho(f"      {row['reason']}", fg=color)


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="azprov")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.option(
    "--log-format",
    type=click.Choice(["text", "json"]),
    default="text",
    show_default=True,
    help="Log output format",
)
def cli(verbose: bool, log_format: str) -> None:
    """Provision Azure OIDC federation and GitHub repository wiring.

    \b
    Quick Start:
        az login && gh auth login
        azprov provision --repo owner/repo --spec provisioning.yaml
    """
    setup_logging(
        level=logging.DEBUG if verbose else logging.INFO,
        json_format=log_format == "json",
    )


# =============================================================================
# Provision Command
# =============================================================================


@cli.command()
@click.option("--repo", "repository", envvar="GITHUB_REPOSITORY", required=True, help="owner/repo")
@click.option(
    "--spec",
    "spec_file",
    envvar="SPEC_FILE",
    default=DEFAULT_SPEC_FILE,
    show_default=True,
    type=click.Path(path_type=Path),
    help="Provisioning spec YAML",
)
@click.option("--subscription", "-s", envvar="AZURE_SUBSCRIPTION_ID", help="Azure subscription ID")
@click.option("--location", "-l", envvar="AZURE_LOCATION", default=DEFAULT_LOCATION, show_default=True)
@click.option(
    "--db-secrets-mode",
    envvar="DB_SECRETS_MODE",
    type=click.Choice([m.value for m in SecretIntakeMode]),
    default=SecretIntakeMode.SKIP.value,
    show_default=True,
)
@click.option("--db-secrets-prefix", envvar="DB_SECRETS_PREFIX", default=DEFAULT_SECRET_PREFIX, show_default=True)
@click.option(
    "--overwrite-secrets",
    envvar="OVERWRITE_SECRETS",
    is_flag=True,
    help="Re-set identity secrets. Existing values cannot be read back, so pass this "
    "after the application, tenant or subscription changes.",
)
@click.option("--github-api-url", envvar="GITHUB_API_URL", default=DEFAULT_API_URL, show_default=True)
@click.pass_context
def provision(
    ctx: click.Context,
    repository: str,
    spec_file: Path,
    subscription: str | None,
    location: str,
    db_secrets_mode: str,
    db_secrets_prefix: str,
    overwrite_secrets: bool,
    github_api_url: str,
) -> None:
    """Run the full provisioning pipeline."""
    try:
        config = Config(
            github_repository=repository,
            spec_file=spec_file,
            subscription_id=subscription or None,
            location=location,
            secret_mode=SecretIntakeMode(db_secrets_mode),
            secret_prefix=db_secrets_prefix,
            overwrite_secrets=overwrite_secrets,
            github_api_url=github_api_url,
        )
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    database_values = None
    if config.secret_mode == SecretIntakeMode.SET_NEW:
        database_values = collect_secret_values(config.secret_prefix)

    click.echo(f"Provisioning {config.github_repository} from {config.spec_file}...")
    exit_code, result = run_provisioning(config, database_values=database_values)

    if result is not None:
        echo_results(summarize(result))
        if result.success:
            click.secho(f"✓ Provisioned in {result.duration_seconds:.1f}s", fg="green")
        else:
            click.secho(f"✗ Halted at step '{result.halted_at}'", fg="red")
    ctx.exit(exit_code)


# =============================================================================
# Secrets Commands
# =============================================================================


@cli.group()
def secrets() -> None:
    """Database-connection secrets: verify or set."""
    pass


repo_option = click.option(
    "--repo", "repository", envvar="GITHUB_REPOSITORY", required=True, help="owner/repo"
)
prefix_option = click.option(
    "--prefix", envvar="DB_SECRETS_PREFIX", default=DEFAULT_SECRET_PREFIX, show_default=True
)
api_url_option = click.option(
    "--github-api-url", envvar="GITHUB_API_URL", default=DEFAULT_API_URL, show_default=True
)


@secrets.command("verify")
@repo_option
@prefix_option
@api_url_option
def secrets_verify(repository: str, prefix: str, github_api_url: str) -> None:
    """Fail unless every required database secret exists."""
    manager = GitHubRepoSecretsManager(repository, github_api_url)
    try:
        verify_required_secrets(manager, prefix)
    except MissingSecretsError as e:
        raise click.ClickException(str(e)) from e
    except ProvisioningError as e:
        raise click.ClickException(str(e)) from e
    click.secho("✓ All required secrets present", fg="green")


@secrets.command("set")
@repo_option
@prefix_option
@api_url_option
def secrets_set(repository: str, prefix: str, github_api_url: str) -> None:
    """Set every required database secret."""
    manager = GitHubRepoSecretsManager(repository, github_api_url)
    values = collect_secret_values(prefix)
    try:
        resources = intake_resources(SecretIntakeMode.SET_NEW, prefix, manager, values)
    except EmptySecretValueError as e:
        raise click.ClickException(str(e)) from e

    reconciler = Reconciler()
    for resource in resources:
        result = reconciler.reconcile(resource)
        if not result.success:
            raise click.ClickException(f"Failed to set {result.key}: {result.reason}")
        click.echo(f"  {result.key}: {result.outcome.value}")
    click.secho(f"✓ {len(resources)} secrets set", fg="green")


# =============================================================================
# Image Commands
# =============================================================================


@cli.group()
def image() -> None:
    """Container image build and push."""
    pass


@image.command("publish")
@click.argument("image_name")
@click.argument("tag")
@click.option("--dockerfile", "-f", default=DEFAULT_DOCKERFILE, show_default=True)
@click.option("--context", "build_context", default=".", show_default=True)
@click.option("--platform", default=DEFAULT_PLATFORM, show_default=True)
@click.pass_context
def image_publish(
    ctx: click.Context,
    image_name: str,
    tag: str,
    dockerfile: str,
    build_context: str,
    platform: str,
) -> None:
    """Build IMAGE_NAME:TAG for one platform and push it."""
    try:
        result = ImagePipeline().publish(
            image_name, tag, dockerfile=dockerfile, context=build_context, platform=platform
        )
    except ProvisioningError as e:
        raise click.ClickException(str(e)) from e

    if not result.success:
        stage = "build" if result.build_status != 0 else "push"
        status = result.build_status if stage == "build" else result.push_status
        click.secho(f"✗ docker {stage} failed for {result.image} (exit {status})", fg="red")
        ctx.exit(1)
    click.secho(f"✓ Pushed {result.image}", fg="green")


# =============================================================================
# Info Command
# =============================================================================


@cli.command()
def info() -> None:
    """Show availability of the external tools."""
    click.echo("azprov")
    click.echo("=" * 40)
    for label, tool in TOOLS:
        if not shutil.which(tool):
            click.echo(f"  {label}: not found")
            continue
        try:
            result = subprocess.run(
                [tool, "--version"], capture_output=True, text=True, timeout=10, check=False
            )
            version = result.stdout.split("\n")[0].strip() if result.returncode == 0 else "error"
        except subprocess.TimeoutExpired:
            version = "timed out"
        click.echo(f"  {label}: {version}")


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
