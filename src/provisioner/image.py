"""Container image build and push pass-through.

One registry login check, one single-platform build, one push. The native
exit status of docker is reported; nothing is retried.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .shell import CommandRunner

logger = logging.getLogger(__name__)

DEFAULT_PLATFORM = "linux/amd64"
DEFAULT_DOCKERFILE = "Dockerfile"
DOCKER_HUB = "docker.io"

# Keys docker uses for Docker Hub in config.json
DOCKER_HUB_KEYS: frozenset[str] = frozenset(
    {"index.docker.io/v1", "index.docker.io", "docker.io", "registry-1.docker.io"}
)


def registry_for_image(image_name: str) -> str:
    """Registry host of an image reference (docker.io when implicit)."""
    first, sep, _ = image_name.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        return first
    return DOCKER_HUB


def docker_config_path() -> Path:
    config_dir = os.environ.get("DOCKER_CONFIG")
    base = Path(config_dir) if config_dir else Path.home() / ".docker"
    return base / "config.json"


def _normalize_registry_key(key: str) -> str:
    for scheme in ("https://", "http://"):
        if key.startswith(scheme):
            key = key[len(scheme):]
    return key.rstrip("/")


def has_registry_credentials(registry: str, config_path: Path) -> bool:
    """Check the local docker credential store for a registry entry."""
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return False
    if not isinstance(data, dict):
        return False

    keys = {
        _normalize_registry_key(k)
        for section in ("auths", "credHelpers")
        for k in (data.get(section) or {})
    }
    if registry == DOCKER_HUB:
        return bool(keys & DOCKER_HUB_KEYS)
    return registry in keys


@dataclass
class ImagePublishResult:
    image: str
    build_status: int
    push_status: int | None = None

    @property
    def success(self) -> bool:
        return self.build_status == 0 and self.push_status == 0


class ImagePipeline:
    """Build and push one image tag with docker."""

    def __init__(self, runner: CommandRunner | None = None, config_path: Path | None = None) -> None:
        self._runner = runner or CommandRunner()
        self._config_path = config_path or docker_config_path()

    def ensure_login(self, registry: str) -> None:
        """Log in interactively unless credentials are already stored.

        Raises:
            CommandError: If docker login fails.
        """
        if has_registry_credentials(registry, self._config_path):
            logger.info(f"Using stored credentials for {registry}")
            return

        logger.info(f"No stored credentials for {registry}, starting docker login")
        cmd = ["docker", "login"] if registry == DOCKER_HUB else ["docker", "login", registry]
        self._runner.run(cmd, capture=False, timeout=None)

    def publish(
        self,
        image_name: str,
        tag: str,
        dockerfile: str = DEFAULT_DOCKERFILE,
        context: str = ".",
        platform: str = DEFAULT_PLATFORM,
    ) -> ImagePublishResult:
        """Build then push image_name:tag.

        Raises:
            MissingToolError: If docker is not installed.
            CommandError: If registry login fails.
        """
        self._runner.require("docker")
        image = f"{image_name}:{tag}"
        self.ensure_login(registry_for_image(image_name))

        logger.info(f"Building {image} for {platform}")
        build = self._runner.run(
            ["docker", "build", "--platform", platform, "-t", image, "-f", dockerfile, context],
            capture=False,
            check=False,
            timeout=None,
        )
        result = ImagePublishResult(image=image, build_status=build.returncode)
        if build.returncode != 0:
            logger.error(
                f"docker build failed for {image}",
                extra={"image": image, "exit_status": build.returncode},
            )
            return result

        logger.info(f"Pushing {image}")
        push = self._runner.run(
            ["docker", "push", image],
            capture=False,
            check=False,
            timeout=None,
        )
        result.push_status = push.returncode
        if push.returncode != 0:
            logger.error(
                f"docker push failed for {image}",
                extra={"image": image, "exit_status": push.returncode},
            )
        else:
            logger.info(f"Pushed {image}")
        return result
