"""Subprocess execution for the az, gh and docker CLIs."""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
from typing import Any

from .errors import CommandError, MissingToolError

logger = logging.getLogger(__name__)

# Query commands must finish in bounded time; interactive ones pass timeout=None
COMMAND_TIMEOUT_SECONDS = 300

INSTALL_HINTS: dict[str, str] = {
    "az": "Install from https://aka.ms/installazurecli",
    "gh": "Install from https://cli.github.com",
    "docker": "Install Docker from https://docs.docker.com/get-docker/",
}


class CommandRunner:
    """Runs external commands and reports failures as ProvisioningErrors."""

    def require(self, tool: str) -> None:
        """Fail fast if a CLI is not installed.

        Raises:
            MissingToolError: If the tool is not on PATH.
        """
        if not shutil.which(tool):
            raise MissingToolError(tool, INSTALL_HINTS.get(tool, ""))

    def run(
        self,
        cmd: list[str],
        *,
        input: str | None = None,
        capture: bool = True,
        check: bool = True,
        timeout: int | None = COMMAND_TIMEOUT_SECONDS,
        env: dict[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run a command.

        Args:
            cmd: Command and arguments.
            input: Text passed on stdin (secret values go here, never in argv).
            capture: Capture stdout/stderr instead of inheriting the terminal.
            check: Raise CommandError on a non-zero exit status.
            timeout: Timeout in seconds, None for interactive commands.
            env: Extra environment variables merged into the current env.

        Returns:
            CompletedProcess result.

        Raises:
            CommandError: If the command fails and check is set.
            MissingToolError: If the executable does not exist.
        """
        full_env = os.environ.copy()
        if env:
            full_env.update(env)

        logger.debug("Running command", extra={"command": cmd[:4]})
        try:
            result = subprocess.run(
                cmd,
                input=input,
                env=full_env,
                timeout=timeout,
                capture_output=capture,
                text=True,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandError(cmd, -1, f"timed out after {timeout}s") from e
        except FileNotFoundError as e:
            raise MissingToolError(cmd[0], INSTALL_HINTS.get(cmd[0], "")) from e

        if check and result.returncode != 0:
            raise CommandError(cmd, result.returncode, result.stderr or "")
        return result

    def run_json(self, cmd: list[str], **kwargs: Any) -> Any:
        """Run a command with JSON output and return the parsed document.

        Empty output parses to None.
        """
        result = self.run(cmd, **kwargs)
        stdout = (result.stdout or "").strip()
        if not stdout:
            return None
        try:
            return json.loads(stdout)
        except json.JSONDecodeError as e:
            raise CommandError(cmd, result.returncode, f"invalid JSON output: {e}") from e
