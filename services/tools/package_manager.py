"""
PackageManager service - Installs project dependencies.
"""

import logging
from typing import Mapping, Optional

from domain.config import InstallConfig
from .command import CommandRunner


class PackageManager:
    """Wraps the project's package manager CLI."""

    def __init__(self, runner: CommandRunner, config: InstallConfig):
        self.runner = runner
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)

    def install(self, lockfile_strict: bool, env: Optional[Mapping[str, str]] = None) -> bool:
        """
        Install dependencies.

        Args:
            lockfile_strict: Install exactly what the lockfile pins
            env: Environment for the package manager

        Returns:
            True if the install succeeded
        """
        command = self.config.strict_command if lockfile_strict else self.config.relaxed_command
        self.logger.info(f"Installing dependencies: {' '.join(command)}")
        result = self.runner.run(command, env=env, timeout=self.config.timeout_sec)
        if not result.ok:
            self.logger.error(f"Dependency install failed (rc={result.returncode})")
        return result.ok
