"""
TestRunner service - Runs the project's test suite.
"""

import logging
from typing import Mapping, Optional

from domain.config import TestConfig
from .command import CommandRunner


class TestRunner:
    """Wraps the project's test command."""

    __test__ = False

    def __init__(self, runner: CommandRunner, config: TestConfig):
        self.runner = runner
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)

    def run(self, env: Optional[Mapping[str, str]] = None) -> bool:
        """Run the tests and return True if they passed."""
        self.logger.info(f"Running tests: {' '.join(self.config.command)}")
        result = self.runner.run(self.config.command, env=env, timeout=self.config.timeout_sec)
        if not result.ok:
            self.logger.warning(f"Tests failed (rc={result.returncode})")
        return result.ok
