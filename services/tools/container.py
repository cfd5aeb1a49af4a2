"""
ContainerEngine service - Builds, tags and pushes images.

Single responsibility: drive the container engine CLI. Waiting for the
engine daemon is a bounded polling loop local to this service.
"""

import logging
import time
from typing import Callable, Mapping, Optional

from domain.config import ImageConfig
from domain.errors import ToolError
from .command import CommandRunner
from .credentials import Credentials


class ContainerEngine:
    """
    Service wrapping a Docker-compatible CLI.

    The daemon connection is only used for the duration of each call and
    never kept open between stages.
    """

    def __init__(
        self,
        runner: CommandRunner,
        config: ImageConfig,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize container engine.

        Args:
            runner: Command runner used for every engine call
            config: Image and daemon settings
            sleep: Sleep function, injectable for tests
        """
        self.runner = runner
        self.config = config
        self.sleep = sleep
        self.executable = config.engine_command
        self.logger = logging.getLogger(self.__class__.__name__)

    def wait_until_ready(
        self,
        retries: Optional[int] = None,
        interval_sec: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> int:
        """
        Poll the daemon until it answers.

        Args:
            retries: Maximum number of attempts
            interval_sec: Fixed sleep between attempts

        Returns:
            Number of attempts it took

        Raises:
            ToolError: If the daemon is not ready after all attempts
        """
        retries = retries or self.config.daemon_retries
        interval_sec = self.config.daemon_interval_sec if interval_sec is None else interval_sec
        command = [self.executable, "info"]

        for attempt in range(1, retries + 1):
            try:
                if self.runner.run(command, env=env, timeout=30).ok:
                    self.logger.info(f"Container daemon ready after {attempt} attempt(s)")
                    return attempt
            except ToolError as e:
                self.logger.debug(f"Daemon probe failed: {e}")

            if attempt < retries:
                self.logger.debug(f"Daemon not ready, waiting... (attempt {attempt}/{retries})")
                self.sleep(interval_sec)

        raise ToolError(command, f"daemon not ready after {retries} attempts")

    def build(self, tag: str, env: Optional[Mapping[str, str]] = None) -> str:
        """
        Build an image from the configured context.

        Returns:
            The image reference that was built
        """
        image = self.image_ref(tag)
        self.logger.info(f"Building image {image}")
        self.runner.check(
            [self.executable, "build", "-t", image, self.config.build_context],
            env=env,
            timeout=3600,
        )
        return image

    def tag(self, image: str, alias: str, env: Optional[Mapping[str, str]] = None) -> str:
        """Tag an existing image under another tag of the same repository."""
        target = self.image_ref(alias)
        self.runner.check([self.executable, "tag", image, target], env=env)
        self.logger.info(f"Tagged {image} as {target}")
        return target

    def push(
        self,
        image: str,
        registry: str,
        credentials: Optional[Credentials],
        env: Optional[Mapping[str, str]] = None,
    ) -> bool:
        """
        Log in to the registry and push an image.

        Credentials are passed on stdin and never appear on the command line.

        Returns:
            True if the push succeeded
        """
        if credentials is not None:
            login = self.runner.run(
                [self.executable, "login", registry, "--username", credentials.username, "--password-stdin"],
                env=env,
                input_text=credentials.password,
                timeout=120,
            )
            if not login.ok:
                self.logger.error(f"Registry login to {registry} failed (rc={login.returncode})")
                return False

        result = self.runner.run([self.executable, "push", image], env=env, timeout=1800)
        if not result.ok:
            self.logger.error(f"Push of {image} failed (rc={result.returncode})")
        return result.ok

    def prune(self, env: Optional[Mapping[str, str]] = None) -> bool:
        """Remove dangling images left by the build."""
        result = self.runner.run([self.executable, "image", "prune", "-f"], env=env, timeout=300)
        return result.ok

    def image_ref(self, tag: str) -> str:
        return f"{self.config.repository}:{tag}"
