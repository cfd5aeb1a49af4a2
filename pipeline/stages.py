"""
CI stage definitions.

Builds the concrete stage list and post-run hooks from the pipeline
configuration and the tool services.
"""

import logging
import shutil
from typing import Mapping, Optional

from domain.config import PipelineConfig
from domain.errors import ConfigurationError
from domain.stage import ArtifactArchiveRequest, FailurePolicy, Stage, StageResult
from orchestration import ALWAYS, Outcome, RunContext
from utils.environment import is_change_request, substitute

logger = logging.getLogger(__name__)

# Environment flags echoed by the environment check
REPORTED_FLAGS = ("LOG_LEVEL", "BRANCH_NAME", "CHANGE_ID", "BUILD_NUMBER", "DOCKER_HOST")


def resolve_image_tag(config: PipelineConfig, env) -> str:
    """
    Expand the configured image tag against the run environment.

    Raises:
        ConfigurationError: If the tag still references an unset variable
    """
    tag = substitute(config.image.tag, env)
    if "$" in tag or not tag:
        raise ConfigurationError(f"Image tag '{config.image.tag}' references an unset variable")
    return tag


def required_tools(config: PipelineConfig) -> list[str]:
    """Executables that must be on PATH for the enabled stages."""
    install = config.install
    install_command = install.strict_command if install.lockfile_strict else install.relaxed_command
    tools = [install_command[0]]
    if config.stages.do_tests:
        tools.append(config.tests.command[0])
    if config.stages.do_build and config.image is not None:
        tools.append(config.image.engine_command)
    return list(dict.fromkeys(tools))


def push_allowed(context: RunContext) -> bool:
    """Images are never pushed for change requests."""
    return not is_change_request(context.environment)


class CIStages:
    """
    Factory for the CI stage actions.

    Each action reads the run environment from the context and talks to the
    tools only through the injected services. Registry credentials come from
    ``secrets``, never from the context.
    """

    def __init__(self, config: PipelineConfig, services: dict, secrets: Optional[Mapping[str, str]] = None):
        self.config = config
        self.services = services
        self.secrets = secrets

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def check_environment(self, context: RunContext) -> StageResult:
        for flag in REPORTED_FLAGS:
            if flag in context.environment:
                logger.info(f"{flag:30s}: {context.environment[flag]}")

        path = context.env("PATH") or None
        missing = [tool for tool in required_tools(self.config) if shutil.which(tool, path=path) is None]
        if missing:
            return StageResult.failed(f"Required tools not found on PATH: {', '.join(missing)}")
        return StageResult.ok()

    def install_dependencies(self, context: RunContext) -> StageResult:
        manager = self.services["package_manager"]
        if manager.install(self.config.install.lockfile_strict, env=context.environment):
            return StageResult.ok()
        return StageResult.failed("Dependency installation failed")

    def run_tests(self, context: RunContext) -> StageResult:
        if self.services["test_runner"].run(env=context.environment):
            return StageResult.ok()
        return StageResult.failed("Test suite failed")

    def security_scan(self, context: RunContext) -> StageResult:
        scanner = self.services["scanner"]
        report = scanner.scan(self.config.security_scan.severity_threshold, env=context.environment)
        if report.passed:
            return StageResult.ok()
        return StageResult.failed(
            f"{report.blocking_count} finding(s) at or above {report.severity_threshold} ({report.tool})"
        )

    def build_image(self, context: RunContext) -> StageResult:
        engine = self.services["container_engine"]
        image_cfg = self.config.image
        tag = resolve_image_tag(self.config, context.environment)

        engine.wait_until_ready(image_cfg.daemon_retries, image_cfg.daemon_interval_sec, env=context.environment)
        image = engine.build(tag, env=context.environment)
        if tag != "latest":
            engine.tag(image, "latest", env=context.environment)
        return StageResult.ok()

    def push_image(self, context: RunContext) -> StageResult:
        engine = self.services["container_engine"]
        credentials = self.services["credential_provider"].get(self.secrets)
        tag = resolve_image_tag(self.config, context.environment)

        for alias in dict.fromkeys((tag, "latest")):
            image = engine.image_ref(alias)
            if not engine.push(image, self.config.image.registry, credentials, env=context.environment):
                return StageResult.failed(f"Push of {image} failed")
        return StageResult.ok()

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def build(self) -> list[Stage]:
        """Assemble the ordered stage list for the enabled stages."""
        toggles = self.config.stages
        stages = [
            Stage("check-environment", self.check_environment),
            Stage("install-dependencies", self.install_dependencies),
        ]

        if toggles.do_tests:
            stages.append(Stage(
                "run-tests",
                self.run_tests,
                failure_policy=FailurePolicy.LOGGED,
                archives=tuple(
                    ArtifactArchiveRequest(pattern, allow_empty=True)
                    for pattern in self.config.tests.report_globs
                ),
            ))

        if toggles.do_security_scan:
            stages.append(Stage(
                "security-scan",
                self.security_scan,
                failure_policy=FailurePolicy.LOGGED,
                archives=(ArtifactArchiveRequest(self.config.security_scan.report_path, allow_empty=True),),
            ))

        if toggles.do_build:
            stages.append(Stage("build-image", self.build_image))

        if toggles.do_push:
            stages.append(Stage("push-image", self.push_image, condition=push_allowed))

        return stages


def build_ci_stages(
    config: PipelineConfig,
    services: dict,
    secrets: Optional[Mapping[str, str]] = None,
) -> list[Stage]:
    """Build the CI stage list for a configuration."""
    return CIStages(config, services, secrets).build()


def build_post_hooks(config: PipelineConfig, services: dict) -> dict:
    """
    Build the post-run hooks.

    ALWAYS cleans up the engine; FAILURE and UNSTABLE send a notification
    when a webhook is configured.
    """
    engine = services.get("container_engine")
    notifier = services.get("notifier")

    def cleanup(context: RunContext):
        if engine is not None and config.image is not None and config.image.prune_on_cleanup:
            if not engine.prune(env=context.environment):
                logger.warning("Image prune failed")

    def report_success(context: RunContext):
        logger.info(f"Run '{config.run_name}' succeeded in {context.elapsed_time:.1f}s")

    def notify(context: RunContext) -> Optional[bool]:
        if notifier is None:
            return None
        return notifier.notify(context)

    return {
        ALWAYS: cleanup,
        Outcome.SUCCESS: report_success,
        Outcome.FAILURE: notify,
        Outcome.UNSTABLE: notify,
    }
