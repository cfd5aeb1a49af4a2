"""
PipelineExecutor - High-level CI pipeline orchestrator.

Wires together all tool services and runs the stage list.

Run directory layout:
    artifacts/          - archived files from test, scan and build stages
    run_summary.json    - per-stage statuses and the final outcome
"""

import json
import logging
import os
from typing import Mapping, Optional

from domain.config import PipelineConfig
from domain.stage import always
from orchestration import RunContext, StageRunner
from services.artifacts import ArtifactArchiver
from services.notifications import WebhookNotifier
from services.tools import (
    CommandRunner,
    ContainerEngine,
    CredentialProvider,
    PackageManager,
    TestRunner,
    VulnerabilityScanner,
)
from utils.environment import snapshot_environment, split_secrets
from .stages import build_ci_stages, build_post_hooks


class PipelineExecutor:
    """
    High-level pipeline executor.

    Responsible for:
    1. Creating all services with dependency injection
    2. Building the stage list and post hooks
    3. Running the pipeline
    4. Returning and saving results
    """

    def __init__(self, config: PipelineConfig, services: Optional[dict] = None):
        """
        Initialize executor.

        Args:
            config: Validated pipeline configuration
            services: Service overrides by name, merged over the defaults
        """
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)
        self.run_dir = config.run_dir or os.path.join(config.workspace, "ci-output")
        self.services = self._create_services()
        self.services.update(services or {})

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, base_environment: Optional[dict] = None) -> RunContext:
        """
        Execute the pipeline and return the final context.

        Args:
            base_environment: Environment to snapshot, defaults to ``os.environ``
        """
        self.logger.info("Initializing pipeline execution")
        snapshot = snapshot_environment(self.config.environment, base=base_environment)
        environment, secrets = split_secrets(snapshot, self.config.credentials.variables)

        runner = StageRunner(
            timeout_sec=self.config.timeout_sec,
            archive_sink=self.services["archiver"].archive,
            abort_handler=self.services["command_runner"].cancel,
        )
        final_context = runner.run(self.build_stages(secrets), self.build_hooks(), environment)
        self._log_results(final_context)
        return final_context

    def build_stages(self, secrets: Optional[Mapping[str, str]] = None):
        return build_ci_stages(self.config, self.services, secrets)

    def build_hooks(self) -> dict:
        return build_post_hooks(self.config, self.services)

    def describe_stages(self) -> list[str]:
        """One line per stage, used by dry runs."""
        lines = []
        for stage in self.build_stages():
            conditional = " (conditional)" if stage.condition is not always else ""
            lines.append(f"{stage.name} [{stage.failure_policy}]{conditional}")
        return lines

    def save_summary(self, context: RunContext) -> str:
        """
        Save the run summary JSON.

        Saved to: <run_dir>/run_summary.json

        Returns:
            Path of the written file
        """
        os.makedirs(self.run_dir, exist_ok=True)
        summary_path = os.path.join(self.run_dir, "run_summary.json")
        summary = {"run_name": self.config.run_name, **context.get_summary()}

        with open(summary_path, "w") as f:
            json.dump(summary, f, indent=2, default=str)

        self.logger.info(f"Saved run summary to: {summary_path}")
        return summary_path

    # ------------------------------------------------------------------
    # Pipeline internals
    # ------------------------------------------------------------------

    def _create_services(self) -> dict:
        runner = CommandRunner(cwd=self.config.workspace)
        services = {
            "command_runner": runner,
            "package_manager": PackageManager(runner, self.config.install),
            "test_runner": TestRunner(runner, self.config.tests),
            "scanner": VulnerabilityScanner(runner, self.config.security_scan),
            "credential_provider": CredentialProvider(self.config.credentials),
            "archiver": ArtifactArchiver(
                workspace=self.config.workspace,
                archive_dir=os.path.join(self.run_dir, "artifacts"),
                show_progress=self.config.show_progress,
            ),
        }

        if self.config.image is not None:
            services["container_engine"] = ContainerEngine(runner, self.config.image)

        if self.config.notifications.webhook_url:
            services["notifier"] = WebhookNotifier(
                url=self.config.notifications.webhook_url,
                run_name=self.config.run_name,
                timeout=self.config.notifications.timeout_sec,
            )

        return services

    def _log_results(self, context: RunContext):
        self.logger.info("=" * 60)
        self.logger.info("Pipeline Execution Summary")
        self.logger.info("=" * 60)

        summary = context.get_summary()
        for key in ("outcome", "elapsed_time_sec", "start_time", "timed_out"):
            self.logger.info(f"{key:30s}: {summary[key]}")
        if summary["archive_patterns"]:
            self.logger.info(f"{'archive_patterns':30s}: {', '.join(summary['archive_patterns'])}")

        self.logger.info("=" * 60)
