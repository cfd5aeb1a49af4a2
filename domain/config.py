"""
Configuration domain models.

Validated configuration objects for the pipeline.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class StageToggles:
    """Configuration for which optional stages to run."""

    do_tests: bool = True
    do_security_scan: bool = True
    do_build: bool = True
    do_push: bool = True

    def enabled(self) -> list[str]:
        """Names of the enabled toggles."""
        return [name for name, value in vars(self).items() if value]


@dataclass(frozen=True)
class InstallConfig:
    """Configuration for dependency installation."""

    strict_command: tuple[str, ...] = ("npm", "ci")
    relaxed_command: tuple[str, ...] = ("npm", "install")
    lockfile_strict: bool = True
    timeout_sec: int = 900

    def __post_init__(self):
        if not self.strict_command:
            raise ValueError("strict_command cannot be empty")
        if not self.relaxed_command:
            raise ValueError("relaxed_command cannot be empty")
        if self.timeout_sec <= 0:
            raise ValueError(f"timeout_sec must be positive, got {self.timeout_sec}")


@dataclass(frozen=True)
class TestConfig:
    """Configuration for the test stage."""

    __test__ = False  # keep pytest from collecting this class

    command: tuple[str, ...] = ("npm", "test")
    report_globs: tuple[str, ...] = ("reports/**/*.xml",)
    timeout_sec: int = 1800

    def __post_init__(self):
        if not self.command:
            raise ValueError("test command cannot be empty")
        if self.timeout_sec <= 0:
            raise ValueError(f"timeout_sec must be positive, got {self.timeout_sec}")


@dataclass(frozen=True)
class SecurityScanConfig:
    """Configuration for the vulnerability scan stage."""

    command: tuple[str, ...] = ("trivy", "fs", "--format", "json", "--output", "${REPORT_PATH}", ".")
    fallback_command: Optional[tuple[str, ...]] = ("npm", "audit", "--json")
    severity_threshold: str = "HIGH"
    report_path: str = "security-report.json"
    timeout_sec: int = 600

    SEVERITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")

    def __post_init__(self):
        if not self.command:
            raise ValueError("scan command cannot be empty")
        if self.severity_threshold not in self.SEVERITIES:
            raise ValueError(
                f"severity_threshold must be one of {self.SEVERITIES}, "
                f"got {self.severity_threshold}"
            )
        if not self.report_path:
            raise ValueError("report_path cannot be empty")


@dataclass(frozen=True)
class ImageConfig:
    """Configuration for container image build and push."""

    name: str
    registry: str = "docker.io"
    tag: str = "${BUILD_NUMBER}"
    build_context: str = "."
    daemon_retries: int = 10
    daemon_interval_sec: float = 3.0
    prune_on_cleanup: bool = True
    engine_command: str = "docker"

    def __post_init__(self):
        if not self.name:
            raise ValueError("image name cannot be empty")
        if not self.tag:
            raise ValueError("image tag cannot be empty")
        if self.daemon_retries <= 0:
            raise ValueError(f"daemon_retries must be positive, got {self.daemon_retries}")
        if self.daemon_interval_sec < 0:
            raise ValueError(f"daemon_interval_sec must be non-negative, got {self.daemon_interval_sec}")

    @property
    def repository(self) -> str:
        """Fully-qualified image repository."""
        return f"{self.registry}/{self.name}" if self.registry else self.name


@dataclass(frozen=True)
class CredentialsConfig:
    """Environment variable names holding registry credentials."""

    username_env: str = "REGISTRY_USERNAME"
    password_env: str = "REGISTRY_PASSWORD"

    @property
    def variables(self) -> tuple[str, str]:
        return (self.username_env, self.password_env)


@dataclass(frozen=True)
class NotificationConfig:
    """Configuration for outcome notifications."""

    webhook_url: Optional[str] = None
    timeout_sec: int = 10


@dataclass(frozen=True)
class PipelineConfig:
    """
    Complete pipeline configuration.

    Immutable configuration object validated at creation.
    """

    # Stage configuration
    stages: StageToggles
    image: Optional[ImageConfig] = None
    install: InstallConfig = field(default_factory=InstallConfig)
    tests: TestConfig = field(default_factory=TestConfig)
    security_scan: SecurityScanConfig = field(default_factory=SecurityScanConfig)
    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)

    # Environment overrides merged over the process environment
    environment: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    # Run metadata
    run_name: str = "pipeline_run"
    run_dir: Optional[str] = None
    workspace: str = "."
    timeout_sec: Optional[float] = None
    show_progress: bool = False

    def __post_init__(self):
        """Validate pipeline configuration."""
        if (self.stages.do_build or self.stages.do_push) and self.image is None:
            raise ValueError("image config required when do_build or do_push is set")
        if self.stages.do_push and not self.stages.do_build:
            raise ValueError("do_push requires do_build")
        if self.timeout_sec is not None and self.timeout_sec <= 0:
            raise ValueError(f"timeout_sec must be positive, got {self.timeout_sec}")
        if not self.run_name:
            raise ValueError("run_name cannot be empty")

    @classmethod
    def from_dict(cls, config_dict: dict) -> 'PipelineConfig':
        """
        Create PipelineConfig from a dictionary (e.g., loaded from YAML).

        Args:
            config_dict: Dictionary with configuration values

        Returns:
            Validated PipelineConfig instance
        """
        stages_dict = config_dict.get("stages") or {}
        stages = StageToggles(
            do_tests=stages_dict.get("do_tests", True),
            do_security_scan=stages_dict.get("do_security_scan", True),
            do_build=stages_dict.get("do_build", True),
            do_push=stages_dict.get("do_push", True),
        )

        image = None
        image_dict = config_dict.get("image")
        if image_dict:
            image = ImageConfig(
                name=image_dict.get("name", ""),
                registry=image_dict.get("registry", "docker.io"),
                tag=str(image_dict.get("tag", "${BUILD_NUMBER}")),
                build_context=image_dict.get("build_context", "."),
                daemon_retries=image_dict.get("daemon_retries", 10),
                daemon_interval_sec=image_dict.get("daemon_interval_sec", 3.0),
                prune_on_cleanup=image_dict.get("prune_on_cleanup", True),
                engine_command=image_dict.get("engine_command", "docker"),
            )

        install_dict = config_dict.get("install") or {}
        install = InstallConfig(
            strict_command=tuple(install_dict.get("strict_command", ["npm", "ci"])),
            relaxed_command=tuple(install_dict.get("relaxed_command", ["npm", "install"])),
            lockfile_strict=install_dict.get("lockfile_strict", True),
            timeout_sec=install_dict.get("timeout_sec", 900),
        )

        tests_dict = config_dict.get("tests") or {}
        tests = TestConfig(
            command=tuple(tests_dict.get("command", ["npm", "test"])),
            report_globs=tuple(tests_dict.get("report_globs", ["reports/**/*.xml"])),
            timeout_sec=tests_dict.get("timeout_sec", 1800),
        )

        scan_dict = config_dict.get("security_scan") or {}
        defaults = SecurityScanConfig()
        fallback = scan_dict.get("fallback_command", defaults.fallback_command)
        security_scan = SecurityScanConfig(
            command=tuple(scan_dict.get("command", defaults.command)),
            fallback_command=tuple(fallback) if fallback else None,
            severity_threshold=str(scan_dict.get("severity_threshold", "HIGH")).upper(),
            report_path=scan_dict.get("report_path", defaults.report_path),
            timeout_sec=scan_dict.get("timeout_sec", 600),
        )

        creds_dict = config_dict.get("credentials") or {}
        credentials = CredentialsConfig(
            username_env=creds_dict.get("username_env", "REGISTRY_USERNAME"),
            password_env=creds_dict.get("password_env", "REGISTRY_PASSWORD"),
        )

        notify_dict = config_dict.get("notifications") or {}
        notifications = NotificationConfig(
            webhook_url=notify_dict.get("webhook_url"),
            timeout_sec=notify_dict.get("timeout_sec", 10),
        )

        environment = tuple(
            (str(k), str(v)) for k, v in (config_dict.get("environment") or {}).items()
        )

        run_metadata = config_dict.get("run_metadata") or {}
        timeout = run_metadata.get("timeout_sec")

        return cls(
            stages=stages,
            image=image,
            install=install,
            tests=tests,
            security_scan=security_scan,
            credentials=credentials,
            notifications=notifications,
            environment=environment,
            run_name=run_metadata.get("run_name", "pipeline_run"),
            run_dir=run_metadata.get("run_dir"),
            workspace=run_metadata.get("workspace", "."),
            timeout_sec=float(timeout) if timeout is not None else None,
            show_progress=(config_dict.get("archive") or {}).get("show_progress", False),
        )
