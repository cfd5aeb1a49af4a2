"""
Domain models for the CI stage runner.

Pure data structures with validation, no business logic.
"""

from .stage import (
    ArtifactArchiveRequest,
    FailurePolicy,
    Stage,
    StageRecord,
    StageResult,
    StageStatus,
    always,
)
from .errors import (
    ArchiveError,
    ConfigurationError,
    PipelineError,
    StageFailure,
    StageTimeoutError,
    ToolError,
)
from .config import (
    PipelineConfig,
    StageToggles,
    InstallConfig,
    TestConfig,
    SecurityScanConfig,
    ImageConfig,
    CredentialsConfig,
    NotificationConfig,
)

__all__ = [
    "ArtifactArchiveRequest",
    "FailurePolicy",
    "Stage",
    "StageRecord",
    "StageResult",
    "StageStatus",
    "always",
    "ArchiveError",
    "ConfigurationError",
    "PipelineError",
    "StageFailure",
    "StageTimeoutError",
    "ToolError",
    "PipelineConfig",
    "StageToggles",
    "InstallConfig",
    "TestConfig",
    "SecurityScanConfig",
    "ImageConfig",
    "CredentialsConfig",
    "NotificationConfig",
]
