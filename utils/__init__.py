"""
Utility modules for pipeline.
"""

from .paths import create_timestamped_run_dir, prepare_run_dir
from .environment import (
    is_change_request,
    parse_env_assignments,
    snapshot_environment,
    split_secrets,
    substitute,
    substitute_all,
)

__all__ = [
    "create_timestamped_run_dir",
    "prepare_run_dir",
    "is_change_request",
    "parse_env_assignments",
    "snapshot_environment",
    "split_secrets",
    "substitute",
    "substitute_all",
]
