"""
Path utilities for pipeline.

Handles timestamped run directories.
"""

import os
from datetime import datetime
from typing import Optional

RUN_SUBDIRS = ("artifacts",)


def create_timestamped_run_dir(base_output_dir: str, run_name: Optional[str] = None) -> str:
    """
    Create a timestamped directory for the current pipeline run.

    Args:
        base_output_dir: Base output directory (e.g., "./ci-output")
        run_name: Optional run name to include in directory

    Returns:
        Path to the timestamped run directory

    Example:
        create_timestamped_run_dir("./ci-output", "nightly")
        -> "./ci-output/nightly_20260216_211730"
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

    if run_name:
        dir_name = f"{run_name}_{timestamp}"
    else:
        dir_name = f"run_{timestamp}"

    run_dir = os.path.join(base_output_dir, dir_name)
    prepare_run_dir(run_dir)
    return run_dir


def prepare_run_dir(run_dir: str) -> str:
    """Create the run directory and its standard sub-directories."""
    for d in RUN_SUBDIRS:
        os.makedirs(os.path.join(run_dir, d), exist_ok=True)
    return run_dir
