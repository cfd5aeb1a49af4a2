"""
Pipeline execution layer.

High-level pipeline executor that wires together all components.
"""

from .executor import PipelineExecutor
from .stages import build_ci_stages, build_post_hooks

__all__ = ["PipelineExecutor", "build_ci_stages", "build_post_hooks"]
