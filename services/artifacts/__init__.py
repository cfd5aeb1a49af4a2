"""
Artifact services.

Archiving of files produced during a pipeline run.
"""

from .archiver import ArtifactArchiver

__all__ = ["ArtifactArchiver"]
