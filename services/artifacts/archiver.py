"""
ArtifactArchiver service - Copies run artifacts into the archive directory.

Single responsibility: resolve archive requests against the workspace and
copy matching files, keeping their relative layout.
"""

import glob
import logging
import os
import shutil
from contextlib import nullcontext
from typing import Iterable

from tqdm import tqdm

from domain.errors import ArchiveError
from domain.stage import ArtifactArchiveRequest


class ArtifactArchiver:
    """
    Service archiving files matched by glob patterns.

    Every request is processed even when an earlier one fails; failures are
    reported together at the end.
    """

    def __init__(self, workspace: str, archive_dir: str, show_progress: bool = False):
        """
        Initialize artifact archiver.

        Args:
            workspace: Directory the glob patterns are relative to
            archive_dir: Destination directory
            show_progress: Whether to show a progress bar while copying
        """
        self.workspace = workspace
        self.archive_dir = archive_dir
        self.show_progress = show_progress
        self.logger = logging.getLogger(self.__class__.__name__)

    def resolve(self, request: ArtifactArchiveRequest) -> list[str]:
        """Workspace-relative files matching one request, sorted."""
        matches = glob.glob(request.glob_pattern, root_dir=self.workspace, recursive=True)
        return sorted(
            m for m in matches
            if os.path.isfile(os.path.join(self.workspace, m))
        )

    def archive(self, requests: Iterable[ArtifactArchiveRequest]) -> list[str]:
        """
        Archive all files matched by the requests.

        Args:
            requests: Archive requests; duplicate patterns are handled once

        Returns:
            Paths of the archived copies

        Raises:
            ArchiveError: If a request without allow_empty matched nothing
                or a file could not be copied
        """
        files: list[str] = []
        errors: list[str] = []
        seen_patterns = set()

        for request in requests:
            if request.glob_pattern in seen_patterns:
                continue
            seen_patterns.add(request.glob_pattern)

            matched = self.resolve(request)
            if not matched:
                if request.allow_empty:
                    self.logger.info(f"No artifacts matched '{request.glob_pattern}'")
                else:
                    errors.append(f"no artifacts matched '{request.glob_pattern}'")
                continue
            files.extend(m for m in matched if m not in files)

        archived = self._copy_files(files, errors)

        self.logger.info(f"Archived {len(archived)} file(s) to {self.archive_dir}")
        if errors:
            raise ArchiveError("; ".join(errors))
        return archived

    def _copy_files(self, files: list[str], errors: list[str]) -> list[str]:
        archived = []
        if not files:
            return archived

        os.makedirs(self.archive_dir, exist_ok=True)
        with self._create_progress_bar(len(files)) as pbar:
            for rel_path in files:
                source = os.path.join(self.workspace, rel_path)
                target = os.path.join(self.archive_dir, rel_path)
                try:
                    os.makedirs(os.path.dirname(target), exist_ok=True)
                    shutil.copy2(source, target)
                    archived.append(target)
                except OSError as e:
                    errors.append(f"could not copy {rel_path}: {e}")
                if pbar is not None:
                    pbar.update(1)
        return archived

    def _create_progress_bar(self, total: int):
        if self.show_progress:
            return tqdm(
                total=total,
                desc="Archiving artifacts",
                unit="file",
                dynamic_ncols=True,
                mininterval=1
            )
        return nullcontext()
