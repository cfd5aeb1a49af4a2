"""
VulnerabilityScanner service - Runs a security scan with a fallback tool.

The fallback command is only invoked when the primary scan fails: tool
missing, timeout, a crashing exit code or no fresh readable report. A
report file left over from an earlier build is never read.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from domain.config import SecurityScanConfig
from domain.errors import ToolError
from utils.environment import substitute, substitute_all
from .command import CommandResult, CommandRunner

SEVERITY_ORDER = ("LOW", "MEDIUM", "HIGH", "CRITICAL")

# Exit codes that still come with a report; 1 means findings were reported
# (trivy --exit-code 1, npm audit)
_REPORT_EXIT_CODES = (0, 1)

# npm audit uses its own severity names
_SEVERITY_ALIASES = {
    "MODERATE": "MEDIUM",
    "INFO": "LOW",
}


@dataclass(frozen=True)
class ScanReport:
    """Result of a vulnerability scan."""

    tool: str
    severity_threshold: str
    severity_counts: dict = field(default_factory=dict)
    report_path: Optional[str] = None
    used_fallback: bool = False

    @property
    def blocking_count(self) -> int:
        """Number of findings at or above the threshold."""
        floor = SEVERITY_ORDER.index(self.severity_threshold)
        return sum(
            count for severity, count in self.severity_counts.items()
            if severity in SEVERITY_ORDER and SEVERITY_ORDER.index(severity) >= floor
        )

    @property
    def passed(self) -> bool:
        return self.blocking_count == 0

    @property
    def total(self) -> int:
        return sum(self.severity_counts.values())


def count_severities(payload: dict) -> dict:
    """
    Count findings per severity in a scanner JSON report.

    Understands Trivy-style ``Results[].Vulnerabilities[]`` and npm-audit
    style ``metadata.vulnerabilities`` summaries.

    Raises:
        ValueError: If the payload has neither shape
    """
    counts: dict[str, int] = {}

    def add(severity: str, amount: int = 1):
        name = str(severity).upper()
        name = _SEVERITY_ALIASES.get(name, name)
        if amount:
            counts[name] = counts.get(name, 0) + amount

    if "Results" in payload:
        for result in payload.get("Results") or []:
            for vuln in result.get("Vulnerabilities") or []:
                add(vuln.get("Severity", "UNKNOWN"))
        return counts

    summary = payload.get("metadata", {}).get("vulnerabilities")
    if isinstance(summary, dict):
        for severity, amount in summary.items():
            if severity.lower() == "total":
                continue
            add(severity, int(amount))
        return counts

    raise ValueError("Unrecognized scan report format")


class VulnerabilityScanner:
    """Runs the configured scanner, falling back to a second tool on error."""

    def __init__(self, runner: CommandRunner, config: SecurityScanConfig):
        self.runner = runner
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)

    def scan(self, severity_threshold: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> ScanReport:
        """
        Scan the workspace.

        Args:
            severity_threshold: Lowest severity that fails the scan
            env: Environment used for ``${VAR}`` expansion and the child processes

        Returns:
            ScanReport from the primary scanner, or from the fallback

        Raises:
            ToolError: If the primary raised and no fallback is configured,
                or the fallback failed as well
        """
        threshold = (severity_threshold or self.config.severity_threshold).upper()
        if threshold not in SEVERITY_ORDER:
            raise ValueError(f"Unknown severity threshold: {threshold}")

        variables = dict(env or {})
        report_path = substitute(self.config.report_path, variables)
        variables.setdefault("REPORT_PATH", report_path)

        try:
            return self._run_scanner(self.config.command, threshold, report_path, variables, env, fallback=False)
        except ToolError as e:
            if not self.config.fallback_command:
                raise
            self.logger.warning(f"Primary scanner failed ({e}); using fallback")

        return self._run_scanner(self.config.fallback_command, threshold, report_path, variables, env, fallback=True)

    def _run_scanner(
        self,
        command,
        threshold: str,
        report_path: str,
        variables: dict,
        env: Optional[Mapping[str, str]],
        fallback: bool,
    ) -> ScanReport:
        cmd = substitute_all(command, variables)
        path = self._resolve(report_path)
        if not fallback and os.path.exists(path):
            os.remove(path)

        result = self.runner.run(cmd, env=env, timeout=self.config.timeout_sec)
        if result.returncode not in _REPORT_EXIT_CODES:
            detail = result.stderr.strip().splitlines()
            message = detail[-1] if detail else "no output"
            raise ToolError(cmd, f"exit code {result.returncode}: {message}", result.returncode)

        payload = self._load_report(result, path, stdout_only=fallback)

        try:
            counts = count_severities(payload)
        except ValueError as e:
            raise ToolError(cmd, str(e))

        report = ScanReport(
            tool=os.path.basename(cmd[0]),
            severity_threshold=threshold,
            severity_counts=counts,
            report_path=report_path,
            used_fallback=fallback,
        )
        self.logger.info(
            f"{report.tool}: {report.total} findings, "
            f"{report.blocking_count} at or above {threshold}"
        )
        return report

    def _load_report(self, result: CommandResult, path: str, stdout_only: bool = False) -> dict:
        from_file = not stdout_only and os.path.exists(path) and os.path.getsize(path) > 0
        if from_file:
            with open(path, "r") as f:
                text = f.read()
        else:
            text = result.stdout

        if not text.strip():
            raise ToolError(list(result.command), f"no report produced (rc={result.returncode})", result.returncode)

        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise ToolError(list(result.command), f"unreadable report: {e}", result.returncode)

        if not from_file:
            with open(path, "w") as f:
                f.write(text)
        return payload

    def _resolve(self, path: str) -> str:
        if os.path.isabs(path) or not self.runner.cwd:
            return path
        return os.path.join(self.runner.cwd, path)
