"""
Tool services.

Opaque wrappers around the external CLIs invoked by pipeline stages.
"""

from .command import CommandResult, CommandRunner
from .credentials import CredentialProvider, Credentials
from .package_manager import PackageManager
from .test_runner import TestRunner
from .scanner import ScanReport, VulnerabilityScanner
from .container import ContainerEngine

__all__ = [
    "CommandResult",
    "CommandRunner",
    "CredentialProvider",
    "Credentials",
    "PackageManager",
    "TestRunner",
    "ScanReport",
    "VulnerabilityScanner",
    "ContainerEngine",
]
