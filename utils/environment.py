"""
Environment utilities for pipeline runs.

Builds the read-only environment snapshot and expands ``${VAR}`` references.
"""

import os
from string import Template
from types import MappingProxyType
from typing import Iterable, Mapping, Optional


def snapshot_environment(
    overrides: Optional[Iterable[tuple[str, str]]] = None,
    base: Optional[Mapping[str, str]] = None,
) -> Mapping[str, str]:
    """
    Take a read-only snapshot of the environment for one run.

    Args:
        overrides: (name, value) pairs applied over the base environment
        base: Base environment, defaults to ``os.environ``

    Returns:
        Read-only mapping; later changes to the process environment are not seen
    """
    env = dict(os.environ if base is None else base)
    for key, value in overrides or ():
        env[str(key)] = str(value)
    return MappingProxyType(env)


def parse_env_assignments(assignments: Iterable[str]) -> list[tuple[str, str]]:
    """
    Parse ``KEY=VALUE`` strings from the command line.

    Raises:
        ValueError: If an assignment has no ``=`` or an empty key
    """
    pairs = []
    for item in assignments:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Expected KEY=VALUE, got '{item}'")
        pairs.append((key.strip(), value))
    return pairs


def substitute(value: str, env: Mapping[str, str]) -> str:
    """Expand ``${VAR}`` / ``$VAR`` references; unknown names are left as-is."""
    return Template(value).safe_substitute(env)


def substitute_all(parts: Iterable[str], env: Mapping[str, str]) -> list[str]:
    """Expand references in every element of a command."""
    return [substitute(str(part), env) for part in parts]


def is_change_request(env: Mapping[str, str]) -> bool:
    """
    Check whether the run builds a pull/merge request.

    A change request is signalled by a non-empty ``CHANGE_ID`` or a
    ``BRANCH_NAME`` of the form ``PR-<n>``.
    """
    if env.get("CHANGE_ID", "").strip():
        return True
    return env.get("BRANCH_NAME", "").upper().startswith("PR-")


def split_secrets(env: Mapping[str, str], names: Iterable[str]) -> tuple[Mapping[str, str], Mapping[str, str]]:
    """
    Separate secret variables from an environment snapshot.

    Returns:
        Tuple of (environment without the secrets, the secrets), both read-only
    """
    names = set(names)
    public = {key: value for key, value in env.items() if key not in names}
    secrets = {key: env[key] for key in names if key in env}
    return MappingProxyType(public), MappingProxyType(secrets)
