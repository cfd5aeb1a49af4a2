"""
CredentialProvider service - Supplies registry credentials.

Credentials are kept out of the run context. The executor separates them
from the environment snapshot and the push stage asks for them only when
it logs in.
"""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from domain.config import CredentialsConfig
from domain.errors import ConfigurationError


@dataclass(frozen=True)
class Credentials:
    """Username/password pair; the password is hidden from repr."""

    username: str
    password: str = field(repr=False)


class CredentialProvider:
    """Looks up credentials by the configured environment variable names."""

    def __init__(self, config: CredentialsConfig):
        self.config = config

    def get(self, secrets: Optional[Mapping[str, str]] = None) -> Credentials:
        """
        Read credentials from a secrets mapping.

        Args:
            secrets: Mapping holding the configured variables, ``os.environ`` when None

        Raises:
            ConfigurationError: If either variable is unset or empty
        """
        source = os.environ if secrets is None else secrets
        username = source.get(self.config.username_env, "")
        password = source.get(self.config.password_env, "")
        missing = [
            name for name, value in (
                (self.config.username_env, username),
                (self.config.password_env, password),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing registry credentials: {', '.join(missing)}")
        return Credentials(username=username, password=password)
