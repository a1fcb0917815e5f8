"""Credential providers.

Secure storage is an external collaborator; the pipeline only needs
``get_secret(name) -> str | None``. Values are never logged.
"""

from typing import Mapping, Protocol

from pydantic import SecretStr

from resetchat.config import Settings


class CredentialProvider(Protocol):
    def get_secret(self, name: str) -> str | None: ...


class SettingsCredentialProvider:
    """Reads secrets from application settings (environment or ``.env``)."""

    def __init__(self, settings: Settings) -> None:
        self._secrets: dict[str, SecretStr] = {}
        if settings.openai_api_key is not None:
            self._secrets[settings.openai_api_key_name] = settings.openai_api_key

    def get_secret(self, name: str) -> str | None:
        secret = self._secrets.get(name)
        if secret is None:
            return None
        value = secret.get_secret_value().strip()
        return value or None


class StaticCredentialProvider:
    """In-process secrets, for wiring tests and local tooling."""

    def __init__(self, secrets: Mapping[str, str] | None = None) -> None:
        self._secrets = dict(secrets or {})

    def get_secret(self, name: str) -> str | None:
        return self._secrets.get(name) or None

    def delete_secret(self, name: str) -> None:
        self._secrets.pop(name, None)
