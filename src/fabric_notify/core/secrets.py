"""Secret store lookup for the service principal's client secret.

The client secret is never configured inline. It is looked up by name,
either from a Key Vault (``secret_locator`` is the vault URL) or from local
backends: environment variables, mounted secret files, or an in-memory dict
for tests and interactive notebooks.

Manifesto:
    Hardcoded secrets in notebooks get copied, exported and committed.
    Resolving by name keeps the value out of the notebook source and lets
    the same notebook run against different vaults per environment.

    - **Pluggable backends:** Env vars, files, Key Vault, dict
    - **Ordered resolution:** Backends tried in order, first hit wins
    - **Reference syntax:** ``secret:env:NAME`` pins one backend
    - **Redacted by default:** ``SecretValue`` never prints its value

Architecture:
    ::

        lookup(secret_name, locator)
               │
               ├── locator set ──► KeyVaultSecretBackend(vault_url == locator)
               │                        GET {vault}/secrets/{name}
               │                        (token scoped to vault.azure.net)
               │
               └── no locator ──► EnvSecretBackend → FileSecretBackend → ...

Examples:
    >>> resolver = SecretsResolver([DictSecretBackend({"notify-sp-secret": "s3cr3t"})])
    >>> resolver.resolve("notify-sp-secret")
    's3cr3t'
    >>> str(resolver.resolve_secret_value("notify-sp-secret"))
    '[REDACTED]'

Guardrails:
    - Secrets are NEVER logged; wrap them in SecretValue as soon as resolved
    - A missing secret is a CredentialError, not a None that fails later

Tags:
    secrets, credentials, key-vault, security, fabric-notify
"""

from __future__ import annotations

import os
import re
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from fabric_notify.auth.scopes import KEY_VAULT_AUDIENCE, KEY_VAULT_SCOPE, require_audience
from fabric_notify.core.errors import (
    ConfigError,
    ErrorContext,
    RequestTimeoutError,
    SecretAccessError,
    SecretNotFoundError,
    TransportError,
    decode_error_payload,
)
from fabric_notify.core.logging import get_logger

if TYPE_CHECKING:
    from fabric_notify.auth.tokens import AccessToken

logger = get_logger(__name__)

KEY_VAULT_API_VERSION = "7.4"


class SecretResolutionError(ConfigError):
    """Raised when a secret reference or locator cannot be mapped to a backend."""


# ---------------------------------------------------------------------------
# SecretValue wrapper
# ---------------------------------------------------------------------------


class SecretValue:
    """Wrapper for secret values that prevents accidental logging.

    Example:
        >>> secret = SecretValue("my_password")
        >>> print(secret)           # [REDACTED]
        >>> secret.get_secret()     # "my_password"
    """

    __slots__ = ("_value",)

    def __init__(self, value: str):
        self._value = value

    def get_secret(self) -> str:
        """Get the actual secret value."""
        return self._value

    def __str__(self) -> str:
        return "[REDACTED]"

    def __repr__(self) -> str:
        return "SecretValue('[REDACTED]')"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecretValue):
            return self._value == other._value
        return False

    def __hash__(self) -> int:
        return hash(self._value)

    def __bool__(self) -> bool:
        return bool(self._value)

    def __len__(self) -> int:
        return len(self._value)


# ---------------------------------------------------------------------------
# Secret backends
# ---------------------------------------------------------------------------


class SecretBackend(ABC):
    """Abstract base for secret backends."""

    name: str = "backend"

    @abstractmethod
    def get(self, name: str) -> str | None:
        """Retrieve a secret by name.

        Returns:
            Secret value or None if not found in this backend
        """
        ...

    def contains(self, name: str) -> bool:
        return self.get(name) is not None


class EnvSecretBackend(SecretBackend):
    """Resolve secrets from environment variables.

    Tries, in order: ``{NAME}``, ``FABRIC_NOTIFY_SECRET_{NAME}``,
    ``{NAME}_SECRET``. Dashes in the name become underscores, so the Key Vault
    style name ``notify-sp-secret`` maps to ``NOTIFY_SP_SECRET``.
    """

    name = "env"

    def get(self, name: str) -> str | None:
        key_upper = name.upper().replace("-", "_")

        patterns = [
            key_upper,
            f"FABRIC_NOTIFY_SECRET_{key_upper}",
            f"{key_upper}_SECRET",
        ]

        for pattern in patterns:
            value = os.environ.get(pattern)
            if value is not None:
                return value

        return None


class FileSecretBackend(SecretBackend):
    """Resolve secrets from files (Docker ``/run/secrets``, Kubernetes mounts).

    File contents are cached after the first read.
    """

    name = "file"

    def __init__(self, secrets_dir: str | Path = "/run/secrets"):
        self.secrets_dir = Path(secrets_dir)
        self._cache: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> str | None:
        with self._lock:
            if name in self._cache:
                return self._cache[name]

        secret_path = self.secrets_dir / name
        if not secret_path.is_file():
            return None

        try:
            content = secret_path.read_text().strip()
        except OSError as exc:
            raise SecretAccessError(f"Cannot read secret file {secret_path}", cause=exc) from exc

        with self._lock:
            self._cache[name] = content
        return content

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()


class DictSecretBackend(SecretBackend):
    """In-memory backend for tests and interactive notebooks."""

    name = "dict"

    def __init__(self, secrets: dict[str, str] | None = None):
        self._secrets = dict(secrets) if secrets else {}

    def get(self, name: str) -> str | None:
        return self._secrets.get(name)

    def set(self, key: str, value: str) -> None:
        self._secrets[key] = value


class KeyVaultSecretBackend(SecretBackend):
    """Resolve secrets from an Azure Key Vault over its REST API.

    Args:
        vault_url: Vault locator, e.g. ``https://my-vault.vault.azure.net``
        token_source: Callable returning an ``AccessToken`` for a scope. It is
            always called with ``KEY_VAULT_SCOPE`` and the returned token's
            audience is checked before use.
        client: Optional shared ``httpx.Client`` (not closed here)
        timeout: Per-request timeout in seconds
    """

    name = "keyvault"

    def __init__(
        self,
        vault_url: str,
        token_source: Callable[[str], AccessToken],
        *,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
    ):
        self.vault_url = vault_url.rstrip("/")
        self._token_source = token_source
        self._client = client
        self._timeout = timeout

    def get(self, name: str) -> str | None:
        token = self._token_source(KEY_VAULT_SCOPE)
        require_audience(token, KEY_VAULT_AUDIENCE)

        url = f"{self.vault_url}/secrets/{quote(name, safe='')}"
        logger.debug("secret_lookup", vault=self.vault_url, secret_name=name)

        try:
            response = self._request(url, token)
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(f"Timed out reading secret from {self.vault_url}", cause=exc) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Could not reach {self.vault_url}: {exc}", cause=exc) from exc

        if response.status_code == 404:
            return None
        if not response.is_success:
            raise SecretAccessError(
                f"Key Vault refused secret {name!r}",
                status_code=response.status_code,
                payload=decode_error_payload(response),
                context=ErrorContext(url=url),
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise SecretAccessError(
                f"Key Vault returned a non-JSON body for {name!r}",
                status_code=response.status_code,
                payload=response.text,
                context=ErrorContext(url=url),
                cause=exc,
            ) from exc

        value = body.get("value") if isinstance(body, dict) else None
        if value is None:
            raise SecretAccessError(
                f"Key Vault response for {name!r} has no value",
                status_code=response.status_code,
                context=ErrorContext(url=url),
            )
        return value

    def _request(self, url: str, token: AccessToken) -> httpx.Response:
        params = {"api-version": KEY_VAULT_API_VERSION}
        headers = token.authorization_header()
        if self._client is not None:
            return self._client.get(url, params=params, headers=headers, timeout=self._timeout)
        with httpx.Client(timeout=self._timeout) as client:
            return client.get(url, params=params, headers=headers)


# ---------------------------------------------------------------------------
# Reference patterns
# ---------------------------------------------------------------------------

# secret:backend:key  (e.g. secret:env:NOTIFY_SP_SECRET)
_FULL_REFERENCE_RE = re.compile(r"^secret:(\w+):(.+)$")

_SENTINEL = object()


# ---------------------------------------------------------------------------
# SecretsResolver
# ---------------------------------------------------------------------------


class SecretsResolver:
    """Multi-backend secrets resolver.

    Resolves secrets by trying backends in order until one returns a value.
    """

    def __init__(self, backends: list[SecretBackend] | None = None):
        self._backends: list[SecretBackend] = list(backends) if backends is not None else []

    @property
    def backends(self) -> list[SecretBackend]:
        return list(self._backends)

    def add_backend(self, backend: SecretBackend, priority: int = -1) -> None:
        """Add a backend; ``priority`` is its position (-1 appends)."""
        if priority < 0:
            self._backends.append(backend)
        else:
            self._backends.insert(priority, backend)

    def resolve(self, key: str, default: Any = _SENTINEL) -> str:
        """Resolve a secret by key.

        Raises:
            SecretNotFoundError: no backend has the secret and no default given
        """
        tried: list[str] = []
        for backend in self._backends:
            tried.append(backend.name)
            value = backend.get(key)
            if value is not None:
                return value

        if default is not _SENTINEL:
            return default

        raise SecretNotFoundError(key, tried)

    def resolve_secret_value(self, key: str) -> SecretValue:
        return SecretValue(self.resolve(key))

    def lookup(self, secret_name: str, locator: str = "") -> SecretValue:
        """Resolve ``(vault_locator, secret_name)`` to a redacted value.

        With a locator, only the Key Vault backend for that vault is asked.
        Without one, all backends are tried in order.
        """
        if not locator:
            return self.resolve_secret_value(secret_name)

        locator = locator.rstrip("/")
        for backend in self._backends:
            if isinstance(backend, KeyVaultSecretBackend) and backend.vault_url == locator:
                value = backend.get(secret_name)
                if value is None:
                    raise SecretNotFoundError(secret_name, [f"keyvault:{locator}"])
                return SecretValue(value)

        raise SecretResolutionError(f"No Key Vault backend registered for locator {locator!r}")

    def resolve_reference(self, reference: str) -> str:
        """Resolve ``secret:<backend>:<key>`` or a plain key.

        Raises:
            SecretResolutionError: malformed reference or unknown backend
            SecretNotFoundError: secret not found
        """
        full_match = _FULL_REFERENCE_RE.match(reference)
        if full_match:
            backend_name = full_match.group(1)
            key = full_match.group(2)
            for backend in self._backends:
                if backend.name == backend_name:
                    value = backend.get(key)
                    if value is None:
                        raise SecretNotFoundError(key, [backend_name])
                    return value
            raise SecretResolutionError(f"Unknown secret backend '{backend_name}' in reference")

        if reference.startswith("secret:"):
            raise SecretResolutionError(
                f"Invalid secret reference format: '{reference}'. Expected 'secret:<backend>:<key>'."
            )

        return self.resolve(reference)

    def contains(self, key: str) -> bool:
        return any(backend.contains(key) for backend in self._backends)


def default_resolver(secrets_dir: str | Path = "/run/secrets") -> SecretsResolver:
    """Environment variables first, then mounted secret files."""
    return SecretsResolver([EnvSecretBackend(), FileSecretBackend(secrets_dir)])
