"""Settings for fabric-notify.

Notebook code used to lean on ambient variables (tenant id, client id) that
happened to exist in the session. Here the same values are declared once,
validated, and turned into an explicit ``CredentialConfig`` that is passed to
the credential provider.

Manifesto:
    - **Pydantic validation:** Type-checked when settings are loaded
    - **Environment-driven:** ``FABRIC_NOTIFY_*`` env vars and ``.env`` files
    - **Explicit hand-off:** Providers receive a frozen ``CredentialConfig``,
      never the settings object or the environment

Examples:
    >>> from fabric_notify.core.settings import NotifySettings
    >>> settings = NotifySettings(
    ...     tenant_id="contoso.onmicrosoft.com",
    ...     client_id="7f0c6a3e-3e0f-4a54-9f4c-2f8d7c1d2b11",
    ...     secret_name="notify-sp-secret",
    ... )
    >>> settings.credential_config().scopes
    ('https://graph.microsoft.com/.default',)

Tags:
    settings, configuration, pydantic, environment, fabric-notify
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fabric_notify.auth.scopes import GRAPH_DEFAULT_SCOPE
from fabric_notify.core.errors import InvalidConfigError, MissingConfigError

_GUID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")
_DOMAIN_RE = re.compile(r"^(?=.{1,253}$)([a-zA-Z0-9](-?[a-zA-Z0-9])*\.)+[a-zA-Z]{2,}$")


def is_guid(value: str) -> bool:
    return bool(_GUID_RE.match(value))


def is_tenant_identifier(value: str) -> bool:
    """Tenants are addressed by directory GUID or by a verified domain name."""
    return is_guid(value) or bool(_DOMAIN_RE.match(value))


@dataclass(frozen=True)
class CredentialConfig:
    """Everything a credential provider needs, and nothing else.

    ``secret_locator`` is the Key Vault URL holding ``secret_name``; empty
    means the secret is resolved from the local backends (env, file).
    """

    client_id: str
    tenant_id: str
    secret_name: str
    secret_locator: str = ""
    scopes: tuple[str, ...] = (GRAPH_DEFAULT_SCOPE,)

    def __post_init__(self) -> None:
        for key in ("client_id", "tenant_id", "secret_name"):
            if not getattr(self, key):
                raise MissingConfigError(key)
        if not is_guid(self.client_id):
            raise InvalidConfigError("client_id", self.client_id, "client_id must be an application (client) GUID")
        if not is_tenant_identifier(self.tenant_id):
            raise InvalidConfigError(
                "tenant_id", self.tenant_id, "tenant_id must be a directory GUID or a domain name"
            )
        if not self.scopes:
            raise MissingConfigError("scopes")


class NotifySettings(BaseSettings):
    """Effective configuration, read from ``FABRIC_NOTIFY_*`` variables.

    Fields
    ──────
    tenant_id          : Directory (tenant) GUID or domain
    client_id          : Service principal application id
    secret_name        : Name of the client secret in the secret store
    secret_locator     : Key Vault URL; empty for env/file secrets
    vault_token        : Pre-acquired Key Vault token (notebook runtime)
    scopes             : Scopes the workflow is allowed to request
    authority_host     : Identity provider host
    graph_base_url     : Graph API root used for sendMail
    sender             : Default sending mailbox (UPN)
    save_to_sent_items : Keep a copy in the sender's Sent Items
    timeout_seconds    : Bound on every HTTP call
    token_cache        : Reuse tokens until shortly before expiry
    log_level          : structlog level
    log_format         : console | json
    """

    model_config = SettingsConfigDict(
        env_prefix="FABRIC_NOTIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Identity ─────────────────────────────────────────────────
    tenant_id: str = ""
    client_id: str = ""
    secret_name: str = ""
    secret_locator: str = ""
    vault_token: SecretStr = SecretStr("")
    scopes: list[str] = Field(default_factory=lambda: [GRAPH_DEFAULT_SCOPE])
    authority_host: str = "https://login.microsoftonline.com"

    # ── Mail ─────────────────────────────────────────────────────
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    sender: str = ""
    save_to_sent_items: bool = True

    # ── Transport ────────────────────────────────────────────────
    timeout_seconds: float = Field(default=30.0, gt=0)
    token_cache: bool = False

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "console"

    @field_validator("authority_host", "graph_base_url", "secret_locator")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("console", "json"):
            raise ValueError("log_format must be 'console' or 'json'")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    def credential_config(self) -> CredentialConfig:
        """Build the explicit configuration object for the credential provider.

        Raises:
            MissingConfigError: tenant, client or secret name not set
            InvalidConfigError: malformed identifiers
        """
        return CredentialConfig(
            client_id=self.client_id.strip(),
            tenant_id=self.tenant_id.strip(),
            secret_name=self.secret_name.strip(),
            secret_locator=self.secret_locator,
            scopes=tuple(self.scopes),
        )

    def redacted(self) -> dict[str, object]:
        """Settings as a dict, safe to print."""
        data = self.model_dump()
        data["vault_token"] = "[REDACTED]" if self.vault_token.get_secret_value() else ""
        return data
