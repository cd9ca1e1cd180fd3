"""
Access tokens and the client-credentials provider.

Manifesto:
    A token is only meaningful together with the audience it was issued for.
    ``AccessToken`` keeps the scope next to the opaque value, and
    ``ClientSecretCredentialProvider.get_token`` takes the scope as a
    required argument so no call site can fall back to an implicit default
    audience.

Architecture:
    ::

        get_token(scope)
          │
          ├─ audience not in config.scopes ─────────────────  ScopeMismatchError
          │
          ├─ cache hit (opt-in) ───────────────────────────► AccessToken
          │
          ├─ secrets.lookup(secret_name, secret_locator)      CredentialError
          │
          ├─ POST {authority}/{tenant}/oauth2/v2.0/token       TransportError
          │    grant_type=client_credentials                   CredentialError
          │
          └─ parse {access_token, expires_in} ─────────────► AccessToken

Guardrails:
    ❌ DON'T: Swallow the identity provider's error body
    ✅ DO: Raise CredentialError with the payload verbatim

    ❌ DON'T: Retry a rejected credential
    ✅ DO: Fail the run; a bad secret does not fix itself

Tags:
    authentication, oauth2, client-credentials, service-principal, fabric-notify
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import httpx

from fabric_notify.auth.scopes import audience_of, require_audience
from fabric_notify.core.errors import (
    CredentialError,
    ErrorContext,
    RequestTimeoutError,
    ScopeMismatchError,
    TransportError,
    decode_error_payload,
)
from fabric_notify.core.logging import get_logger

if TYPE_CHECKING:
    from fabric_notify.auth.cache import TokenCache
    from fabric_notify.core.secrets import SecretsResolver
    from fabric_notify.core.settings import CredentialConfig

logger = get_logger(__name__)

DEFAULT_AUTHORITY_HOST = "https://login.microsoftonline.com"


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class AccessToken:
    """Opaque bearer credential plus the scope and expiry it was issued with."""

    value: str = field(repr=False)
    scope: str
    expires_at: datetime
    token_type: str = "Bearer"

    def __post_init__(self) -> None:
        if not self.value:
            raise ValueError("AccessToken value must be non-empty")

    @property
    def audience(self) -> str:
        return audience_of(self.scope)

    def expires_in(self, now: datetime | None = None) -> float:
        """Seconds until expiry (negative once expired)."""
        return (self.expires_at - (now or _utc_now())).total_seconds()

    def is_expired(self, skew_seconds: int = 60, now: datetime | None = None) -> bool:
        return self.expires_in(now) <= skew_seconds

    def authorization_header(self) -> dict[str, str]:
        return {"Authorization": f"{self.token_type} {self.value}"}

    def __str__(self) -> str:
        return f"AccessToken(audience={self.audience}, expires_at={self.expires_at.isoformat()})"


class ClientSecretCredentialProvider:
    """
    Exchange a service principal's client secret for a scoped bearer token.

    Args:
        config: Explicit identity configuration
        secrets: Resolver used to look up ``config.secret_name``
        client: Optional shared ``httpx.Client``; never closed by the provider
        cache: Optional ``TokenCache``; without it every call hits the network
        timeout: Per-request timeout in seconds
        authority_host: Identity provider root
    """

    def __init__(
        self,
        config: CredentialConfig,
        secrets: SecretsResolver,
        *,
        client: httpx.Client | None = None,
        cache: TokenCache | None = None,
        timeout: float = 30.0,
        authority_host: str = DEFAULT_AUTHORITY_HOST,
    ):
        self._config = config
        self._secrets = secrets
        self._client = client
        self._cache = cache
        self._timeout = timeout
        self._authority_host = authority_host.rstrip("/")

    @property
    def config(self) -> CredentialConfig:
        return self._config

    @property
    def token_url(self) -> str:
        return f"{self._authority_host}/{self._config.tenant_id}/oauth2/v2.0/token"

    def _check_allowed(self, scope: str) -> None:
        requested = audience_of(scope)
        allowed = sorted({audience_of(s) for s in self._config.scopes})
        if requested not in allowed:
            raise ScopeMismatchError(
                f"Credential is not configured for {requested} (allowed: {', '.join(allowed)})",
                expected_audience=", ".join(allowed),
                actual_audience=requested,
                context=self._error_context(scope),
            )

    def get_token(self, scope: str) -> AccessToken:
        """Return a bearer token for exactly ``scope``.

        Raises:
            ScopeMismatchError: ``scope`` is outside the audiences this
                credential is configured for; nothing is requested
            CredentialError: secret lookup failed or the identity provider
                rejected the credential (payload attached verbatim)
            TransportError: network failure or timeout
        """
        if not scope:
            raise CredentialError("A scope is required to request a token")
        self._check_allowed(scope)

        cache_key = None
        if self._cache is not None:
            cache_key = self._cache.key_for(self._config.client_id, self._config.tenant_id, scope)
            cached = self._cache.get(cache_key)
            if cached is not None:
                logger.debug("token_cache_hit", scope=scope)
                return cached

        secret = self._secrets.lookup(self._config.secret_name, self._config.secret_locator)

        logger.debug("token_requested", scope=scope, tenant_id=self._config.tenant_id)
        form = {
            "grant_type": "client_credentials",
            "client_id": self._config.client_id,
            "client_secret": secret.get_secret(),
            "scope": scope,
        }

        try:
            response = self._post(form)
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(
                "Timed out requesting token", cause=exc, context=self._error_context(scope)
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(
                f"Could not reach identity provider: {exc}", cause=exc, context=self._error_context(scope)
            ) from exc

        if not response.is_success:
            raise CredentialError(
                "Identity provider rejected the client credential",
                status_code=response.status_code,
                payload=decode_error_payload(response),
                context=self._error_context(scope),
            )

        token = self._parse_token(response, scope)
        logger.info(
            "token_acquired",
            scope=scope,
            expires_in=int(token.expires_in()),
            cached=False,
        )

        if self._cache is not None and cache_key is not None:
            self._cache.put(cache_key, token)
        return token

    def _post(self, form: dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return self._client.post(self.token_url, data=form, timeout=self._timeout)
        with httpx.Client(timeout=self._timeout) as client:
            return client.post(self.token_url, data=form)

    def _parse_token(self, response: httpx.Response, scope: str) -> AccessToken:
        try:
            body: dict[str, Any] = response.json()
        except ValueError as exc:
            raise CredentialError(
                "Identity provider returned a non-JSON token response",
                status_code=response.status_code,
                payload=response.text,
                context=self._error_context(scope),
                cause=exc,
            ) from exc

        access_token = body.get("access_token") if isinstance(body, dict) else None
        if not access_token:
            # Keep everything except a (possibly partial) token value.
            payload = {k: v for k, v in body.items() if k != "access_token"} if isinstance(body, dict) else body
            raise CredentialError(
                "Token response has no access_token",
                status_code=response.status_code,
                payload=payload,
                context=self._error_context(scope),
            )

        try:
            expires_in = int(body.get("expires_in", 3599))
        except (TypeError, ValueError):
            expires_in = 3599

        return AccessToken(
            value=access_token,
            scope=scope,
            expires_at=_utc_now() + timedelta(seconds=expires_in),
            token_type=body.get("token_type") or "Bearer",
        )

    def _error_context(self, scope: str) -> ErrorContext:
        return ErrorContext(
            url=self.token_url,
            scope=scope,
            tenant_id=self._config.tenant_id,
            client_id=self._config.client_id,
        )


@dataclass(frozen=True)
class StaticTokenSource:
    """Hand out a token obtained elsewhere, such as a notebook runtime helper.

    Only the scope it was created for is served; asking for another scope
    raises instead of returning a token for the wrong audience.
    """

    value: str = field(repr=False)
    scope: str
    lifetime_seconds: int = 3000

    def __call__(self, scope: str) -> AccessToken:
        token = AccessToken(
            value=self.value,
            scope=self.scope,
            expires_at=_utc_now() + timedelta(seconds=self.lifetime_seconds),
        )
        require_audience(token, scope)
        return token
