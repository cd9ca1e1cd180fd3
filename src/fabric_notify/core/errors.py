"""
Structured error types for fabric-notify.

Every failure in the credential -> payload -> dispatch chain surfaces as a
typed ``NotifyError``. Errors are never recovered locally: they abort the
calling notebook run, so each one carries enough to tell a scope mismatch
apart from a genuine permission problem.

Manifesto:
    - **Typed Error Hierarchy:** One class per failure mode in the chain
    - **Nothing Obscured:** The remote status code and JSON error payload
      travel with the error and appear in ``str(error)``
    - **No Retry Semantics:** Nothing here is retried, so there is no
      retryable flag to get wrong
    - **Error Chaining:** The underlying httpx exception is kept as cause

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                        NotifyError                               │
        │        (category, context, cause, status_code, payload)          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  CredentialError       ScopeMismatchError   TransportError       │
        │  (AUTH)                (AUTH)               (NETWORK)            │
        │       │                                          │               │
        │  SecretNotFoundError                       RequestTimeoutError   │
        │  SecretAccessError                                               │
        │                                                                  │
        │  ApplicationRejectionError   ConfigError    MessageValidation    │
        │  (REMOTE)                    (CONFIG)       Error (VALIDATION)   │
        │                                   │                              │
        │                          MissingConfigError                      │
        │                          InvalidConfigError                      │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    Raising a remote rejection with its payload:

    >>> error = ApplicationRejectionError(
    ...     "sendMail rejected",
    ...     status_code=400,
    ...     payload={"error": {"code": "ErrorInvalidRecipients"}},
    ... )
    >>> error.status_code
    400
    >>> "ErrorInvalidRecipients" in str(error)
    True

    Adding context fluently:

    >>> error = CredentialError("token request failed")
    >>> error.with_context(tenant_id="contoso.onmicrosoft.com", scope="https://graph.microsoft.com/.default")
    CredentialError('token request failed', category=AUTH)

Guardrails:
    ❌ DON'T: Catch a NotifyError and continue the run
    ✅ DO: Let it propagate so the automation run fails visibly

    ❌ DON'T: Put secrets or tokens in context metadata
    ✅ DO: Store identifiers (tenant, client, sender, scope)

Tags:
    error-handling, exception-hierarchy, error-context, fabric-notify
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Error categories used for classification in logs and CLI output.

    Attributes:
        AUTH: Secret store, identity provider or audience problems
        NETWORK: Connection failures and timeouts
        REMOTE: Structurally valid request rejected by the remote service
        CONFIG: Missing or invalid settings
        VALIDATION: Message rejected locally before any I/O
        INTERNAL: Bugs, unexpected state
    """

    AUTH = "AUTH"
    NETWORK = "NETWORK"
    REMOTE = "REMOTE"
    CONFIG = "CONFIG"
    VALIDATION = "VALIDATION"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only identifiers belong here. ``to_dict()`` drops unset fields so the
    result can be passed straight to a structlog call.
    """

    # Request context
    url: str | None = None
    http_status: int | None = None

    # Identity context
    scope: str | None = None
    tenant_id: str | None = None
    client_id: str | None = None
    sender: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["url", "http_status", "scope", "tenant_id", "client_id", "sender"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class NotifyError(Exception):
    """
    Base exception for all fabric-notify errors.

    Carries:
    - **category:** ErrorCategory for classification
    - **status_code:** Remote HTTP status, when the error came from a response
    - **payload:** Remote error body (decoded JSON, or raw text) kept verbatim
    - **context:** ErrorContext with identifiers
    - **cause:** Underlying exception, also set as ``__cause__``
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        status_code: int | None = None,
        payload: Any = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.status_code = status_code
        self.payload = payload
        self.context = context or ErrorContext()
        self.cause = cause

        if status_code is not None and self.context.http_status is None:
            self.context.http_status = status_code

        if cause is not None:
            self.__cause__ = cause

    @property
    def retryable(self) -> bool:
        # Nothing in the send chain is retried.
        return False

    def with_context(self, **kwargs: Any) -> NotifyError:
        """
        Add context to this error (fluent API).

        Usage:
            raise CredentialError("Secret lookup failed").with_context(
                client_id=config.client_id,
                tenant_id=config.tenant_id,
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        if self.status_code is not None:
            result["status_code"] = self.status_code
        if self.payload is not None:
            result["payload"] = self.payload
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __str__(self) -> str:
        text = self.message
        if self.status_code is not None:
            text += f" (HTTP {self.status_code})"
        if self.payload is not None:
            text += f": {_render_payload(self.payload)}"
        return text

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


def _render_payload(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    try:
        return json.dumps(payload, sort_keys=True)
    except (TypeError, ValueError):
        return repr(payload)


# =============================================================================
# CREDENTIAL ERRORS
# =============================================================================


class CredentialError(NotifyError):
    """
    The secret store or the identity provider rejected the request.

    When raised from a token endpoint response, ``payload`` holds the
    provider's raw error body (``error``, ``error_description``,
    ``error_codes``...) exactly as returned.
    """

    default_category = ErrorCategory.AUTH


class SecretNotFoundError(CredentialError):
    """Secret name did not resolve in any configured backend."""

    def __init__(self, key: str, tried_backends: list[str] | None = None, **kwargs: Any):
        self.key = key
        self.tried_backends = tried_backends or []

        msg = f"Secret not found: {key}"
        if self.tried_backends:
            msg += f" (tried: {', '.join(self.tried_backends)})"
        super().__init__(msg, **kwargs)


class SecretAccessError(CredentialError):
    """Secret exists (or may exist) but the caller could not read it."""


# =============================================================================
# AUTHORIZATION / AUDIENCE
# =============================================================================


class ScopeMismatchError(NotifyError):
    """
    Token audience does not match the API being called.

    Raised locally, before any request, when a token's declared scope is for
    a different audience than the endpoint expects. Also raised for remote
    401/403 responses, which is how a mismatch shows up when role
    assignments are otherwise correct.
    """

    default_category = ErrorCategory.AUTH

    def __init__(
        self,
        message: str,
        *,
        expected_audience: str | None = None,
        actual_audience: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.expected_audience = expected_audience
        self.actual_audience = actual_audience

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.expected_audience:
            result["expected_audience"] = self.expected_audience
        if self.actual_audience:
            result["actual_audience"] = self.actual_audience
        return result


# =============================================================================
# TRANSPORT
# =============================================================================


class TransportError(NotifyError):
    """Network-level failure: DNS, connection refused, TLS, broken pipe."""

    default_category = ErrorCategory.NETWORK


class RequestTimeoutError(TransportError):
    """The bounded request timeout elapsed."""


# =============================================================================
# REMOTE REJECTION
# =============================================================================


class ApplicationRejectionError(NotifyError):
    """Remote service returned a non-2xx (other than 401/403) for a well-formed request."""

    default_category = ErrorCategory.REMOTE


# =============================================================================
# CONFIGURATION
# =============================================================================


class ConfigError(NotifyError):
    """Configuration error. The settings must be fixed."""

    default_category = ErrorCategory.CONFIG


class MissingConfigError(ConfigError):
    """Required configuration is missing."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"Missing required configuration: {key}")


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}")


# =============================================================================
# LOCAL VALIDATION
# =============================================================================


class MessageValidationError(NotifyError):
    """The message was rejected locally before any network I/O."""

    default_category = ErrorCategory.VALIDATION

    def __init__(self, message: str, *, field: str | None = None, value: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def error_from_response(
    response: Any,
    message: str,
    *,
    auth_error: type[NotifyError] = ScopeMismatchError,
    rejection_error: type[NotifyError] = ApplicationRejectionError,
) -> NotifyError:
    """
    Build the typed error for a non-2xx ``httpx.Response``.

    401 and 403 map to ``auth_error``; everything else to ``rejection_error``.
    The body is decoded as JSON when possible and kept as raw text otherwise.
    """
    payload = decode_error_payload(response)
    error_cls = auth_error if response.status_code in (401, 403) else rejection_error
    return error_cls(
        message,
        status_code=response.status_code,
        payload=payload,
        context=ErrorContext(url=str(response.request.url)),
    )


def decode_error_payload(response: Any) -> Any:
    """Return the JSON body of ``response``, its text, or ``None`` when empty."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
