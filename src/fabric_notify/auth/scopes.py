"""Audience and scope helpers.

A client-credentials token is valid for exactly one API audience. Mixing
tokens across audiences inside one workflow is what produces opaque 401s
deep inside client libraries, so every credential call takes the scope
explicitly and every consumer checks the audience before using a token.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from fabric_notify.core.errors import ScopeMismatchError

if TYPE_CHECKING:
    from fabric_notify.auth.tokens import AccessToken

GRAPH_DEFAULT_SCOPE = "https://graph.microsoft.com/.default"
KEY_VAULT_SCOPE = "https://vault.azure.net/.default"
POWER_BI_SCOPE = "https://analysis.windows.net/powerbi/api/.default"
FABRIC_SCOPE = "https://api.fabric.microsoft.com/.default"

GRAPH_AUDIENCE = "https://graph.microsoft.com"
KEY_VAULT_AUDIENCE = "https://vault.azure.net"
POWER_BI_AUDIENCE = "https://analysis.windows.net/powerbi/api"

# Resource identifiers whose path is part of the audience.
RESOURCE_PATHS = frozenset({POWER_BI_AUDIENCE})


def audience_of(scope: str) -> str:
    """Return the resource audience a scope string refers to.

    ``https://graph.microsoft.com/.default`` and
    ``https://graph.microsoft.com/Mail.Send`` both map to
    ``https://graph.microsoft.com``. Paths that are part of the resource
    identifier (``.../powerbi/api/.default``) are kept, and a permission
    under a known resource path (``.../powerbi/api/Dataset.Read.All``) maps
    to that resource.
    """
    scope = scope.strip()
    if not scope:
        raise ValueError("scope must be a non-empty string")

    parts = urlsplit(scope)
    if not parts.scheme or not parts.netloc:
        # Bare resource ids such as "api://<app-id>/.default" without a host
        # are compared verbatim, minus the .default suffix.
        return scope.removesuffix("/.default").rstrip("/")

    base = f"{parts.scheme.lower()}://{parts.netloc.lower()}"
    path = parts.path.rstrip("/")
    if path.endswith("/.default"):
        return base + path[: -len("/.default")]
    if path.count("/") == 1:
        # Single permission segment, e.g. "/Mail.Send"
        return base

    resource = base + path.rsplit("/", 1)[0]
    if resource in RESOURCE_PATHS:
        return resource
    return base + path


def same_audience(left: str, right: str) -> bool:
    """Compare two scopes or audiences by their resource audience."""
    return audience_of(left) == audience_of(right)


def require_audience(token: AccessToken, audience: str) -> None:
    """Raise ``ScopeMismatchError`` unless ``token`` was issued for ``audience``.

    No fallback: the caller must request a token for the right scope.
    """
    expected = audience_of(audience)
    actual = token.audience
    if actual != expected:
        raise ScopeMismatchError(
            f"Token scoped to {actual} cannot be used against {expected}",
            expected_audience=expected,
            actual_audience=actual,
        ).with_context(scope=token.scope)
