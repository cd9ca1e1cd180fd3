"""
Shared pytest fixtures for fabric-notify tests.

This module provides:
- Environment isolation (no ``FABRIC_NOTIFY_*`` or ``.env`` leakage)
- A stubbed identity provider / Graph / Key Vault behind ``httpx.MockTransport``
- Ready-made credential config, resolver, provider, dispatcher and notifier

No test in this suite touches the network.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx
import pytest
import structlog

from fabric_notify.auth.scopes import GRAPH_DEFAULT_SCOPE
from fabric_notify.auth.tokens import AccessToken, ClientSecretCredentialProvider
from fabric_notify.core import logging as notify_logging
from fabric_notify.core.logging import clear_context
from fabric_notify.core.secrets import DictSecretBackend, SecretsResolver
from fabric_notify.core.settings import CredentialConfig
from fabric_notify.mail.dispatcher import MailDispatcher
from fabric_notify.mail.message import NotificationMessage
from fabric_notify.notifier import Notifier
from tests._support.stub_azure import CLIENT_ID, CLIENT_SECRET, SECRET_NAME, SENDER, TENANT_ID, StubAzure


# =============================================================================
# Environment isolation
# =============================================================================


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Drop ambient configuration and run each test from an empty directory."""
    for key in list(os.environ):
        if key.startswith("FABRIC_NOTIFY_") or key in ("NOTIFY_SP_SECRET", "NOTIFY_SP_SECRET_SECRET"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def reset_logging() -> Iterator[None]:
    """Undo ``configure_logging`` so every test starts unconfigured."""
    notify_logging._configured = False
    yield
    notify_logging._configured = False
    clear_context()
    structlog.reset_defaults()
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for name in ("fabric_notify", "httpx"):
        logging.getLogger(name).setLevel(logging.NOTSET)


# =============================================================================
# Test markers
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    root = Path(__file__).parent
    for item in items:
        test_path = item.path.relative_to(root)
        if test_path.parts[0] == "cli":
            item.add_marker(pytest.mark.cli)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "cli"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Stubbed remote services
# =============================================================================


@pytest.fixture
def azure() -> StubAzure:
    return StubAzure()


@pytest.fixture
def http_client(azure: StubAzure) -> Iterator[httpx.Client]:
    client = azure.client()
    yield client
    client.close()


# =============================================================================
# Domain objects
# =============================================================================


@pytest.fixture
def credential_config() -> CredentialConfig:
    return CredentialConfig(client_id=CLIENT_ID, tenant_id=TENANT_ID, secret_name=SECRET_NAME)


@pytest.fixture
def resolver() -> SecretsResolver:
    return SecretsResolver([DictSecretBackend({SECRET_NAME: CLIENT_SECRET})])


@pytest.fixture
def provider(credential_config, resolver, http_client) -> ClientSecretCredentialProvider:
    return ClientSecretCredentialProvider(credential_config, resolver, client=http_client)


@pytest.fixture
def dispatcher(http_client) -> MailDispatcher:
    return MailDispatcher(client=http_client)


@pytest.fixture
def notifier(provider, dispatcher) -> Notifier:
    return Notifier(provider, dispatcher, sender=SENDER)


@pytest.fixture
def message() -> NotificationMessage:
    return NotificationMessage(
        subject="Nightly refresh failed",
        body="Semantic model 'Sales' did not refresh.",
        recipients=["data-team@contoso.com", "oncall@contoso.com"],
    )


@pytest.fixture
def make_token() -> Callable[..., AccessToken]:
    """Factory for tokens with a chosen scope and remaining lifetime."""

    def _make(scope: str = GRAPH_DEFAULT_SCOPE, *, value: str = "eyJ.test-token", seconds: int = 3600) -> AccessToken:
        return AccessToken(
            value=value,
            scope=scope,
            expires_at=datetime.now(UTC) + timedelta(seconds=seconds),
        )

    return _make
