"""
End-to-end notification: credential -> payload -> dispatch.

``Notifier`` wires a credential provider to a mail dispatcher and runs the
three steps strictly in order. Errors from any step propagate unchanged so
the enclosing notebook run fails with the remote diagnostic intact.

Examples:
    From environment settings (``FABRIC_NOTIFY_*``):

    >>> from fabric_notify import Notifier
    >>> notifier = Notifier.from_settings()
    >>> notifier.send_notification(
    ...     subject="Nightly refresh failed",
    ...     body="Semantic model 'Sales' did not refresh.",
    ...     recipients=["data-team@contoso.com"],
    ... )

    Inside a notebook where the secret lives in a Key Vault and the runtime
    can hand out a vault token:

    >>> from fabric_notify.auth.tokens import StaticTokenSource
    >>> from fabric_notify.auth.scopes import KEY_VAULT_SCOPE
    >>> vault_token = StaticTokenSource(runtime_vault_token, scope=KEY_VAULT_SCOPE)
    >>> notifier = Notifier.from_settings(settings, vault_token_source=vault_token)
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING

import httpx

from fabric_notify.auth.cache import TokenCache
from fabric_notify.auth.scopes import GRAPH_DEFAULT_SCOPE, KEY_VAULT_SCOPE
from fabric_notify.auth.tokens import AccessToken, ClientSecretCredentialProvider, StaticTokenSource
from fabric_notify.core.errors import MissingConfigError
from fabric_notify.core.logging import get_logger
from fabric_notify.core.secrets import KeyVaultSecretBackend, SecretsResolver, default_resolver
from fabric_notify.core.settings import NotifySettings
from fabric_notify.mail.dispatcher import DeliveryReceipt, MailDispatcher
from fabric_notify.mail.message import Attachment, NotificationMessage

if TYPE_CHECKING:
    from fabric_notify.mail.message import ContentType, Importance

logger = get_logger(__name__)

TokenSource = Callable[[str], AccessToken]


class Notifier:
    """
    Send notifications as a service principal.

    Args:
        provider: Credential provider (anything with ``get_token(scope)``)
        dispatcher: Mail dispatcher
        sender: Default sending mailbox (UPN)
        save_to_sent_items: Keep a copy in the sender's Sent Items
        scope: Scope requested for the Graph token
    """

    def __init__(
        self,
        provider: ClientSecretCredentialProvider,
        dispatcher: MailDispatcher,
        *,
        sender: str | None = None,
        save_to_sent_items: bool = True,
        scope: str = GRAPH_DEFAULT_SCOPE,
    ):
        self._provider = provider
        self._dispatcher = dispatcher
        self._sender = sender or None
        self._save_to_sent_items = save_to_sent_items
        self._scope = scope

    @classmethod
    def from_settings(
        cls,
        settings: NotifySettings | None = None,
        *,
        client: httpx.Client | None = None,
        secrets: SecretsResolver | None = None,
        vault_token_source: TokenSource | None = None,
    ) -> Notifier:
        """Build a notifier from settings.

        When ``settings.secret_locator`` is set, the client secret is read from
        that Key Vault using ``vault_token_source`` (a callable returning a
        token scoped to Key Vault). Without a locator the secret comes from
        ``secrets`` or, by default, environment variables and mounted files.
        A caller's ``secrets`` resolver is never modified; the Key Vault
        backend is placed first in a new resolver.
        """
        settings = settings or NotifySettings()
        config = settings.credential_config()
        resolver = secrets if secrets is not None else default_resolver()

        if config.secret_locator:
            if vault_token_source is None:
                if not settings.vault_token.get_secret_value():
                    raise MissingConfigError(
                        "vault_token",
                        "secret_locator is set but no Key Vault token source was given "
                        "(pass vault_token_source or set FABRIC_NOTIFY_VAULT_TOKEN)",
                    )
                vault_token_source = StaticTokenSource(
                    settings.vault_token.get_secret_value(), scope=KEY_VAULT_SCOPE
                )
            vault_backend = KeyVaultSecretBackend(
                config.secret_locator,
                vault_token_source,
                client=client,
                timeout=settings.timeout_seconds,
            )
            resolver = SecretsResolver([vault_backend, *resolver.backends])

        provider = ClientSecretCredentialProvider(
            config,
            resolver,
            client=client,
            cache=TokenCache() if settings.token_cache else None,
            timeout=settings.timeout_seconds,
            authority_host=settings.authority_host,
        )
        dispatcher = MailDispatcher(
            client=client,
            base_url=settings.graph_base_url,
            timeout=settings.timeout_seconds,
        )
        return cls(
            provider,
            dispatcher,
            sender=settings.sender,
            save_to_sent_items=settings.save_to_sent_items,
        )

    @property
    def provider(self) -> ClientSecretCredentialProvider:
        return self._provider

    @property
    def sender(self) -> str | None:
        return self._sender

    def send(self, message: NotificationMessage, *, sender: str | None = None) -> DeliveryReceipt:
        """Fetch a Graph token, then send ``message``.

        Raises:
            ConfigError: no sender given and no default configured
            NotifyError: any failure from the credential or dispatch step
        """
        mailbox = sender or self._sender
        if not mailbox:
            raise MissingConfigError("sender", "No sender mailbox given and FABRIC_NOTIFY_SENDER is not set")

        token = self._provider.get_token(self._scope)
        return self._dispatcher.send(
            token,
            mailbox,
            message,
            save_to_sent_items=self._save_to_sent_items,
        )

    def send_notification(
        self,
        subject: str,
        body: str,
        recipients: Iterable[str],
        *,
        content_type: ContentType | str = "Text",
        cc: Iterable[str] = (),
        bcc: Iterable[str] = (),
        importance: Importance | str = "normal",
        attachments: Iterable[Attachment] = (),
        sender: str | None = None,
    ) -> DeliveryReceipt:
        """Build a ``NotificationMessage`` from plain arguments and send it.

        A single address may be passed as a plain string.
        """
        if isinstance(recipients, str):
            recipients = [recipients]
        message = NotificationMessage(
            subject=subject,
            body=body,
            recipients=list(recipients),
            content_type=content_type,
            cc=list(cc),
            bcc=list(bcc),
            importance=importance,
            attachments=list(attachments),
        )
        return self.send(message, sender=sender)
