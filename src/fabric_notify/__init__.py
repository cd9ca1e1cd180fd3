"""fabric-notify -- e-mail notifications from analytics notebooks via Microsoft Graph.

A service principal's client secret is looked up by name, exchanged for a
token scoped to an explicit audience, and used for a single ``sendMail``
request. Any non-2xx answer raises.

Importing this package performs no network I/O and creates no HTTP clients;
public names below are resolved lazily on first attribute access, so
``from fabric_notify import Notifier`` pulls in only what it needs.

Architecture::

    core/
        errors.py      NotifyError hierarchy
        secrets.py     Secret store lookup (env, file, dict, Key Vault)
        settings.py    NotifySettings + CredentialConfig
        logging.py     structlog configuration
    auth/
        scopes.py      Audience constants and checks
        tokens.py      AccessToken + ClientSecretCredentialProvider
        cache.py       Opt-in expiry-aware TokenCache
    mail/
        message.py     NotificationMessage + sendMail payload
        dispatcher.py  MailDispatcher
    notifier.py        Notifier (credential -> payload -> dispatch)
    cli/               ``fabric-notify`` command
"""

from __future__ import annotations

import importlib

__version__ = "0.3.0"

_LAZY_EXPORTS = {
    "Notifier": "fabric_notify.notifier",
    "NotificationMessage": "fabric_notify.mail.message",
    "Attachment": "fabric_notify.mail.message",
    "build_send_mail_payload": "fabric_notify.mail.message",
    "MailDispatcher": "fabric_notify.mail.dispatcher",
    "DeliveryReceipt": "fabric_notify.mail.dispatcher",
    "AccessToken": "fabric_notify.auth.tokens",
    "ClientSecretCredentialProvider": "fabric_notify.auth.tokens",
    "TokenCache": "fabric_notify.auth.cache",
    "NotifySettings": "fabric_notify.core.settings",
    "CredentialConfig": "fabric_notify.core.settings",
    "SecretsResolver": "fabric_notify.core.secrets",
    "NotifyError": "fabric_notify.core.errors",
    "CredentialError": "fabric_notify.core.errors",
    "ScopeMismatchError": "fabric_notify.core.errors",
    "TransportError": "fabric_notify.core.errors",
    "ApplicationRejectionError": "fabric_notify.core.errors",
    "configure_logging": "fabric_notify.core.logging",
}

__all__ = sorted(_LAZY_EXPORTS) + ["__version__"]


def __getattr__(name: str):
    """Resolve public names on first access."""
    module_path = _LAZY_EXPORTS.get(name)
    if module_path is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    value = getattr(importlib.import_module(module_path), name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(_LAZY_EXPORTS))
