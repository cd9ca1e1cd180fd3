"""
Root Typer application for the ``fabric-notify`` CLI.

Settings come from ``FABRIC_NOTIFY_*`` environment variables (or a ``.env``
file). Every ``NotifyError`` ends the command with exit code 1 after the
error, its HTTP status and the remote payload have been printed.
"""

from __future__ import annotations

from pathlib import Path

import typer
from pydantic import ValidationError as SettingsValidationError

from fabric_notify import __version__
from fabric_notify.auth.scopes import GRAPH_DEFAULT_SCOPE, audience_of
from fabric_notify.cli.utils import console, err_console, fail, output_mapping
from fabric_notify.core.errors import MessageValidationError, NotifyError
from fabric_notify.core.logging import configure_logging
from fabric_notify.core.settings import NotifySettings
from fabric_notify.mail.message import Attachment, NotificationMessage
from fabric_notify.notifier import Notifier

app = typer.Typer(
    name="fabric-notify",
    help="fabric-notify: send e-mail notifications as a service principal via Microsoft Graph.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"fabric-notify {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """fabric-notify CLI: send mail, inspect tokens, show configuration."""


def _load_settings() -> NotifySettings:
    try:
        settings = NotifySettings()
    except SettingsValidationError as exc:
        err_console.print(f"[bold red]Invalid configuration:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    configure_logging(level=settings.log_level, format=settings.log_format)
    return settings


def _read_body(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise MessageValidationError(
            f"Cannot read body file {str(path)!r}: {exc}", field="body_file", value=str(path), cause=exc
        ) from exc


@app.command("send")
def send(
    to: list[str] = typer.Option(..., "--to", "-t", help="Recipient address (repeatable)"),
    subject: str = typer.Option(..., "--subject", "-s"),
    body: str | None = typer.Option(None, "--body", "-b", help="Message body"),
    body_file: Path | None = typer.Option(
        None, "--body-file", exists=True, dir_okay=False, readable=True, help="Read the body from a file"
    ),
    html: bool = typer.Option(False, "--html", help="Send the body as HTML"),
    cc: list[str] | None = typer.Option(None, "--cc", help="Cc address (repeatable)"),
    bcc: list[str] | None = typer.Option(None, "--bcc", help="Bcc address (repeatable)"),
    importance: str = typer.Option("normal", "--importance", "-i", help="low | normal | high"),
    attach: list[Path] | None = typer.Option(
        None, "--attach", "-a", exists=True, dir_okay=False, readable=True, help="File to attach (repeatable)"
    ),
    sender: str | None = typer.Option(None, "--sender", help="Sending mailbox (defaults to FABRIC_NOTIFY_SENDER)"),
    dedupe: bool = typer.Option(False, "--dedupe", help="Drop duplicate addresses before sending"),
    no_save: bool = typer.Option(False, "--no-save", help="Do not keep a copy in Sent Items"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Send one e-mail notification."""
    if (body is None) == (body_file is None):
        err_console.print("[bold red]Error:[/bold red] pass exactly one of --body or --body-file")
        raise typer.Exit(code=2)

    settings = _load_settings()
    if no_save:
        settings = settings.model_copy(update={"save_to_sent_items": False})

    try:
        message = NotificationMessage(
            subject=subject,
            body=body if body is not None else _read_body(body_file),
            recipients=to,
            content_type="HTML" if html else "Text",
            cc=cc or [],
            bcc=bcc or [],
            importance=importance,
            attachments=[Attachment.from_path(path) for path in attach or []],
        )
        if dedupe:
            message = message.deduplicated()

        notifier = Notifier.from_settings(settings)
        receipt = notifier.send(message, sender=sender)
    except NotifyError as exc:
        raise fail(exc) from exc

    if json_out:
        output_mapping(
            {
                "sender": receipt.sender,
                "recipient_count": receipt.recipient_count,
                "status_code": receipt.status_code,
                "request_id": receipt.request_id,
            },
            as_json=True,
        )
        return
    console.print(
        f"[green]✓[/green] Sent from {receipt.sender} to {receipt.recipient_count} recipient(s)"
        + (f" [dim](request-id {receipt.request_id})[/dim]" if receipt.request_id else "")
    )


@app.command("token")
def token(
    scope: str = typer.Option(
        GRAPH_DEFAULT_SCOPE, "--scope", help="Scope to request; must be listed in FABRIC_NOTIFY_SCOPES"
    ),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Acquire a token and show its audience and expiry (never the token itself).

    Useful to confirm which audience a service principal actually gets when
    an API answers 401 despite correct role assignments.
    """
    settings = _load_settings()
    try:
        notifier = Notifier.from_settings(settings)
        access_token = notifier.provider.get_token(scope)
    except NotifyError as exc:
        raise fail(exc) from exc

    output_mapping(
        {
            "scope": access_token.scope,
            "audience": audience_of(access_token.scope),
            "token_type": access_token.token_type,
            "expires_at": access_token.expires_at.isoformat(),
            "expires_in_seconds": int(access_token.expires_in()),
        },
        as_json=json_out,
        title="Access Token",
    )


@app.command("config")
def show_config(json_out: bool = typer.Option(False, "--json")) -> None:
    """Show effective settings (secrets redacted)."""
    settings = _load_settings()
    output_mapping(settings.redacted(), as_json=json_out, title="fabric-notify settings")
