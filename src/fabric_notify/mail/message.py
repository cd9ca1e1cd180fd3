"""
Notification message and the Graph ``sendMail`` request body.

``NotificationMessage`` is the in-memory entity built right before a send;
the pydantic models below describe the subset of the Graph message resource
that ``sendMail`` accepts. ``build_send_mail_payload`` turns one into the
other.

Recipient order is preserved and duplicates are kept as given: the protocol
does not forbid them. Call ``deduplicated()`` when the caller wants one
entry per address.
"""

from __future__ import annotations

import base64
import mimetypes
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, TypeAdapter, ValidationError

from fabric_notify.core.errors import MessageValidationError

_EMAIL_ADAPTER: TypeAdapter[str] = TypeAdapter(EmailStr)

# Graph rejects sendMail requests whose inline attachments exceed ~3 MB.
MAX_INLINE_ATTACHMENT_BYTES = 3 * 1024 * 1024


class ContentType(str, Enum):
    TEXT = "Text"
    HTML = "HTML"

    @classmethod
    def parse(cls, value: str | ContentType) -> ContentType:
        if isinstance(value, ContentType):
            return value
        normalized = str(value).strip().lower()
        if normalized == "text":
            return cls.TEXT
        if normalized == "html":
            return cls.HTML
        raise MessageValidationError(
            f"Unsupported body content type {value!r}; expected Text or HTML",
            field="content_type",
            value=value,
        )


class Importance(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


def _check_addresses(addresses: list[str], field_name: str) -> None:
    """Validate each address with email-validator; the addresses are sent as given."""
    for address in addresses:
        try:
            normalised = _EMAIL_ADAPTER.validate_python(address)
        except ValidationError as exc:
            reason = exc.errors()[0].get("msg", "invalid address")
            raise MessageValidationError(
                f"Invalid e-mail address in {field_name}: {address!r} ({reason})",
                field=field_name,
                value=address,
                cause=exc,
            ) from exc
        # "Name <addr>" validates too but is not a mailbox address.
        if normalised.casefold() != address.casefold():
            raise MessageValidationError(
                f"Invalid e-mail address in {field_name}: {address!r} (expected a bare address)",
                field=field_name,
                value=address,
            )


def _dedupe(addresses: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for address in addresses:
        key = address.casefold()
        if key not in seen:
            seen.add(key)
            result.append(address)
    return result


@dataclass(frozen=True)
class Attachment:
    """A small file sent inline with the message."""

    name: str
    content: bytes = field(repr=False)
    content_type: str = "application/octet-stream"

    @classmethod
    def from_path(cls, path: str | Path, content_type: str | None = None) -> Attachment:
        path = Path(path)
        try:
            content = path.read_bytes()
        except OSError as exc:
            raise MessageValidationError(
                f"Cannot read attachment {str(path)!r}: {exc.strerror or exc}",
                field="attachments",
                value=str(path),
                cause=exc,
            ) from exc
        return cls(
            name=path.name,
            content=content,
            content_type=content_type or _guess_content_type(path),
        )

    @property
    def size(self) -> int:
        return len(self.content)


def _guess_content_type(path: Path) -> str:
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


@dataclass(frozen=True)
class NotificationMessage:
    """
    A single outbound e-mail.

    Validated on construction; an invalid message never reaches the network.

    Attributes:
        subject: Short, non-empty text
        body: Body content
        recipients: ``To`` addresses, at least one, order preserved
        content_type: ``Text`` or ``HTML`` (case-insensitive on input)
        cc: ``Cc`` addresses
        bcc: ``Bcc`` addresses
        importance: low | normal | high
        attachments: Inline file attachments
    """

    subject: str
    body: str
    recipients: list[str]
    content_type: ContentType = ContentType.TEXT
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)
    importance: Importance = Importance.NORMAL
    attachments: list[Attachment] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not isinstance(self.subject, str) or not self.subject.strip():
            raise MessageValidationError(
                "Message subject must be non-empty text", field="subject", value=self.subject
            )
        if not isinstance(self.body, str):
            raise MessageValidationError(
                f"Message body must be text, got {type(self.body).__name__}", field="body", value=self.body
            )
        if isinstance(self.recipients, str):
            raise MessageValidationError(
                "recipients must be a list of addresses, not a string",
                field="recipients",
                value=self.recipients,
            )

        # Normalise containers and enums without giving up immutability.
        object.__setattr__(self, "recipients", list(self.recipients))
        object.__setattr__(self, "cc", list(self.cc))
        object.__setattr__(self, "bcc", list(self.bcc))
        object.__setattr__(self, "attachments", list(self.attachments))
        object.__setattr__(self, "content_type", ContentType.parse(self.content_type))
        importance = self.importance.value if isinstance(self.importance, Importance) else str(self.importance).lower()
        try:
            object.__setattr__(self, "importance", Importance(importance))
        except ValueError as exc:
            raise MessageValidationError(
                f"Unsupported importance {self.importance!r}", field="importance", value=self.importance
            ) from exc

        if not self.recipients:
            raise MessageValidationError("At least one recipient is required", field="recipients")
        _check_addresses(self.recipients, "recipients")
        _check_addresses(self.cc, "cc")
        _check_addresses(self.bcc, "bcc")

        total = sum(attachment.size for attachment in self.attachments)
        if total > MAX_INLINE_ATTACHMENT_BYTES:
            raise MessageValidationError(
                f"Attachments total {total} bytes; inline limit is {MAX_INLINE_ATTACHMENT_BYTES}",
                field="attachments",
            )

    @property
    def recipient_count(self) -> int:
        return len(self.recipients) + len(self.cc) + len(self.bcc)

    def deduplicated(self) -> NotificationMessage:
        """Copy with case-insensitive duplicate addresses removed, first kept."""
        return replace(
            self,
            recipients=_dedupe(self.recipients),
            cc=_dedupe(self.cc),
            bcc=_dedupe(self.bcc),
        )


# ---------------------------------------------------------------------------
# Graph wire models (subset of the message resource used by sendMail)
# ---------------------------------------------------------------------------


class EmailAddress(BaseModel):
    address: str


class Recipient(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email_address: EmailAddress = Field(alias="emailAddress")


class ItemBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content_type: str = Field(alias="contentType")
    content: str


class FileAttachment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    odata_type: str = Field(default="#microsoft.graph.fileAttachment", alias="@odata.type")
    name: str
    content_type: str = Field(alias="contentType")
    content_bytes: str = Field(alias="contentBytes")


class GraphMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subject: str
    body: ItemBody
    to_recipients: list[Recipient] = Field(alias="toRecipients")
    cc_recipients: list[Recipient] | None = Field(default=None, alias="ccRecipients")
    bcc_recipients: list[Recipient] | None = Field(default=None, alias="bccRecipients")
    importance: str | None = None
    attachments: list[FileAttachment] | None = None


class SendMailRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: GraphMessage
    save_to_sent_items: bool = Field(default=True, alias="saveToSentItems")


def _recipients(addresses: list[str]) -> list[Recipient]:
    return [Recipient(email_address=EmailAddress(address=address)) for address in addresses]


def build_send_mail_payload(message: NotificationMessage, save_to_sent_items: bool = True) -> dict[str, Any]:
    """Serialise ``message`` into the JSON body of ``POST /users/{id}/sendMail``.

    Optional sections (cc, bcc, attachments, non-default importance) are
    omitted rather than sent empty.
    """
    graph_message = GraphMessage(
        subject=message.subject,
        body=ItemBody(content_type=message.content_type.value, content=message.body),
        to_recipients=_recipients(message.recipients),
        cc_recipients=_recipients(message.cc) or None,
        bcc_recipients=_recipients(message.bcc) or None,
        importance=message.importance.value if message.importance is not Importance.NORMAL else None,
        attachments=[
            FileAttachment(
                name=attachment.name,
                content_type=attachment.content_type,
                content_bytes=base64.b64encode(attachment.content).decode("ascii"),
            )
            for attachment in message.attachments
        ]
        or None,
    )
    request = SendMailRequest(message=graph_message, save_to_sent_items=save_to_sent_items)
    return request.model_dump(by_alias=True, exclude_none=True)
