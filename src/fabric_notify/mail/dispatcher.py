"""Mail dispatch through Microsoft Graph ``sendMail``.

One POST per call. Either Graph accepts the message for delivery (HTTP 2xx,
empty body) or a typed error is raised that halts the caller. No retry, no
backoff, no deduplication: sending the same message twice sends it twice.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import quote

import httpx

from fabric_notify.auth.scopes import GRAPH_AUDIENCE, require_audience
from fabric_notify.core.errors import (
    ErrorContext,
    MessageValidationError,
    NotifyError,
    RequestTimeoutError,
    TransportError,
    error_from_response,
)
from fabric_notify.core.logging import get_logger
from fabric_notify.mail.message import NotificationMessage, build_send_mail_payload

if TYPE_CHECKING:
    from fabric_notify.auth.tokens import AccessToken

logger = get_logger(__name__)

DEFAULT_GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"


@dataclass(frozen=True)
class DeliveryReceipt:
    """What Graph told us about an accepted message.

    ``request_id`` is Graph's ``request-id`` response header, the value
    support asks for when a message never arrives.
    """

    sender: str
    recipient_count: int
    status_code: int
    request_id: str | None = None


class MailDispatcher:
    """
    Submit a ``NotificationMessage`` to ``/users/{sender}/sendMail``.

    Args:
        client: Optional shared ``httpx.Client`` (not closed here)
        base_url: Graph API root including version
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        *,
        client: httpx.Client | None = None,
        base_url: str = DEFAULT_GRAPH_BASE_URL,
        timeout: float = 30.0,
    ):
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def send_mail_url(self, sender: str) -> str:
        return f"{self._base_url}/users/{quote(sender, safe='@')}/sendMail"

    def send(
        self,
        token: AccessToken,
        sender: str,
        message: NotificationMessage,
        *,
        save_to_sent_items: bool = True,
    ) -> DeliveryReceipt:
        """Send ``message`` from ``sender``'s mailbox.

        The token must be scoped to Graph; a token for any other audience is
        rejected here, before a request is made.

        Raises:
            ScopeMismatchError: wrong token audience, or Graph answered 401/403
            ApplicationRejectionError: any other non-2xx answer
            TransportError: network failure or timeout
            MessageValidationError: empty sender
        """
        require_audience(token, GRAPH_AUDIENCE)

        if not sender or not sender.strip():
            raise MessageValidationError("A sender mailbox is required", field="sender")

        url = self.send_mail_url(sender)
        payload = build_send_mail_payload(message, save_to_sent_items=save_to_sent_items)
        headers = {**token.authorization_header(), "Content-Type": "application/json"}

        logger.info("mail_sending", sender=sender, recipient_count=message.recipient_count)

        try:
            response = self._post(url, payload, headers)
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(
                "Timed out sending mail", cause=exc, context=ErrorContext(url=url, sender=sender)
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(
                f"Could not reach Graph: {exc}", cause=exc, context=ErrorContext(url=url, sender=sender)
            ) from exc

        request_id = response.headers.get("request-id")

        if not response.is_success:
            error: NotifyError = error_from_response(response, "Graph rejected sendMail")
            error.with_context(sender=sender, scope=token.scope, request_id=request_id)
            logger.warning("mail_rejected", **error.to_dict())
            raise error

        logger.info(
            "mail_sent",
            sender=sender,
            recipient_count=message.recipient_count,
            request_id=request_id,
        )
        return DeliveryReceipt(
            sender=sender,
            recipient_count=message.recipient_count,
            status_code=response.status_code,
            request_id=request_id,
        )

    def _post(self, url: str, payload: dict, headers: dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return self._client.post(url, json=payload, headers=headers, timeout=self._timeout)
        with httpx.Client(timeout=self._timeout) as client:
            return client.post(url, json=payload, headers=headers)
