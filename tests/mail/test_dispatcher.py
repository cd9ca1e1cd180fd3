"""Tests for MailDispatcher against a stubbed Graph endpoint."""

import httpx
import pytest

from fabric_notify.auth.scopes import KEY_VAULT_SCOPE, POWER_BI_SCOPE
from fabric_notify.core.errors import (
    ApplicationRejectionError,
    MessageValidationError,
    RequestTimeoutError,
    ScopeMismatchError,
    TransportError,
)
from fabric_notify.mail.dispatcher import MailDispatcher
from tests._support.stub_azure import SENDER, StubAzure


class TestMailDispatcherSend:
    def test_success_posts_once(self, azure, dispatcher, make_token, message):
        receipt = dispatcher.send(make_token(value="eyJ.graph"), SENDER, message)

        (request,) = azure.graph_requests
        assert request.method == "POST"
        assert str(request.url) == f"https://graph.microsoft.com/v1.0/users/{SENDER}/sendMail"
        assert request.headers["Authorization"] == "Bearer eyJ.graph"
        assert request.headers["Content-Type"] == "application/json"

        body = StubAzure.json_body(request)
        assert body["message"]["subject"] == "Nightly refresh failed"
        assert body["saveToSentItems"] is True

        assert receipt.sender == SENDER
        assert receipt.recipient_count == 2
        assert receipt.status_code == 202
        assert receipt.request_id == "req-0001"

    def test_save_to_sent_items_flag(self, azure, dispatcher, make_token, message):
        dispatcher.send(make_token(), SENDER, message, save_to_sent_items=False)
        assert StubAzure.json_body(azure.graph_requests[0])["saveToSentItems"] is False

    def test_sender_is_url_quoted(self, dispatcher):
        assert dispatcher.send_mail_url("ops alerts@contoso.com").endswith("/users/ops%20alerts@contoso.com/sendMail")

    def test_custom_base_url(self, http_client):
        dispatcher = MailDispatcher(client=http_client, base_url="https://graph.microsoft.com/beta/")
        assert dispatcher.send_mail_url(SENDER) == f"https://graph.microsoft.com/beta/users/{SENDER}/sendMail"

    @pytest.mark.parametrize("scope", [KEY_VAULT_SCOPE, POWER_BI_SCOPE])
    def test_wrong_audience_rejected_before_request(self, azure, dispatcher, make_token, message, scope):
        with pytest.raises(ScopeMismatchError) as exc_info:
            dispatcher.send(make_token(scope), SENDER, message)
        assert exc_info.value.expected_audience == "https://graph.microsoft.com"
        assert azure.requests == []

    def test_empty_sender(self, azure, dispatcher, make_token, message):
        with pytest.raises(MessageValidationError):
            dispatcher.send(make_token(), " ", message)
        assert azure.requests == []

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_rejection_is_scope_mismatch(self, azure, dispatcher, make_token, message, status):
        body = {"error": {"code": "ErrorAccessDenied", "message": "Access is denied."}}
        azure.graph_responses.append(httpx.Response(status, json=body, headers={"request-id": "req-401"}))

        with pytest.raises(ScopeMismatchError) as exc_info:
            dispatcher.send(make_token(), SENDER, message)

        err = exc_info.value
        assert err.status_code == status
        assert err.payload == body
        assert f"HTTP {status}" in str(err)
        assert "ErrorAccessDenied" in str(err)
        assert err.context.sender == SENDER
        assert err.context.metadata["request_id"] == "req-401"

    @pytest.mark.parametrize("status", [400, 404, 429, 500, 503])
    def test_other_rejections(self, azure, dispatcher, make_token, message, status):
        azure.graph_responses.append(httpx.Response(status, json={"error": {"code": "Whatever"}}))
        with pytest.raises(ApplicationRejectionError) as exc_info:
            dispatcher.send(make_token(), SENDER, message)
        assert exc_info.value.status_code == status
        assert f"HTTP {status}" in str(exc_info.value)

    def test_rejection_is_not_retried(self, azure, dispatcher, make_token, message):
        azure.graph_responses.append(httpx.Response(503, text="Service Unavailable"))
        with pytest.raises(ApplicationRejectionError) as exc_info:
            dispatcher.send(make_token(), SENDER, message)
        assert exc_info.value.payload == "Service Unavailable"
        assert len(azure.graph_requests) == 1

    def test_identical_sends_are_not_deduplicated(self, azure, dispatcher, make_token, message):
        token = make_token()
        dispatcher.send(token, SENDER, message)
        dispatcher.send(token, SENDER, message)
        assert len(azure.graph_requests) == 2

    def test_timeout(self, make_token, message):
        def handler(request):
            raise httpx.WriteTimeout("stalled", request=request)

        dispatcher = MailDispatcher(client=httpx.Client(transport=httpx.MockTransport(handler)))
        with pytest.raises(RequestTimeoutError) as exc_info:
            dispatcher.send(make_token(), SENDER, message)
        assert exc_info.value.context.sender == SENDER

    def test_connection_error(self, make_token, message):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        dispatcher = MailDispatcher(client=httpx.Client(transport=httpx.MockTransport(handler)))
        with pytest.raises(TransportError, match="connection refused"):
            dispatcher.send(make_token(), SENDER, message)
