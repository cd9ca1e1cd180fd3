"""Tests for the NotifyError hierarchy and response-to-error mapping."""

import httpx
import pytest

from fabric_notify.core.errors import (
    ApplicationRejectionError,
    ConfigError,
    CredentialError,
    ErrorCategory,
    ErrorContext,
    InvalidConfigError,
    MessageValidationError,
    MissingConfigError,
    NotifyError,
    RequestTimeoutError,
    ScopeMismatchError,
    SecretNotFoundError,
    TransportError,
    decode_error_payload,
    error_from_response,
)


def _response(status: int, **kwargs) -> httpx.Response:
    request = httpx.Request("POST", "https://graph.microsoft.com/v1.0/users/a@b.com/sendMail")
    return httpx.Response(status, request=request, **kwargs)


class TestErrorContext:
    def test_to_dict_drops_unset_fields(self):
        ctx = ErrorContext(scope="https://graph.microsoft.com/.default")
        assert ctx.to_dict() == {"scope": "https://graph.microsoft.com/.default"}

    def test_metadata_is_merged(self):
        ctx = ErrorContext(sender="a@b.com", metadata={"request_id": "r-1"})
        assert ctx.to_dict() == {"sender": "a@b.com", "request_id": "r-1"}


class TestNotifyError:
    def test_defaults(self):
        err = NotifyError("boom")
        assert err.message == "boom"
        assert err.category == ErrorCategory.INTERNAL
        assert err.status_code is None
        assert err.payload is None
        assert err.retryable is False

    def test_str_includes_status_and_payload(self):
        err = ApplicationRejectionError(
            "sendMail rejected",
            status_code=400,
            payload={"error": {"code": "ErrorInvalidRecipients", "message": "bad"}},
        )
        text = str(err)
        assert text.startswith("sendMail rejected (HTTP 400): ")
        assert "ErrorInvalidRecipients" in text

    def test_str_with_text_payload(self):
        err = CredentialError("token failed", status_code=502, payload="<html>Bad gateway</html>")
        assert str(err) == "token failed (HTTP 502): <html>Bad gateway</html>"

    def test_status_code_copied_into_context(self):
        err = NotifyError("x", status_code=503)
        assert err.context.http_status == 503

    def test_cause_is_chained(self):
        cause = ConnectionError("refused")
        err = TransportError("unreachable", cause=cause)
        assert err.__cause__ is cause
        assert err.to_dict()["cause"] == "refused"

    def test_with_context_known_and_unknown_keys(self):
        err = CredentialError("x").with_context(tenant_id="contoso.onmicrosoft.com", request_id="r-9")
        assert err.context.tenant_id == "contoso.onmicrosoft.com"
        assert err.context.metadata == {"request_id": "r-9"}

    def test_to_dict(self):
        err = ApplicationRejectionError("nope", status_code=500, payload={"error": "x"})
        data = err.to_dict()
        assert data["error_type"] == "ApplicationRejectionError"
        assert data["category"] == "REMOTE"
        assert data["status_code"] == 500
        assert data["payload"] == {"error": "x"}
        assert data["context"] == {"http_status": 500}

    def test_repr(self):
        assert repr(CredentialError("bad secret")) == "CredentialError('bad secret', category=AUTH)"


class TestHierarchy:
    @pytest.mark.parametrize(
        "cls,category",
        [
            (CredentialError, ErrorCategory.AUTH),
            (ScopeMismatchError, ErrorCategory.AUTH),
            (TransportError, ErrorCategory.NETWORK),
            (RequestTimeoutError, ErrorCategory.NETWORK),
            (ApplicationRejectionError, ErrorCategory.REMOTE),
            (ConfigError, ErrorCategory.CONFIG),
            (MessageValidationError, ErrorCategory.VALIDATION),
        ],
    )
    def test_categories(self, cls, category):
        err = cls("x")
        assert isinstance(err, NotifyError)
        assert err.category == category

    def test_secret_not_found_message(self):
        err = SecretNotFoundError("notify-sp-secret", ["env", "file"])
        assert isinstance(err, CredentialError)
        assert str(err) == "Secret not found: notify-sp-secret (tried: env, file)"

    def test_scope_mismatch_audiences(self):
        err = ScopeMismatchError(
            "wrong audience",
            expected_audience="https://graph.microsoft.com",
            actual_audience="https://vault.azure.net",
        )
        data = err.to_dict()
        assert data["expected_audience"] == "https://graph.microsoft.com"
        assert data["actual_audience"] == "https://vault.azure.net"

    def test_config_errors(self):
        assert str(MissingConfigError("tenant_id")) == "Missing required configuration: tenant_id"
        err = InvalidConfigError("client_id", "abc")
        assert err.key == "client_id"
        assert "'abc'" in str(err)


class TestErrorFromResponse:
    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_statuses_map_to_scope_mismatch(self, status):
        err = error_from_response(_response(status, json={"error": {"code": "ErrorAccessDenied"}}), "denied")
        assert isinstance(err, ScopeMismatchError)
        assert err.status_code == status
        assert err.payload == {"error": {"code": "ErrorAccessDenied"}}
        assert err.context.url.endswith("/sendMail")

    @pytest.mark.parametrize("status", [400, 404, 429, 500, 503])
    def test_other_statuses_map_to_rejection(self, status):
        err = error_from_response(_response(status, json={"error": "x"}), "rejected")
        assert isinstance(err, ApplicationRejectionError)
        assert f"HTTP {status}" in str(err)

    def test_custom_error_classes(self):
        err = error_from_response(_response(401), "x", auth_error=CredentialError)
        assert type(err) is CredentialError


class TestDecodeErrorPayload:
    def test_json(self):
        assert decode_error_payload(_response(400, json={"a": 1})) == {"a": 1}

    def test_text(self):
        assert decode_error_payload(_response(502, text="upstream down")) == "upstream down"

    def test_empty(self):
        assert decode_error_payload(_response(500)) is None
