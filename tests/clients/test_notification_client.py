"""
Tests for NotificationGatewayClient.

Tests verify the client's contract with calling code: what goes over the
wire, and which failures surface as NotificationGatewayError.
"""

import hashlib
import hmac
import json

import pytest
import requests
import responses

from clients.notification_client import NotificationGatewayClient, NotificationGatewayError

GATEWAY_URL = "https://gateway.example.com/send"


@pytest.fixture
def client():
    """Create client with test credentials."""
    return NotificationGatewayClient(
        gateway_url=GATEWAY_URL,
        api_key="test-api-key",
        hmac_secret="test-hmac-secret",
    )


class TestNotificationGatewayClientInit:
    """Test client initialization - fail-fast on invalid config."""

    def test_init_with_valid_credentials(self, client):
        assert client.gateway_url == GATEWAY_URL

    @pytest.mark.parametrize("missing", ["gateway_url", "api_key", "hmac_secret"])
    def test_init_rejects_empty_credentials(self, missing):
        """Each empty credential raises ValueError naming it."""
        kwargs = {
            "gateway_url": GATEWAY_URL,
            "api_key": "test-api-key",
            "hmac_secret": "test-hmac-secret",
        }
        kwargs[missing] = ""

        with pytest.raises(ValueError, match=missing):
            NotificationGatewayClient(**kwargs)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("NOTIFY_GATEWAY_URL", GATEWAY_URL)
        monkeypatch.setenv("NOTIFY_API_KEY", "env-key")
        monkeypatch.setenv("NOTIFY_HMAC_SECRET", "env-secret")

        client = NotificationGatewayClient.from_env()

        assert client.api_key == "env-key"

    def test_from_env_missing(self, monkeypatch):
        monkeypatch.delenv("NOTIFY_GATEWAY_URL", raising=False)
        with pytest.raises(ValueError):
            NotificationGatewayClient.from_env()


class TestSendEmail:
    """Test send_email - uses responses library for HTTP mocking."""

    @responses.activate
    def test_successful_send_returns_none(self, client):
        responses.add(responses.POST, GATEWAY_URL, json={"success": True}, status=200)

        result = client.send_email("user@example.com", "Subject", "<p>Body</p>", is_html=True)

        assert result is None
        payload = json.loads(responses.calls[0].request.body)
        assert payload == {
            "type": "email",
            "to": "user@example.com",
            "subject": "Subject",
            "body": "<p>Body</p>",
            "is_html": True,
        }

    @responses.activate
    def test_request_is_signed(self, client):
        """X-Signature is the HMAC-SHA256 of the exact body sent."""
        responses.add(responses.POST, GATEWAY_URL, json={"success": True}, status=200)

        client.send_email("user@example.com", "Subject", "Body")

        request = responses.calls[0].request
        body = request.body if isinstance(request.body, str) else request.body.decode()
        expected = hmac.new(b"test-hmac-secret", body.encode(), hashlib.sha256).hexdigest()
        assert request.headers["X-Signature"] == expected
        assert request.headers["X-API-Key"] == "test-api-key"

    @responses.activate
    def test_gateway_500_raises_error(self, client):
        responses.add(
            responses.POST,
            GATEWAY_URL,
            json={"success": False, "message": "Internal error"},
            status=500,
        )

        with pytest.raises(NotificationGatewayError, match="Internal error"):
            client.send_email("user@example.com", "Subject", "Body")

    @responses.activate
    def test_gateway_success_false_raises_error(self, client):
        responses.add(
            responses.POST,
            GATEWAY_URL,
            json={"success": False, "message": "Invalid email"},
            status=200,
        )

        with pytest.raises(NotificationGatewayError):
            client.send_email("invalid", "Subject", "Body")

    @responses.activate
    def test_connection_failure_raises_error(self, client):
        responses.add(
            responses.POST,
            GATEWAY_URL,
            body=requests.exceptions.ConnectionError("Network unreachable"),
        )

        with pytest.raises(NotificationGatewayError, match="Connection failed"):
            client.send_email("user@example.com", "Subject", "Body")

    @responses.activate
    def test_invalid_json_response_raises_error(self, client):
        responses.add(responses.POST, GATEWAY_URL, body="not json", status=200)

        with pytest.raises(NotificationGatewayError, match="Invalid response"):
            client.send_email("user@example.com", "Subject", "Body")


class TestSendSms:
    @responses.activate
    def test_successful_send(self, client):
        responses.add(responses.POST, GATEWAY_URL, json={"success": True}, status=200)

        client.send_sms("+15551234567", "Your FarmTally verification code is: 123456.")

        payload = json.loads(responses.calls[0].request.body)
        assert payload["type"] == "sms"
        assert payload["to"] == "+15551234567"

    @responses.activate
    def test_gateway_error(self, client):
        responses.add(
            responses.POST,
            GATEWAY_URL,
            json={"success": False, "message": "Unroutable number"},
            status=200,
        )

        with pytest.raises(NotificationGatewayError, match="Unroutable"):
            client.send_sms("+15551234567", "hello")
