"""
Notification gateway client for sending emails and SMS via HTTP gateway.

Uses HMAC-SHA256 signature for request authentication.
"""

import hashlib
import hmac
import json
import logging
import os

import requests

logger = logging.getLogger(__name__)


class NotificationGatewayError(Exception):
    """Raised when notification gateway request fails."""


class NotificationGatewayClient:
    """Send emails and SMS via HTTP gateway with HMAC signature verification."""

    def __init__(self, gateway_url: str, api_key: str, hmac_secret: str, timeout: int = 10):
        """
        Initialize with gateway credentials.

        Args:
            gateway_url: Full URL to the notification gateway endpoint
            api_key: API key for X-API-Key header
            hmac_secret: Secret for HMAC-SHA256 signature
            timeout: Request timeout in seconds

        Raises:
            ValueError: If any credential is empty
        """
        if not gateway_url:
            raise ValueError("gateway_url is required")
        if not api_key:
            raise ValueError("api_key is required")
        if not hmac_secret:
            raise ValueError("hmac_secret is required")

        self.gateway_url = gateway_url
        self.api_key = api_key
        self.hmac_secret = hmac_secret
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> "NotificationGatewayClient":
        """
        Build from NOTIFY_GATEWAY_URL, NOTIFY_API_KEY and NOTIFY_HMAC_SECRET.

        Raises:
            ValueError: If any variable is missing
        """
        return cls(
            gateway_url=os.getenv("NOTIFY_GATEWAY_URL", ""),
            api_key=os.getenv("NOTIFY_API_KEY", ""),
            hmac_secret=os.getenv("NOTIFY_HMAC_SECRET", ""),
        )

    def sign(self, payload_json: str) -> str:
        return hmac.new(
            self.hmac_secret.encode("utf-8"),
            payload_json.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def _sign_and_send(self, payload: dict) -> None:
        """
        Sign payload with HMAC and send to gateway.

        Args:
            payload: Dict to send as JSON

        Raises:
            NotificationGatewayError: On any failure
        """
        payload_json = json.dumps(payload, separators=(",", ":"))

        headers = {
            "Content-Type": "application/json",
            "X-API-Key": self.api_key,
            "X-Signature": self.sign(payload_json),
        }

        try:
            response = requests.post(
                self.gateway_url,
                data=payload_json,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Notification gateway connection failed: {e}")
            raise NotificationGatewayError(f"Connection failed: {e}")

        try:
            response_data = response.json()
        except ValueError:
            logger.error(f"Notification gateway returned invalid JSON: {response.text}")
            raise NotificationGatewayError("Invalid response from gateway")

        if response.status_code != 200 or not response_data.get("success"):
            error_msg = response_data.get("message", "Unknown error")
            logger.error(f"Notification gateway error: {error_msg}")
            raise NotificationGatewayError(f"Gateway error: {error_msg}")

    def send_email(self, to: str, subject: str, body: str, is_html: bool = False) -> None:
        """
        Send an email via gateway.

        Args:
            to: Recipient email address
            subject: Email subject line
            body: Email body
            is_html: Whether body is HTML

        Raises:
            NotificationGatewayError: On gateway failure
        """
        payload = {
            "type": "email",
            "to": to,
            "subject": subject,
            "body": body,
            "is_html": is_html,
        }
        self._sign_and_send(payload)
        logger.info(f"Email sent to {to}: {subject}")

    def send_sms(self, to: str, message: str) -> None:
        """
        Send an SMS via gateway.

        Raises:
            NotificationGatewayError: On gateway failure
        """
        payload = {
            "type": "sms",
            "to": to,
            "message": message,
        }
        self._sign_and_send(payload)
        logger.info(f"SMS sent to {to}")
