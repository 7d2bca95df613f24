"""Signed webhook transport and webhook URL validation."""

import hashlib
import hmac
import ipaddress
import json
from dataclasses import dataclass
from urllib.parse import urlsplit

import requests

from deadswitch.core.config import settings
from deadswitch.core.errors import InvalidInputError

SIGNATURE_HEADER = "X-Deadswitch-Signature"
EVENT_HEADER = "X-Deadswitch-Event"
RETRYABLE_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class WebhookTarget:
    url: str
    secret: str
    enabled: bool = True
    label: str = "settings"


def sign(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(body: bytes, secret: str, signature: str) -> bool:
    return hmac.compare_digest(sign(body, secret), signature)


def encode_event(event: dict) -> bytes:
    return json.dumps(event, separators=(",", ":"), sort_keys=True, default=str).encode()


class WebhookClient:
    """One signed POST per call; the dispatcher owns retries."""

    def __init__(self, timeout: float):
        self.timeout = timeout

    def post(self, target: WebhookTarget, event_name: str, body: bytes) -> requests.Response:
        headers = {
            "Content-Type": "application/json",
            EVENT_HEADER: event_name,
        }
        if target.secret:
            headers[SIGNATURE_HEADER] = sign(body, target.secret)
        return requests.post(target.url, data=body, headers=headers, timeout=self.timeout)


def _allowlisted(hostname: str) -> bool:
    raw = settings.WEBHOOK_ALLOWLIST_HOSTS.strip()
    if not raw:
        return True
    for entry in raw.split(","):
        candidate = entry.strip().lower()
        if not candidate:
            continue
        if hostname == candidate:
            return True
        if candidate.startswith(".") and hostname.endswith(candidate):
            return True
    return False


def validate_webhook_url(raw: str) -> str:
    """Only https URLs to public hosts, without credentials or fragments."""
    url = (raw or "").strip()
    if not url:
        raise InvalidInputError("Webhook URL is required")

    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise InvalidInputError("Invalid webhook URL")
    if parts.scheme.lower() != "https":
        raise InvalidInputError("Webhook URL must use https")
    if parts.username or parts.password:
        raise InvalidInputError("Webhook URL must not include credentials")
    if parts.fragment:
        raise InvalidInputError("Webhook URL must not include fragments")

    hostname = (parts.hostname or "").lower()
    if not hostname:
        raise InvalidInputError("Invalid webhook URL host")
    if not _allowlisted(hostname):
        raise InvalidInputError("Webhook URL host is not allowlisted")
    if hostname == "localhost" or hostname.endswith((".localhost", ".local")):
        raise InvalidInputError("Webhook URL host is not allowed")

    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        address = None
    if address is not None and (
        address.is_loopback
        or address.is_private
        or address.is_link_local
        or address.is_unspecified
        or address.is_multicast
    ):
        raise InvalidInputError("Webhook URL host is not allowed")

    return url
