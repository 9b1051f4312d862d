"""Webhook signature verification.

Verifiers are pluggable per source: any callable taking the exact raw
body and the (lower-cased) request headers and returning a bool.
Reference verifiers are provided for Stripe, Shopify and a generic
``X-Webhook-Signature`` HMAC scheme.

Security contract:
- All comparisons use hmac.compare_digest() (constant-time)
- A verifier that raises counts as a failed verification (fail-closed)
- Timestamped schemes reject requests outside the tolerance window
"""

import base64
import hashlib
import hmac
import logging
import time
from typing import Callable, Dict, Optional, Tuple, Union

from .models import WebhookSource

logger = logging.getLogger(__name__)

SignatureVerifier = Callable[[str, Dict[str, str]], bool]

# Checked in order; the first one present is the event's signature
SIGNATURE_HEADERS = (
    "x-webhook-signature",
    "stripe-signature",
    "paypal-transmission-sig",
    "x-shopify-hmac-sha256",
    "x-signature",
)


def extract_signature(headers: Dict[str, str]) -> Optional[str]:
    """Return the first signature header value present, if any."""
    for name in SIGNATURE_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None


def generate_signature(
    payload: str,
    secret: str,
    timestamp: Optional[int] = None
) -> Tuple[str, int]:
    """Generate HMAC-SHA256 signature for a webhook payload.

    Args:
        payload: The raw payload string to sign.
        secret: The shared secret key.
        timestamp: Optional Unix timestamp (defaults to current time).

    Returns:
        Tuple of (signature, timestamp) for inclusion in headers.
    """
    if timestamp is None:
        timestamp = int(time.time())

    message = f"{timestamp}.{payload}"

    signature = hmac.new(
        secret.encode("utf-8"),
        message.encode("utf-8"),
        hashlib.sha256
    ).hexdigest()

    return signature, timestamp


def verify_signature(
    payload: str,
    signature: str,
    secret: str,
    timestamp: int,
    max_age_seconds: int = 300
) -> bool:
    """Verify a timestamped HMAC-SHA256 signature.

    Args:
        payload: The raw request body string.
        signature: The signature from the X-Webhook-Signature header.
        secret: The shared secret key.
        timestamp: The timestamp from the X-Webhook-Timestamp header.
        max_age_seconds: Maximum age of request (replay protection).

    Returns:
        True if signature is valid and request is fresh.
    """
    if abs(int(time.time()) - timestamp) > max_age_seconds:
        return False

    expected_signature, _ = generate_signature(payload, secret, timestamp)
    return hmac.compare_digest(signature, expected_signature)


def hmac_verifier(secret: str, max_age_seconds: int = 300) -> SignatureVerifier:
    """Generic verifier for the X-Webhook-Signature / X-Webhook-Timestamp scheme.

    Without a timestamp header the HMAC is computed over the body alone.
    """
    def verify(raw_payload: str, headers: Dict[str, str]) -> bool:
        signature = headers.get("x-webhook-signature") or headers.get("x-signature")
        if not signature:
            return False

        timestamp = headers.get("x-webhook-timestamp")
        if timestamp is not None:
            try:
                ts = int(timestamp)
            except ValueError:
                return False
            return verify_signature(raw_payload, signature, secret, ts, max_age_seconds)

        expected = hmac.new(
            secret.encode("utf-8"), raw_payload.encode("utf-8"), hashlib.sha256
        ).hexdigest()
        return hmac.compare_digest(expected, signature)

    return verify


def stripe_verifier(secret: str, tolerance_seconds: int = 300) -> SignatureVerifier:
    """Verifier for the Stripe-Signature header (``t=<ts>,v1=<sig>[,v1=...]``)."""
    def verify(raw_payload: str, headers: Dict[str, str]) -> bool:
        header = headers.get("stripe-signature")
        if not header:
            return False

        timestamp_str = None
        v1_signatures = []
        for item in header.split(","):
            key, sep, value = item.strip().partition("=")
            if not sep:
                continue
            if key == "t":
                timestamp_str = value
            elif key == "v1":
                v1_signatures.append(value)

        if not timestamp_str or not v1_signatures:
            return False
        try:
            timestamp = int(timestamp_str)
        except ValueError:
            return False

        if abs(time.time() - timestamp) > tolerance_seconds:
            logger.warning(f"Stripe webhook timestamp outside tolerance: {timestamp}")
            return False

        expected = hmac.new(
            secret.encode("utf-8"),
            f"{timestamp}.{raw_payload}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return any(hmac.compare_digest(expected, sig) for sig in v1_signatures)

    return verify


def shopify_verifier(secret: str) -> SignatureVerifier:
    """Verifier for X-Shopify-Hmac-SHA256 (base64-encoded HMAC-SHA256 of the body)."""
    def verify(raw_payload: str, headers: Dict[str, str]) -> bool:
        header = headers.get("x-shopify-hmac-sha256")
        if not header:
            return False
        digest = hmac.new(
            secret.encode("utf-8"), raw_payload.encode("utf-8"), hashlib.sha256
        ).digest()
        return hmac.compare_digest(base64.b64encode(digest).decode("utf-8"), header)

    return verify


class SignatureVerifierRegistry:
    """Per-source signature verifiers."""

    def __init__(self):
        self._verifiers: Dict[WebhookSource, SignatureVerifier] = {}

    def register(self, source: Union[WebhookSource, str], verifier: SignatureVerifier) -> None:
        self._verifiers[WebhookSource(source)] = verifier
        logger.info(f"Registered signature verifier for source: {WebhookSource(source).value}")

    def get(self, source: Union[WebhookSource, str]) -> Optional[SignatureVerifier]:
        return self._verifiers.get(WebhookSource(source))

    def has(self, source: Union[WebhookSource, str]) -> bool:
        return WebhookSource(source) in self._verifiers

    def verify(self, source: Union[WebhookSource, str], raw_payload: str, headers: Dict[str, str]) -> bool:
        """Run the source's verifier. Missing verifier or a raising verifier -> False."""
        verifier = self.get(source)
        if verifier is None:
            logger.warning(f"No signature verifier for source: {source}")
            return False
        try:
            return bool(verifier(raw_payload, headers))
        except Exception as e:
            logger.error(f"Signature verifier for {source} raised: {e}")
            return False


def build_default_verifiers(
    secrets: Dict[str, str],
    tolerance_seconds: int = 300,
) -> SignatureVerifierRegistry:
    """Install reference verifiers for every source with a configured secret.

    Args:
        secrets: Mapping of source name -> shared secret.
        tolerance_seconds: Replay window for timestamped schemes.
    """
    registry = SignatureVerifierRegistry()
    for name, secret in secrets.items():
        try:
            source = WebhookSource(name.lower())
        except ValueError:
            logger.warning(f"Ignoring secret for unknown webhook source: {name}")
            continue

        if source == WebhookSource.STRIPE:
            registry.register(source, stripe_verifier(secret, tolerance_seconds))
        elif source == WebhookSource.SHOPIFY:
            registry.register(source, shopify_verifier(secret))
        else:
            registry.register(source, hmac_verifier(secret, tolerance_seconds))
    return registry
