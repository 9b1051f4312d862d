"""Inbound webhook receiver.

Validates the raw payload, verifies its signature, extracts the event
type and queues a pending WebhookEvent. Malformed or unauthenticated
webhooks are rejected here and never reach the queue.
"""

import json
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple, Union

from ..core.settings import EngineSettings
from ..security.audit import AuditLog, EventCategory, EventSeverity
from .errors import AuthenticationError, ValidationError
from .models import WebhookEvent, WebhookSource, utcnow
from .registry import HandlerRegistry
from .security import SignatureVerifierRegistry, extract_signature
from .store import EventStore

logger = logging.getLogger(__name__)

# Payload fields holding the event type, tried in order, per source
_EVENT_TYPE_FIELDS: Dict[WebhookSource, Tuple[str, ...]] = {
    WebhookSource.STRIPE: ("type",),
    WebhookSource.PAYPAL: ("event_type",),
    WebhookSource.SHOPIFY: ("topic",),
    WebhookSource.MERCADOLIBRE: ("topic", "type"),
    WebhookSource.OXXO: ("type",),
    WebhookSource.MARKETPLACE: ("topic", "type"),
    WebhookSource.CUSTOM: ("type", "event_type"),
}

# Headers carrying the event type when the payload does not
_EVENT_TYPE_HEADERS: Dict[WebhookSource, str] = {
    WebhookSource.SHOPIFY: "x-shopify-topic",
}


def extract_event_type(source: WebhookSource, payload: Dict[str, Any], headers: Dict[str, str]) -> str:
    """Extract the origin-specific event type (``"unknown"`` if absent)."""
    for field_name in _EVENT_TYPE_FIELDS.get(source, ("type",)):
        value = payload.get(field_name)
        if value:
            return str(value)
    header = _EVENT_TYPE_HEADERS.get(source)
    if header and headers.get(header):
        return headers[header]
    return "unknown"


def extract_provider_event_id(payload: Dict[str, Any]) -> Optional[str]:
    value = payload.get("id")
    if value is None or value == "":
        return None
    return str(value)


def normalize_headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    return {str(k).lower(): str(v) for k, v in (headers or {}).items()}


class WebhookReceiver:
    """Accepts inbound webhooks and appends them to the event store.

    Features:
    - JSON payload validation
    - Fail-closed signature verification
    - Per-source event type extraction
    - Duplicate suppression by provider event id
    """

    def __init__(
        self,
        settings: EngineSettings,
        store: EventStore,
        registry: HandlerRegistry,
        verifiers: SignatureVerifierRegistry,
        audit_log: AuditLog,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.store = store
        self.registry = registry
        self.verifiers = verifiers
        self.audit_log = audit_log
        self.clock = clock
        self._seen: "OrderedDict[Tuple[WebhookSource, str], str]" = OrderedDict()
        self._load_seen()

    def receive(
        self,
        source: Union[WebhookSource, str],
        raw_payload: Union[str, bytes],
        headers: Optional[Dict[str, str]] = None,
        tenant_id: Optional[str] = None,
    ) -> Tuple[WebhookEvent, bool]:
        """Validate, verify and queue an inbound webhook.

        Args:
            source: Origin platform.
            raw_payload: The exact raw request body.
            headers: Request headers (any case).
            tenant_id: Optional tenant scoping tag, passed through to handlers.

        Returns:
            Tuple of (event, duplicate). For a duplicate, the event is the
            originally queued one and nothing new is stored.

        Raises:
            ValidationError: Unknown source or malformed payload.
            AuthenticationError: Signature missing, invalid or unverifiable.
        """
        try:
            source = WebhookSource(source)
        except ValueError:
            raise ValidationError(f"Unknown webhook source: {source}")

        if isinstance(raw_payload, bytes):
            try:
                raw_payload = raw_payload.decode("utf-8")
            except UnicodeDecodeError:
                raise ValidationError("Payload is not valid UTF-8")

        headers = normalize_headers(headers)

        try:
            payload = json.loads(raw_payload)
        except (TypeError, ValueError):
            raise ValidationError("Invalid JSON payload")
        if not isinstance(payload, dict):
            raise ValidationError("Webhook payload must be a JSON object")

        signature = extract_signature(headers)
        signature_valid = None
        if signature or self.verifiers.has(source):
            signature_valid = self._verify(source, raw_payload, headers, signature)

        event_type = extract_event_type(source, payload, headers)
        provider_event_id = extract_provider_event_id(payload)

        duplicate_of = self._find_duplicate(source, provider_event_id)
        if duplicate_of is not None:
            logger.info(f"Duplicate webhook ignored: {source.value}:{provider_event_id} ({duplicate_of.id})")
            return duplicate_of, True

        registration = self.registry.resolve(source, event_type)
        if registration is not None:
            max_retries = registration.max_retries
            retry_delay = registration.retry_delay_seconds
            retryable = registration.retryable
        else:
            max_retries, retry_delay, retryable = None, None, True

        event = WebhookEvent(
            source=source,
            type=event_type,
            payload=payload,
            signature=signature,
            headers=headers,
            tenant_id=tenant_id,
            provider_event_id=provider_event_id,
            max_retries=self.settings.default_max_retries if max_retries is None else max_retries,
            retry_delay_seconds=(
                self.settings.default_retry_delay_seconds if retry_delay is None else retry_delay
            ),
            retryable=retryable,
            received_at=self.clock(),
        )
        self.store.add(event)
        self._remember(source, provider_event_id, event.id)

        logger.info(f"Webhook received: {source.value}:{event_type} ({event.id})")
        logger.debug(f"Webhook {event.id} headers={headers} payload={payload}")
        self.audit_log.log(
            "webhook.received",
            category=EventCategory.SECURITY,
            target_id=event.id,
            source_ip=headers.get("x-forwarded-for"),
            details={
                "source": source.value,
                "type": event_type,
                "event_id": event.id,
                "tenant_id": tenant_id,
                "signature_present": signature is not None,
                "signature_valid": signature_valid,
            },
        )
        return event, False

    def _verify(
        self,
        source: WebhookSource,
        raw_payload: str,
        headers: Dict[str, str],
        signature: Optional[str],
    ) -> bool:
        if signature is None:
            reason = "Missing webhook signature"
        elif not self.verifiers.has(source):
            reason = f"No signature verifier configured for {source.value}"
        elif not self.verifiers.verify(source, raw_payload, headers):
            reason = "Invalid webhook signature"
        else:
            return True

        logger.warning(f"Rejected {source.value} webhook: {reason}")
        self.audit_log.log(
            "webhook.signature_rejected",
            severity=EventSeverity.WARNING,
            category=EventCategory.AUTHENTICATION,
            outcome="denied",
            source_ip=headers.get("x-forwarded-for"),
            details={
                "source": source.value,
                "signature_present": signature is not None,
                "signature_valid": False,
                "reason": reason,
            },
        )
        raise AuthenticationError(reason)

    def _load_seen(self) -> None:
        """Rebuild the duplicate window from events already in the store."""
        for event in sorted(self.store.all_events(), key=lambda e: e.received_at):
            self._remember(event.source, event.provider_event_id, event.id)
        if self._seen:
            logger.info(f"Restored {len(self._seen)} provider event ids into the duplicate window")

    def _find_duplicate(self, source: WebhookSource, provider_event_id: Optional[str]) -> Optional[WebhookEvent]:
        if not provider_event_id or self.settings.dedup_window_size == 0:
            return None
        event_id = self._seen.get((source, provider_event_id))
        if event_id is None:
            return None
        event = self.store.get(event_id)
        if event is None:
            # Purged since; treat as new
            self._seen.pop((source, provider_event_id), None)
        return event

    def _remember(self, source: WebhookSource, provider_event_id: Optional[str], event_id: str) -> None:
        if not provider_event_id or self.settings.dedup_window_size == 0:
            return
        self._seen[(source, provider_event_id)] = event_id
        while len(self._seen) > self.settings.dedup_window_size:
            self._seen.popitem(last=False)
