"""Webhook handler registry.

Maps a typed (source, event_type) route key to a handler and its
retry policy. Lookup is two-step: the exact key first, then the
source's wildcard key ``(source, "*")``.
"""

import logging
from typing import Dict, List, Optional, Union

from .models import HandlerRegistration, RouteKey, WebhookSource

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """In-memory registry of webhook handlers.

    Example:
        registry = HandlerRegistry()
        registry.register(HandlerRegistration(
            source=WebhookSource.STRIPE,
            event_type="payment_intent.succeeded",
            handler=handle_payment,
            max_retries=5,
        ))

        registration = registry.resolve("stripe", "payment_intent.succeeded")
    """

    def __init__(self):
        self._handlers: Dict[RouteKey, HandlerRegistration] = {}

    def register(self, registration: HandlerRegistration) -> HandlerRegistration:
        """Register a handler, replacing any existing one for the same key.

        Args:
            registration: The handler binding to register.

        Returns:
            The registration.
        """
        key = registration.key
        if key in self._handlers:
            logger.warning(f"Replacing webhook handler for {key}")
        self._handlers[key] = registration
        logger.info(f"Registered webhook handler: {key}")
        return registration

    def unregister(self, source: Union[WebhookSource, str], event_type: str) -> bool:
        """Remove a handler.

        Returns:
            True if removed, False if not found.
        """
        key = RouteKey(WebhookSource(source), event_type)
        if self._handlers.pop(key, None) is None:
            return False
        logger.info(f"Unregistered webhook handler: {key}")
        return True

    def resolve(
        self,
        source: Union[WebhookSource, str],
        event_type: str,
    ) -> Optional[HandlerRegistration]:
        """Find the handler for an event: exact match, then wildcard.

        Args:
            source: The event's source platform.
            event_type: The event's type string.

        Returns:
            The matching registration, or None if neither key is registered.
        """
        key = RouteKey(WebhookSource(source), event_type)
        registration = self._handlers.get(key)
        if registration is None and not key.is_wildcard:
            registration = self._handlers.get(key.wildcard())
        return registration

    def list_routes(self) -> List[RouteKey]:
        return list(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)

    def clear(self) -> int:
        """Remove all registrations.

        Returns:
            Number of handlers removed.
        """
        count = len(self._handlers)
        self._handlers.clear()
        logger.info(f"Cleared {count} webhook handler registrations")
        return count
