"""Security and audit infrastructure."""

from .audit import AuditEvent, AuditLog, EventCategory, EventSeverity

__all__ = ["AuditEvent", "AuditLog", "EventCategory", "EventSeverity"]
