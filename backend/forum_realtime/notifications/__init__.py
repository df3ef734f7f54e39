"""Real-time notification delivery for the forum's CRUD layer."""

from .service import NotificationDispatcher

__all__ = ["NotificationDispatcher"]
