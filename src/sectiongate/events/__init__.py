"""sectiongate event system."""

from sectiongate.events.bus import EventBus
from sectiongate.events.types import EventType

__all__ = ["EventBus", "EventType"]
