"""Content OS event system."""

from contentos.events.bus import EventBus
from contentos.events.types import EventType

__all__ = ["EventBus", "EventType"]
