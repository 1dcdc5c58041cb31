"""Domain events published to UI collaborators."""

from .bus import (
    HEALTH_CHANGED,
    TURN_BUSY,
    TURN_COMPLETED,
    TURN_DISPATCHED,
    TURN_FAILED,
    TURN_REJECTED,
    Event,
    EventBus,
)

__all__ = [
    "Event",
    "EventBus",
    "HEALTH_CHANGED",
    "TURN_BUSY",
    "TURN_COMPLETED",
    "TURN_DISPATCHED",
    "TURN_FAILED",
    "TURN_REJECTED",
]
