"""
Lightweight Event System for Extensibility

Provides a simple event emitter pattern for hooks and extensibility.
Not a full plugin registry - just enough for clean extensibility.

Events fire after the triggering write has been committed, so handlers
observe durable state. A failing handler is logged and never breaks the
request that emitted the event.
"""
import logging
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

# Event registry: event_name -> list of handlers
_event_handlers: Dict[str, List[Callable]] = {}


def subscribe(event_name: str, handler: Callable):
    """
    Subscribe a handler function to an event.

    Args:
        event_name: Name of the event (e.g., 'activity.recorded', 'challenge.completed')
        handler: Function to call when event fires

    Example:
        def on_challenge_completed(athlete_id: int, challenge_id: int, points: int, source: str):
            ...

        subscribe(EVENT_CHALLENGE_COMPLETED, on_challenge_completed)
    """
    if event_name not in _event_handlers:
        _event_handlers[event_name] = []

    _event_handlers[event_name].append(handler)
    logger.debug(f"Subscribed handler to event: {event_name}")


def unsubscribe(event_name: str, handler: Callable):
    """Remove a previously subscribed handler. Unknown handlers are ignored."""
    handlers = _event_handlers.get(event_name, [])
    if handler in handlers:
        handlers.remove(handler)


def emit(event_name: str, **kwargs):
    """
    Emit an event, calling all subscribed handlers.

    Args:
        event_name: Name of the event
        **kwargs: Event data passed to handlers

    Example:
        emit(EVENT_ACTIVITY_RECORDED, activity_id=activity.id, athlete_id=user.id)
    """
    if event_name not in _event_handlers:
        return

    for handler in list(_event_handlers[event_name]):
        try:
            handler(**kwargs)
        except Exception as e:
            logger.error(f"Error in event handler for {event_name}: {e}", exc_info=True)


# Common event names
EVENT_ACTIVITY_RECORDED = 'activity.recorded'
EVENT_CHALLENGE_COMPLETED = 'challenge.completed'
EVENT_CHALLENGE_STARTED = 'challenge.started'
