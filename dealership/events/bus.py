"""
In-process event bus between the chat write path and its side effects.

The socket handlers and HTTP routes only persist and emit; everything that
pushes frames to other connections listens here.

Example:
    @event_bus.on('message.created')
    async def push_preview(message: StoredMessage):
        ...

    await event_bus.emit('message.created', stored_message)
"""
from typing import Any, Callable, Dict, List
import inspect
import logging

logger = logging.getLogger(__name__)

MESSAGE_CREATED = 'message.created'
MESSAGE_DELETED = 'message.deleted'
CONVERSATION_DELETED = 'conversation.deleted'
CONVERSATIONS_CHANGED = 'conversations.changed'
NOTIFICATIONS_CLEARED = 'notifications.cleared'


class EventBus:
    """
    Publish-subscribe within one event loop.

    Handlers run sequentially in registration order. A failing handler is
    logged and does not stop the ones after it.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = {}

    def on(self, event_name: str):
        """Decorator registering ``handler`` for ``event_name``."""
        def decorator(handler: Callable):
            self.register(event_name, handler)
            return handler
        return decorator

    def register(self, event_name: str, handler: Callable):
        self._handlers.setdefault(event_name, []).append(handler)
        logger.debug(
            f"Registered handler {handler.__name__} for event '{event_name}'")

    async def emit(self, event_name: str, data: Any = None) -> int:
        """Run every handler for the event; returns how many completed cleanly."""
        handlers = list(self._handlers.get(event_name, ()))
        if not handlers:
            logger.debug(f"No handlers registered for event '{event_name}'")
            return 0

        completed = 0
        for handler in handlers:
            try:
                if inspect.iscoroutinefunction(handler):
                    await handler(data)
                else:
                    handler(data)
                completed += 1
            except Exception as e:
                logger.error(
                    f"Error in handler {handler.__name__} for event '{event_name}': {e}",
                    exc_info=True
                )
        return completed

    def remove_handler(self, event_name: str, handler: Callable):
        """Remove a specific handler from an event."""
        try:
            self._handlers.get(event_name, []).remove(handler)
        except ValueError:
            pass

    def get_handler_count(self, event_name: str) -> int:
        """Get number of handlers registered for an event."""
        return len(self._handlers.get(event_name, []))


# Global event bus instance
event_bus = EventBus()
