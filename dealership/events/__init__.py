"""
Event system for decoupled application components.

The event bus lets the chat write path (socket events, HTTP deletes, the
retention sweeper) announce changes without knowing who pushes what to
which connection.
"""
from dealership.events.bus import event_bus

__all__ = ['event_bus']
