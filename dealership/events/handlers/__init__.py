"""
Event handlers for application events.

Import this module to register all event handlers at application startup.
"""

# The @event_bus.on() decorators register handlers automatically on import
from dealership.events.handlers import fanout

__all__ = ['fanout']
