# bloodrequests/signals.py
"""
Domain events emitted after request and response writes succeed.

Each signal carries a plain ``event`` dict with a ``type`` key. Receivers
live in the notifications app and must not affect the outcome of the write
that raised the event.
"""
import logging

import django.dispatch

logger = logging.getLogger(__name__)

REQUEST_CREATED = 'request.created'
REQUEST_STATUS_CHANGED = 'request.statusChanged'
RESPONSE_CREATED = 'response.created'
RESPONSE_STATUS_CHANGED = 'response.statusChanged'

request_created = django.dispatch.Signal()
request_status_changed = django.dispatch.Signal()
response_created = django.dispatch.Signal()
response_status_changed = django.dispatch.Signal()

SIGNALS = {
    REQUEST_CREATED: request_created,
    REQUEST_STATUS_CHANGED: request_status_changed,
    RESPONSE_CREATED: response_created,
    RESPONSE_STATUS_CHANGED: response_status_changed,
}


def emit(event_type, sender=None, **payload):
    """Send an event to every receiver and return the event dict."""
    event = {'type': event_type, **payload}
    results = SIGNALS[event_type].send_robust(sender=sender, event=event)
    for receiver, result in results:
        if isinstance(result, Exception):
            logger.error(
                f"Receiver {getattr(receiver, '__name__', receiver)} failed for {event_type}: {result}",
                exc_info=result,
            )
    return event
