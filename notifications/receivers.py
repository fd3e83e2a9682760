# notifications/receivers.py
"""
Queue notification tasks when requests and responses change
"""
import logging

from django.dispatch import receiver

from bloodrequests.signals import (
    request_created,
    request_status_changed,
    response_created,
    response_status_changed,
)
from notifications.tasks import (
    notify_new_request,
    notify_new_response,
    notify_request_status,
    notify_response_status,
)

logger = logging.getLogger(__name__)


@receiver(request_created)
def queue_new_request(sender, event, **kwargs):
    request = event['request']
    notify_new_request.delay(request['id'])
    logger.info(f"Donor notification queued for request {request['id']}")


@receiver(request_status_changed)
def queue_request_status(sender, event, **kwargs):
    notify_request_status.delay(event['request']['id'], event['status'])


@receiver(response_created)
def queue_new_response(sender, event, **kwargs):
    notify_new_response.delay(event['response']['id'])


@receiver(response_status_changed)
def queue_response_status(sender, event, **kwargs):
    notify_response_status.delay(event['response']['id'], event['status'])
