# notifications/push.py
"""
Firebase Cloud Messaging delivery
"""
import logging

from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging

from redblood.firebase import get_firebase_app

logger = logging.getLogger(__name__)

# FCM accepts at most 500 tokens per multicast
FCM_BATCH_SIZE = 500


def build_message(tokens, title, body, data=None):
    return messaging.MulticastMessage(
        tokens=tokens,
        notification=messaging.Notification(title=title, body=body),
        # FCM data values must be strings
        data={key: str(value) for key, value in (data or {}).items() if value is not None},
        android=messaging.AndroidConfig(
            priority='high',
            notification=messaging.AndroidNotification(sound='default', channel_id='blood_requests'),
        ),
        apns=messaging.APNSConfig(
            payload=messaging.APNSPayload(aps=messaging.Aps(sound='default', category='blood_request')),
        ),
    )


def send_push(tokens, title, body, data=None):
    """
    Send one notification to every device token.

    Returns (success_count, failure_count).
    """
    tokens = list(dict.fromkeys(token for token in tokens if token))
    if not tokens:
        return 0, 0

    success_count = 0
    failure_count = 0
    app = get_firebase_app()

    for start in range(0, len(tokens), FCM_BATCH_SIZE):
        batch = tokens[start:start + FCM_BATCH_SIZE]
        try:
            response = messaging.send_each_for_multicast(build_message(batch, title, body, data), app=app)
        except firebase_exceptions.FirebaseError as e:
            logger.error(f"FCM batch of {len(batch)} tokens failed: {e}")
            failure_count += len(batch)
            continue
        success_count += response.success_count
        failure_count += response.failure_count

    logger.info(f"Push '{title}' sent to {success_count} devices ({failure_count} failed)")
    return success_count, failure_count
