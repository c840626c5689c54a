"""
Notification Dispatcher.

Lifecycle and query services never write notifications inline. They call
``dispatch_on_commit`` which registers the write with
``transaction.on_commit``: the notification only exists if the transition
committed, and a failure while writing it is logged and dropped.
"""

import logging
from functools import partial
from django.conf import settings
from django.db import transaction
from django.utils import timezone
from .models import Notification

logger = logging.getLogger(__name__)


def notifications_enabled():
    return settings.EDC_FEATURES.get('NOTIFICATIONS', True)


class NotificationDispatcher:
    """
    Best-effort notification sink.
    """

    def dispatch(self, user_id, notification_type, title, message,
                 entity_type=None, entity_id=None, study_id=None):
        """
        Create a single notification for a user.

        Returns:
            Notification or None when disabled, unaddressed, or the write failed
        """
        if user_id is None or not notifications_enabled():
            return None

        try:
            with transaction.atomic():
                return Notification.objects.create(
                    user_id=user_id,
                    notification_type=notification_type,
                    title=title,
                    message=message,
                    entity_type=entity_type,
                    entity_id=str(entity_id) if entity_id is not None else None,
                    study_id=study_id,
                )
        except Exception:
            logger.warning(
                "Failed to create %s notification for user %s",
                notification_type, user_id, exc_info=True
            )
            return None

    def dispatch_on_commit(self, user_ids, notification_type, title, message, **options):
        """
        Schedule notifications for every distinct recipient once the current
        transaction commits.
        """
        recipients = []
        for user_id in user_ids:
            if user_id is not None and user_id not in recipients:
                recipients.append(user_id)

        for user_id in recipients:
            transaction.on_commit(
                partial(self.dispatch, user_id, notification_type, title, message, **options),
                robust=True,
            )

    def get_unread(self, user_id, limit=50):
        unread = Notification.objects.filter(user_id=user_id, is_read=False)
        return {
            'data': list(unread[:limit]),
            'total_unread': unread.count(),
        }

    def mark_as_read(self, notification_id, user_id):
        updated = Notification.objects.filter(
            notification_id=notification_id,
            user_id=user_id,
            is_read=False,
        ).update(is_read=True, read_at=timezone.now())
        return updated == 1

    def mark_all_as_read(self, user_id):
        return Notification.objects.filter(
            user_id=user_id,
            is_read=False,
        ).update(is_read=True, read_at=timezone.now())
