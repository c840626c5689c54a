"""
Notification models.

In-app notifications written after lifecycle and query transitions commit.
Delivery beyond this table (e-mail, push) is handled by external transport.
"""

from django.db import models


class NotificationType(models.TextChoices):
    QUERY_ASSIGNED = 'query_assigned', 'Query Assigned'
    QUERY_RESPONSE = 'query_response', 'Query Response'
    QUERY_CLOSED = 'query_closed', 'Query Closed'
    QUERY_REOPENED = 'query_reopened', 'Query Reopened'
    FORM_LOCKED = 'form_locked', 'Form Locked'
    FORM_UNLOCKED = 'form_unlocked', 'Form Unlocked'
    FORM_FROZEN = 'form_frozen', 'Form Frozen'
    FORM_UNFROZEN = 'form_unfrozen', 'Form Unfrozen'
    FORM_SDV_VERIFIED = 'form_sdv_verified', 'Form SDV Verified'
    FORM_SIGNED = 'form_signed', 'Form Signed'
    GENERAL = 'general', 'General'


class Notification(models.Model):
    """
    One notification for one user.

    Business Rules:
    - Created best-effort; a failed insert never affects the transition that
      triggered it
    - entity_type / entity_id point at the CRF instance or query concerned
    """

    notification_id = models.BigAutoField(primary_key=True)

    user_id = models.IntegerField(
        help_text="Recipient user"
    )

    notification_type = models.CharField(
        max_length=50,
        choices=NotificationType.choices,
        default=NotificationType.GENERAL,
    )

    title = models.CharField(max_length=255)
    message = models.TextField()

    entity_type = models.CharField(max_length=50, null=True, blank=True)
    entity_id = models.CharField(max_length=100, null=True, blank=True)
    study_id = models.CharField(max_length=100, null=True, blank=True)

    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    read_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'notification'
        ordering = ['-created_at', '-notification_id']
        indexes = [
            models.Index(fields=['user_id', 'is_read']),
        ]

    def __str__(self):
        return f"{self.notification_type} → user {self.user_id}"
