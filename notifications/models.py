"""
Notification Models - one row per (order, event, channel) send.

The unique constraint is what stops a replayed lifecycle transition from
notifying the customer twice.
"""
from django.db import models


class NotificationLog(models.Model):

    class Event(models.TextChoices):
        ORDER_CONFIRMED = 'order_confirmed', 'Order confirmed'
        ORDER_SHIPPED = 'order_shipped', 'Order shipped'
        ORDER_DELIVERED = 'order_delivered', 'Order delivered'
        ORDER_CANCELLED = 'order_cancelled', 'Order cancelled'
        PAYMENT_FAILED = 'payment_failed', 'Payment failed'
        MODIFICATION_REQUESTED = 'modification_requested', 'Modification requested'

    class Channel(models.TextChoices):
        EMAIL = 'email', 'Email'
        SMS = 'sms', 'SMS'

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        SENT = 'sent', 'Sent'
        FAILED = 'failed', 'Failed'
        SKIPPED = 'skipped', 'Skipped'

    order = models.ForeignKey(
        'orders.Order',
        on_delete=models.CASCADE,
        related_name='notifications'
    )
    event = models.CharField(max_length=40, choices=Event.choices)
    channel = models.CharField(max_length=10, choices=Channel.choices)
    recipient = models.CharField(max_length=254, blank=True, default='')
    status = models.CharField(
        max_length=10,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True
    )
    provider_message_id = models.CharField(max_length=100, blank=True, default='')
    error = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    sent_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['order', 'event', 'channel'],
                name='notification_once_per_event_channel'
            ),
        ]

    def __str__(self):
        return f"{self.event} via {self.channel} for order #{self.order_id} ({self.status})"
