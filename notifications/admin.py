from django.contrib import admin

from .models import NotificationLog


@admin.register(NotificationLog)
class NotificationLogAdmin(admin.ModelAdmin):
    list_display = ['order', 'event', 'channel', 'recipient', 'status', 'sent_at', 'created_at']
    list_filter = ['event', 'channel', 'status']
    search_fields = ['order__confirmation_number', 'recipient', 'provider_message_id']
    raw_id_fields = ['order']
    readonly_fields = ['created_at', 'sent_at']
