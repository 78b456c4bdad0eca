"""
Celery application for background work.

Notifications and periodic order maintenance run here; the beat
schedule lives in settings under CELERY_BEAT_SCHEDULE.
"""
import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('storefront')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
