# redblood/celery.py
"""
Celery configuration for notification fan-out
"""
import os

from celery import Celery

# Set default Django settings
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'redblood.settings')

app = Celery('redblood')

# Load config from Django settings (prefix: CELERY_)
app.config_from_object('django.conf:settings', namespace='CELERY')

# Picks up notifications/tasks.py
app.autodiscover_tasks()
