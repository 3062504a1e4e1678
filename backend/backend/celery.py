import os

from celery import Celery
from celery.schedules import crontab

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'backend.settings')

app = Celery('backend')

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
app.config_from_object('django.conf:settings', namespace='CELERY')

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

# Task routing configuration – every credit/payment task runs on the billing queue
app.conf.task_routes = {
    "billing.tasks.expire_credits": {"queue": "billing"},
    "billing.tasks.deliver_outbox_message": {"queue": "billing"},
    "billing.tasks.drain_outbox": {"queue": "billing"},
    "billing.tasks.reconcile_payment_claims": {"queue": "billing"},
    "billing.tasks.replay_webhook_event": {"queue": "billing"},
    "billing.tasks.cleanup_webhook_event_logs": {"queue": "maintenance"},

    # Default queue
    '*': {'queue': 'default'},
}

app.conf.task_default_queue = 'default'

app.conf.update(
    # Serialization settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone settings
    timezone='UTC',
    enable_utc=True,

    # Task execution settings
    task_track_started=True,
    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    # Retry settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Monitoring settings
    worker_send_task_events=True,
    task_send_sent_event=True,

    # Queue settings
    task_queues={
        'default': {
            'exchange': 'default',
            'routing_key': 'default',
        },
        'billing': {
            'exchange': 'billing',
            'routing_key': 'billing',
        },
        'maintenance': {
            'exchange': 'maintenance',
            'routing_key': 'maintenance',
        },
    },

    task_inherit_parent_priority=True,
    task_default_priority=5,

    task_ignore_result=False,
    task_store_errors_even_if_ignored=True,
)

app.conf.task_annotations = {
    'billing.tasks.expire_credits': {
        'time_limit': 15 * 60,
        'soft_time_limit': 12 * 60,
    },
    'billing.tasks.deliver_outbox_message': {
        'rate_limit': '120/m',  # Email/push providers throttle bursts
        'time_limit': 60,
        'soft_time_limit': 45,
    },
}

# Celery Beat schedule configuration
app.conf.beat_schedule = {
    "expire_credits_hourly": {
        "task": "billing.tasks.expire_credits",
        "schedule": crontab(minute=5),
        "options": {"queue": "billing"},
    },
    "drain_outbox_5min": {
        "task": "billing.tasks.drain_outbox",
        "schedule": crontab(minute="*/5"),
        "options": {"queue": "billing"},
    },
    "reconcile_payment_claims_15min": {
        "task": "billing.tasks.reconcile_payment_claims",
        "schedule": crontab(minute="*/15"),
        "options": {"queue": "billing", "priority": 8},
    },
    "cleanup_webhook_logs_daily": {
        "task": "billing.tasks.cleanup_webhook_event_logs",
        "schedule": crontab(hour=4, minute=0),
        "options": {"queue": "maintenance"},
    },
}
