from celery.schedules import crontab

CELERY_BEAT_SCHEDULE = {
    "process-due-subscriptions-daily": {
        "task": "billing.process_due_subscriptions",
        "schedule": crontab(minute=0, hour=2),
    },
    "dispatch-payment-retries-hourly": {
        "task": "billing.dispatch_retries",
        "schedule": crontab(minute=15, hour="*/1"),
    },
    "dunning-sweep-daily": {
        "task": "billing.run_dunning_sweep",
        "schedule": crontab(minute=0, hour=9),
    },
    "expire-trials-daily": {
        "task": "billing.expire_trials",
        "schedule": crontab(minute=30, hour=1),
    },
    "trial-reminders-daily": {
        "task": "billing.send_trial_reminders",
        "schedule": crontab(minute=0, hour=10),
    },
}
