"""
Celery Beat Schedule Configuration

Defines periodic tasks that run on a schedule.
"""

from celery.schedules import crontab

# Schedule configuration
beat_schedule = {
    # Daily settlement - 05:15 UTC is just after midnight in America/New_York
    # (00:15 EST / 01:15 EDT). The task settles "yesterday" in SETTLEMENT_TIMEZONE.
    'daily-settlement': {
        'task': 'tasks.run_daily_settlement',
        'schedule': crontab(hour=5, minute=15),
    },
    # Ledger reconciliation - Sunday 06:00 UTC, after that day's settlement
    'reconcile-coin-balances': {
        'task': 'tasks.reconcile_coin_balances',
        'schedule': crontab(hour=6, minute=0, day_of_week=0),
    },
}
