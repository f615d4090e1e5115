# stayrefunds/tasks/beat_schedule.py
"""
Celery Beat schedule configuration for the refund engine.
"""

from typing import Any

from celery.schedules import crontab

CELERYBEAT_SCHEDULE: dict[str, dict[str, Any]] = {
    # Escalation scan - hourly, on the hour
    "scan-stale-refunds": {
        "task": "refunds.scan_stale_refunds",
        "schedule": crontab(minute=0),
        "kwargs": {},
        "options": {"priority": 5},
    },
}


def get_beat_schedule() -> dict[str, dict[str, Any]]:
    return dict(CELERYBEAT_SCHEDULE)
