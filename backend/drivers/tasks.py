"""Celery tasks for driver presence housekeeping."""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task
def sweep_stale_presence():
    """
    Mark ONLINE drivers whose liveness key expired as OFFLINE.

    Scheduled every minute through CELERY_BEAT_SCHEDULE.
    """
    from services.presence import sweep_stale_presence as sweep

    swept = sweep()
    if swept:
        logger.info("Swept %s stale drivers offline", swept)
    return swept
