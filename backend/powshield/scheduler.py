"""Background scheduler for secret rotation and expiry sweeps."""

import logging
import os

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from powshield.state import Shield

logger = logging.getLogger(__name__)


def rotate_secret_job(shield: Shield) -> None:
    """Rotate the signing secret. A failure here takes the process down."""
    try:
        shield.authority.rotate()
    except Exception:
        # Serving with an unrotatable key is worse than not serving
        logger.critical("Secret rotation failed, terminating", exc_info=True)
        os._exit(1)


def sweep_job(shield: Shield) -> None:
    """Scavenge expired challenges, used nonces and fully decayed identities."""
    try:
        expired, evicted = shield.sweep()
        if expired or evicted:
            logger.info(f"Sweep: expired {expired} store entries, evicted {evicted} identities")
    except Exception as e:
        logger.error(f"Sweep failed: {e}")


def start_scheduler(shield: Shield) -> BackgroundScheduler:
    """Start a background scheduler bound to this process's shield state."""
    settings = shield.settings
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        rotate_secret_job,
        trigger=IntervalTrigger(seconds=settings.secret_rotation_interval_seconds),
        args=[shield],
        id="rotate_signing_secret",
        replace_existing=True,
    )
    scheduler.add_job(
        sweep_job,
        trigger=IntervalTrigger(seconds=settings.sweep_interval_seconds),
        args=[shield],
        id="sweep_expired_state",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started - secret rotates every {settings.secret_rotation_interval_seconds}s, "
        f"sweep every {settings.sweep_interval_seconds}s"
    )
    return scheduler


def shutdown_scheduler(scheduler: BackgroundScheduler) -> None:
    """Shutdown the scheduler gracefully."""
    scheduler.shutdown(wait=False)
    logger.info("Scheduler stopped")
