"""
Scheduled Tasks Module
Background polling of the notice board backend and the shared scheduler
that also carries the display's rotation and media timers
"""
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
import logging

logger = logging.getLogger(__name__)
scheduler = None


def get_scheduler():
    """Shared BackgroundScheduler, created on first use (not started)"""
    global scheduler

    if scheduler is None:
        scheduler = BackgroundScheduler(daemon=True)
    return scheduler


def poll_announcements_task(app):
    """
    Scheduled task to resync the announcement list
    Runs every ANNOUNCEMENT_POLL_SECONDS (default 15s)
    """
    with app.app_context():
        app.display_controller.refresh_announcements()


def poll_live_status_task(app):
    """
    Scheduled task to resync the live broadcast status
    Runs every LIVE_POLL_SECONDS (default 5s)
    """
    with app.app_context():
        app.display_controller.refresh_live_status()


def init_scheduler(app):
    """
    Register polling jobs and start the background scheduler

    Args:
        app: Flask application instance with a display_controller attached
    """
    background = get_scheduler()

    try:
        background.add_job(
            func=poll_announcements_task,
            trigger=IntervalTrigger(seconds=app.config.get('ANNOUNCEMENT_POLL_SECONDS', 15)),
            args=[app],
            id='poll_announcements',
            name='Announcement feed resync',
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        background.add_job(
            func=poll_live_status_task,
            trigger=IntervalTrigger(seconds=app.config.get('LIVE_POLL_SECONDS', 5)),
            args=[app],
            id='poll_live_status',
            name='Live status resync',
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(
            f"Polling started - announcements every {app.config.get('ANNOUNCEMENT_POLL_SECONDS', 15)}s, "
            f"live status every {app.config.get('LIVE_POLL_SECONDS', 5)}s"
        )

        if not background.running:
            background.start()
            logger.info("Scheduler started successfully")

    except Exception as e:
        logger.error(f"Failed to initialize scheduler: {e}")

    return background


def shutdown_scheduler():
    """Shutdown the scheduler gracefully"""
    global scheduler

    if scheduler is not None:
        try:
            if scheduler.running:
                scheduler.shutdown(wait=False)
            logger.info("Scheduler shut down")
        except Exception as e:
            logger.error(f"Error shutting down scheduler: {e}")
        scheduler = None
