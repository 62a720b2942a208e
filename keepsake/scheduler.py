"""
APScheduler configuration and job scheduling for Keepsake.

Manages:
- The scheduled backup cycle (based on the configured cron expression)
- Manual backup and prune triggers
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.executors.pool import ThreadPoolExecutor

from keepsake.models import BackupSettings
from keepsake.backup.executor import CYCLE_KINDS, execute_cycle


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'scheduled_backup'

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None


def init_scheduler(app):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    # Store Flask app reference for use in background threads
    flask_app = app

    jobstores = {
        'default': SQLAlchemyJobStore(url=app.config['SQLALCHEMY_DATABASE_URI'])
    }

    # One worker: cycles run one after another
    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone=app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    )

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after Flask app is initialized.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started (state={scheduler.state})")

        for job in scheduler.get_jobs():
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler. Future firings are cancelled, a running cycle completes."""
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("APScheduler stopped")


def sync_schedule():
    """
    Synchronize the scheduled backup job with the stored settings.

    This function should be called:
    - After app startup
    - After settings are updated

    Returns:
        True if a backup job is scheduled after the sync
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    # Drop one-time jobs left over from previous manual triggers
    for job in scheduler.get_jobs():
        if job.id.startswith('manual_'):
            scheduler.remove_job(job.id)
            logger.info(f"Cleaned up old manual job: {job.id}")

    settings = BackupSettings.get()
    existing = scheduler.get_job(BACKUP_JOB_ID)

    if settings is None or not settings.enabled or not settings.schedule_cron:
        if existing:
            scheduler.remove_job(BACKUP_JOB_ID)
            logger.info("Removed scheduled backup job")
        return False

    try:
        trigger = CronTrigger.from_crontab(settings.schedule_cron, timezone=scheduler.timezone)
    except ValueError as e:
        logger.error(f"Invalid backup schedule '{settings.schedule_cron}': {e}")
        if existing:
            scheduler.remove_job(BACKUP_JOB_ID)
        return False

    if existing:
        existing.reschedule(trigger=trigger)
        logger.info(f"Updated scheduled backup ({settings.schedule_cron})")
    else:
        scheduler.add_job(
            func=_execute_cycle_wrapper,
            args=['backup', 'scheduled'],
            trigger=trigger,
            id=BACKUP_JOB_ID,
            name=f"Backup: {settings.prefix}",
            replace_existing=True
        )
        logger.info(f"Scheduled backup ({settings.schedule_cron})")

    return True


def _execute_cycle_wrapper(kind: str, trigger: str = 'scheduled'):
    """
    Wrapper function for executing cycles in scheduler context.

    Args:
        kind: 'backup' or 'prune'
        trigger: 'scheduled' or 'manual'
    """
    with flask_app.app_context():
        try:
            logger.info(f"Scheduler executing {trigger} {kind} cycle")
            history = execute_cycle(kind, trigger=trigger)
            logger.info(f"{kind.capitalize()} cycle finished with status: {history.status}")
        except Exception as e:
            logger.exception(f"Scheduler {kind} cycle failed: {e}")


def trigger_cycle_now(kind: str) -> str:
    """
    Manually trigger a backup or prune cycle.

    Args:
        kind: 'backup' or 'prune'

    Returns:
        ID of the queued one-time job

    Raises:
        ValueError: If kind is invalid
        RuntimeError: If scheduler is not initialized
    """
    if kind not in CYCLE_KINDS:
        raise ValueError(f"Invalid cycle kind: {kind}")

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    now = datetime.now(timezone.utc)
    job_id = f"manual_{kind}_{int(now.timestamp())}_{uuid.uuid4().hex[:8]}"

    # 1 second delay so the request returns before the cycle starts
    scheduler.add_job(
        func=_execute_cycle_wrapper,
        args=[kind, 'manual'],
        trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
        id=job_id,
        name=f"Manual: {kind}",
        replace_existing=False
    )

    logger.info(f"Manually triggered {kind} cycle")
    return job_id


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    if scheduler is None:
        return []

    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
            'trigger': str(job.trigger)
        }
        for job in scheduler.get_jobs()
    ]


def is_scheduler_running() -> bool:
    """Check if the scheduler is running in this process."""
    return scheduler is not None and scheduler.running
