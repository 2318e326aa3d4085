"""
APScheduler configuration for hosts that run clusterdump as a daemon
instead of from cron.

One job triggers a backup run per cron tick. Jobs run in a worker thread,
so shutdown signals are handled here in the main thread: they cancel the
run in progress and wait for it to release its lock.
"""

import signal
import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from clusterdump.backup.executor import BackupExecutor


logger = logging.getLogger(__name__)

# Global scheduler instance and the run currently executing
scheduler = None
active_executor = None


def _execute_backup_wrapper(config):
    """Run one backup and log its outcome; the scheduler keeps running either way."""
    global active_executor

    active_executor = BackupExecutor(config)
    try:
        run = active_executor.execute()
    finally:
        active_executor = None

    if run.exit_code != 0:
        logger.error(f"Scheduled backup run failed: {run.reason}")
    else:
        logger.info(f"Scheduled backup run finished: {run.status.value}")
    return run


def init_scheduler(config, cron_expression=None):
    """
    Initialize and configure APScheduler.

    Args:
        config: Settings dict
        cron_expression: Crontab expression (defaults to config['BACKUP_CRON'])

    Returns:
        The scheduler instance
    """
    global scheduler

    if scheduler is not None:
        return scheduler

    cron_expression = cron_expression or config['BACKUP_CRON']
    timezone = config.get('SCHEDULER_TIMEZONE', 'UTC')

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(job_defaults=job_defaults, timezone=timezone)

    scheduler.add_job(
        func=_execute_backup_wrapper,
        args=[config],
        trigger=CronTrigger.from_crontab(cron_expression, timezone=timezone),
        id='database_backup',
        name='Database Backup',
        replace_existing=True
    )
    logger.info(f"Scheduled database backup ({cron_expression} {timezone})")

    return scheduler


def handle_shutdown_signal(signum, frame):
    """
    Stop the run in progress, wait for its worker to finish and exit.

    The worker releases the lock itself once mysqldump is gone, so the lock
    never disappears while a dump is still being written.
    """
    executor = active_executor
    if executor is not None:
        executor.cancel(signum)
    stop_scheduler(wait=True)
    if executor is not None:
        executor.lock.release()
    raise SystemExit(1)


def start_scheduler():
    """
    Start the APScheduler. Blocks until the scheduler is shut down.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    for signum in (signal.SIGINT, signal.SIGTERM, signal.SIGHUP):
        signal.signal(signum, handle_shutdown_signal)

    if not scheduler.running:
        logger.info("APScheduler starting")
        scheduler.start()


def stop_scheduler(wait=False):
    """Stop the APScheduler; with wait=True, block until running jobs finish."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=wait)
        logger.info("APScheduler stopped")
    scheduler = None
