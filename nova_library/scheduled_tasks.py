"""
Scheduled background tasks for the library backend.

Tasks include:
- Refreshing the statistics tables so overdue counts follow the calendar (hourly)
- Recording a summary of overdue loans (daily)
- Pruning old system logs (weekly)

The same scheduler also runs the one-shot statistics refreshes queued
after loan writes.
"""
import logging
from datetime import date

from apscheduler.schedulers.background import BackgroundScheduler

from nova_library.models.database import get_db
from nova_library.models.statistics import LOAN_STATISTICS, refresh_best_effort
from nova_library.models.system_log import SystemLog
from nova_library.routes.helpers import loan_repository
from nova_library.utils.exceptions import LibraryError

logger = logging.getLogger(__name__)


def refresh_statistics(app):
    """Scheduled task: rebuild every statistics table.

    Runs every hour so that overdue counts in the member summary stay
    current even when no loan is written.
    """
    with app.app_context():
        db = get_db()
        today = (app.extensions['nova_library'].get('clock') or date.today)()
        if refresh_best_effort(db, LOAN_STATISTICS, today):
            logger.info("Statistics tables refreshed")
        else:
            try:
                SystemLog.add(
                    'Scheduled Task Error',
                    'Failed to refresh statistics tables',
                    'error',
                    db=db
                )
            except LibraryError as e:
                logger.error(f"Error logging refresh failure: {e}")


def report_overdue_loans(app):
    """Scheduled task: record how many loans are overdue.

    Runs daily at 10:00 AM and writes the count and the penalty accrued
    so far to the system log.
    """
    with app.app_context():
        try:
            overdue = loan_repository(strict=True).list_overdue()
            if overdue:
                total_penalty = sum(row['penalty_amount'] for row in overdue)
                logger.info(f"{len(overdue)} overdue loan(s), {total_penalty} in penalties")
                SystemLog.add(
                    'Scheduled Task: Overdue Report',
                    f'{len(overdue)} overdue loan(s), {total_penalty} accrued in penalties',
                    'system'
                )
        except LibraryError as e:
            logger.error(f"Error in report_overdue_loans: {e}")


def clear_old_logs(app, days=30):
    """Scheduled task: delete system logs older than ``days`` days."""
    with app.app_context():
        try:
            removed = SystemLog.clear_old_logs(days)
            if removed:
                logger.info(f"Removed {removed} old system log(s)")
        except LibraryError as e:
            logger.error(f"Error in clear_old_logs: {e}")


# Initialize scheduler
scheduler = BackgroundScheduler()


def start_scheduler(app):
    """Register the periodic jobs and start the background scheduler."""
    scheduler.add_job(
        func=refresh_statistics,
        trigger='interval',
        hours=1,
        args=[app],
        id='refresh_statistics',
        name='Refresh statistics tables',
        replace_existing=True
    )

    scheduler.add_job(
        func=report_overdue_loans,
        trigger='cron',
        hour=10,
        minute=0,
        args=[app],
        id='report_overdue_loans',
        name='Record overdue loan summary',
        replace_existing=True
    )

    scheduler.add_job(
        func=clear_old_logs,
        trigger='cron',
        day_of_week='sun',
        hour=3,
        minute=0,
        args=[app],
        id='clear_old_logs',
        name='Prune old system logs',
        replace_existing=True
    )

    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduled tasks started successfully")

        with app.app_context():
            try:
                SystemLog.add(
                    'System Startup',
                    'Background task scheduler started',
                    'system'
                )
            except LibraryError as e:
                logger.error(f"Error logging scheduler startup: {e}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduled tasks shut down")
