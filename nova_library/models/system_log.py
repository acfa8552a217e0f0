"""System log model for tracking system activities.

This module records scheduler runs and other lifecycle events in the
``system_logs`` table so they can be reviewed from the database.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from nova_library.models.database import Database, get_db


class SystemLog:
    """System activity log.

    This class provides static methods for adding and retrieving
    system log entries. No instances are created.
    """

    @staticmethod
    def add(action: str, details: str, log_type: str = 'info',
            user_id: Optional[int] = None, db: Optional[Database] = None) -> int:
        """Add a new system log entry.

        Args:
            action: The action being logged.
            details: Detailed description of the action.
            log_type: Log level ('info', 'warning', 'error', 'system').
            user_id: ID of the borrower concerned (optional).
            db: Gateway to write to. Defaults to the request connection.

        Returns:
            The ID of the created log entry.
        """
        db = db or get_db()
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')

        with db.transaction():
            cursor = db.execute('''
                INSERT INTO system_logs (timestamp, action, details, log_type, user_id)
                VALUES (?, ?, ?, ?, ?)
            ''', (timestamp, action, details, log_type, user_id))
        return cursor.lastrowid

    @staticmethod
    def get_recent(limit: int = 50, db: Optional[Database] = None) -> List[Dict[str, Any]]:
        """Get recent system logs, newest first."""
        db = db or get_db()
        return db.fetch_all('''
            SELECT * FROM system_logs
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
        ''', (limit,))

    @staticmethod
    def clear_old_logs(days: int = 30, db: Optional[Database] = None) -> int:
        """Delete logs older than ``days`` days.

        Returns:
            Number of entries removed.
        """
        db = db or get_db()
        cutoff = (datetime.now() - timedelta(days=days)).strftime('%Y-%m-%d')

        with db.transaction():
            cursor = db.execute('DELETE FROM system_logs WHERE timestamp < ?', (cutoff,))
        return cursor.rowcount
