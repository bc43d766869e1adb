"""
SQLite persistence for flags, changes, metrics, predictions, anomalies and conversations.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator
from .config import get_db_path, ensure_db_directory

REQUIRED_TABLES = [
    'feature_flags',
    'flag_changes',
    'impact_metrics',
    'predictions',
    'anomalies',
    'conversations',
]


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    ensure_db_directory()
    conn = sqlite3.connect(get_db_path())
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_db():
    """Initialize the database with required tables."""
    with get_db() as conn:
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS feature_flags (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                enabled INTEGER DEFAULT 0,
                rollout_percentage REAL DEFAULT 0,
                target_environment TEXT DEFAULT 'development',
                created_at TEXT,
                updated_at TEXT,
                tags TEXT,
                owner TEXT
            )
        ''')

        # Append-only change log
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS flag_changes (
                id TEXT PRIMARY KEY,
                flag_id TEXT NOT NULL,
                flag_name TEXT,
                change_type TEXT NOT NULL,
                previous_value TEXT,
                new_value TEXT,
                changed_by TEXT,
                changed_at TEXT,
                environment TEXT
            )
        ''')

        # Append-only metrics series; id preserves insertion order
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS impact_metrics (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                flag_id TEXT NOT NULL,
                timestamp TEXT,
                error_rate REAL,
                latency_p50 REAL,
                latency_p99 REAL,
                request_count INTEGER,
                conversion_rate REAL,
                user_satisfaction_score REAL
            )
        ''')

        # One current prediction per flag
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS predictions (
                flag_id TEXT PRIMARY KEY,
                flag_name TEXT,
                risk_level TEXT,
                risk_score REAL,
                predicted_impact TEXT,
                recommendations TEXT,
                reasoning TEXT,
                confidence REAL,
                generated_at TEXT
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS anomalies (
                id TEXT PRIMARY KEY,
                flag_id TEXT NOT NULL,
                flag_name TEXT,
                type TEXT,
                severity TEXT,
                detected_at TEXT,
                metrics TEXT,
                message TEXT,
                resolved INTEGER DEFAULT 0
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS conversations (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT UNIQUE,
                session_id TEXT,
                role TEXT,
                content TEXT,
                timestamp TEXT,
                metadata TEXT
            )
        ''')

        # Create indexes for performance
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_metrics_flag ON impact_metrics(flag_id, timestamp DESC)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_changes_flag ON flag_changes(flag_id, changed_at DESC)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_anomalies_detected ON anomalies(resolved, detected_at DESC)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_conversations_session ON conversations(session_id)')

        conn.commit()


def health_check():
    """Check database health."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [row[0] for row in cursor.fetchall()]
            return all(table in table_names for table in REQUIRED_TABLES)
    except sqlite3.Error:
        return False
