"""Simple migration system for SQLite."""

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def get_applied_migrations(conn: sqlite3.Connection) -> set:
    """Get list of already-applied migrations."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)
    conn.commit()
    cursor = conn.execute("SELECT version FROM schema_migrations")
    return {row[0] for row in cursor.fetchall()}


def pending_migrations(db_path: str) -> list:
    """Names of migrations not yet applied."""
    conn = sqlite3.connect(db_path)
    try:
        applied = get_applied_migrations(conn)
    finally:
        conn.close()
    return [f.stem for f in sorted(MIGRATIONS_DIR.glob("*.sql")) if f.stem not in applied]


def run_migrations(db_path: str) -> int:
    """Run all pending migrations, returning how many were applied."""
    conn = sqlite3.connect(db_path)
    try:
        applied = get_applied_migrations(conn)

        applied_count = 0
        for migration_file in sorted(MIGRATIONS_DIR.glob("*.sql")):
            version = migration_file.stem
            if version in applied:
                continue

            logger.info(f"Applying migration: {version}")
            sql = migration_file.read_text()
            # Strip comment-only lines, then split on semicolons
            lines = [
                line for line in sql.splitlines()
                if line.strip() and not line.strip().startswith("--")
            ]
            clean_sql = "\n".join(lines)
            for statement in clean_sql.split(";"):
                statement = statement.strip()
                if not statement:
                    continue
                try:
                    conn.execute(statement)
                except sqlite3.OperationalError as e:
                    # Re-running an ADD COLUMN is harmless
                    if "duplicate column" not in str(e).lower():
                        raise
            conn.execute(
                "INSERT INTO schema_migrations (version) VALUES (?)",
                (version,),
            )
            conn.commit()
            applied_count += 1
    finally:
        conn.close()

    return applied_count
