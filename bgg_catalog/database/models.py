import logging
import os
import sqlite3

logger = logging.getLogger(__name__)

# Collections and whether their names are unique
COLLECTIONS = {
    "games": False,
    "accessories": False,
    "publishers": True,
    "designers": True,
    "artists": True,
    "categories": True,
    "mechanics": True,
    "types": True,
    "media": True,
}


def create_database(db_path="bgg_catalog.db"):
    """Create the database and one table per catalog collection."""

    # Ensure database directory exists (only if path contains directory)
    db_dir = os.path.dirname(str(db_path))
    if db_dir:  # Only create directory if there is one
        os.makedirs(db_dir, exist_ok=True)

    conn = sqlite3.connect(str(db_path))
    try:
        cursor = conn.cursor()

        for collection, unique_name in COLLECTIONS.items():
            # Indexed identity columns, everything else lives in the JSON document
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {collection} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    bgg_id INTEGER UNIQUE,
                    name TEXT{' UNIQUE' if unique_name else ''},
                    data TEXT NOT NULL DEFAULT '{{}}',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    last_updated TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            cursor.execute(f"CREATE INDEX IF NOT EXISTS idx_{collection}_name ON {collection} (name)")

            # Add missing columns to existing databases if they don't exist
            columns_to_add = [
                ("last_updated", "TIMESTAMP"),
            ]
            existing = {row[1] for row in cursor.execute(f"PRAGMA table_info({collection})")}
            for column_name, column_def in columns_to_add:
                if column_name not in existing:
                    cursor.execute(f"ALTER TABLE {collection} ADD COLUMN {column_name} {column_def}")
                    logger.info(f"Added {column_name} column to existing {collection} table")

        conn.commit()
    finally:
        conn.close()
    logger.info(f"Database ready at {db_path}")
