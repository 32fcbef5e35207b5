from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from config import settings


engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False},
    echo=False,
)


# Enable WAL mode for better concurrent read performance
@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def run_startup_migrations() -> None:
    """Apply lightweight schema fixes for existing SQLite databases."""
    inspector = inspect(engine)

    def _table_columns(table_name: str) -> set[str]:
        try:
            return {col["name"] for col in inspector.get_columns(table_name)}
        except Exception:
            return set()

    template_day_columns = _table_columns("template_days")
    calendar_entry_columns = _table_columns("calendar_entries")
    calendar_item_columns = _table_columns("calendar_items")
    tracking_columns = _table_columns("tracking_records")
    if not template_day_columns and not calendar_entry_columns and not tracking_columns:
        # Tables may not exist yet on first boot.
        return

    alter_statements: list[str] = []
    if calendar_entry_columns and "notes" not in calendar_entry_columns:
        alter_statements.append("ALTER TABLE calendar_entries ADD COLUMN notes TEXT")
    if calendar_item_columns and "duration_text" not in calendar_item_columns:
        alter_statements.append("ALTER TABLE calendar_items ADD COLUMN duration_text TEXT")
    if tracking_columns:
        if "rating" not in tracking_columns:
            alter_statements.append("ALTER TABLE tracking_records ADD COLUMN rating INTEGER")
        if "media" not in tracking_columns:
            alter_statements.append("ALTER TABLE tracking_records ADD COLUMN media TEXT")

    with engine.begin() as conn:
        for stmt in alter_statements:
            conn.execute(text(stmt))

        if template_day_columns:
            # Keep the newest row per weekday before enforcing uniqueness.
            conn.execute(text(
                """
                DELETE FROM template_days
                WHERE id NOT IN (
                    SELECT MAX(id)
                    FROM template_days
                    GROUP BY week_template_id, day_of_week
                )
                """
            ))
            conn.execute(text(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_template_days_unique_weekday
                ON template_days (week_template_id, day_of_week)
                """
            ))

        if calendar_entry_columns:
            # Older databases may hold duplicate dated rows; the earliest one wins
            # and ledger rows on the losers are moved onto it.
            if tracking_columns:
                conn.execute(text(
                    """
                    UPDATE tracking_records
                    SET calendar_entry_id = (
                        SELECT MIN(keeper.id)
                        FROM calendar_entries keeper
                        JOIN calendar_entries dup
                          ON keeper.subject_id = dup.subject_id
                         AND keeper.domain = dup.domain
                         AND keeper.entry_date = dup.entry_date
                        WHERE dup.id = tracking_records.calendar_entry_id
                    )
                    WHERE calendar_entry_id IN (SELECT id FROM calendar_entries)
                    """
                ))
            conn.execute(text(
                """
                DELETE FROM calendar_entries
                WHERE id NOT IN (
                    SELECT MIN(id)
                    FROM calendar_entries
                    GROUP BY subject_id, domain, entry_date
                )
                """
            ))
            conn.execute(text(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_calendar_entries_unique_date
                ON calendar_entries (subject_id, domain, entry_date)
                """
            ))

        if tracking_columns:
            conn.execute(text(
                """
                DELETE FROM tracking_records
                WHERE id NOT IN (
                    SELECT MAX(id)
                    FROM tracking_records
                    GROUP BY record_key
                )
                """
            ))
            conn.execute(text(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_tracking_records_key
                ON tracking_records (record_key)
                """
            ))
            conn.execute(text(
                """
                CREATE INDEX IF NOT EXISTS idx_tracking_records_subject_date
                ON tracking_records (subject_id, domain, tracked_date)
                """
            ))
