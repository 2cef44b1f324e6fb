import logging

from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy import text, inspect
from .config import DATABASE_URL

logger = logging.getLogger(__name__)

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, echo=False, pool_pre_ping=True, connect_args=_connect_args)

def init_db():
    from .models import Disclosure, ShareGrant, LedgerEntry
    SQLModel.metadata.create_all(engine)
    _ensure_ledger_correlation_column()
    _ensure_unique_index("share_grant", "uq_share_grant_access_token", "access_token")
    _ensure_unique_index("disclosure", "uq_disclosure_property", "property_id")

def get_session():
    with Session(engine) as session:
        yield session

def _ensure_ledger_correlation_column():
    inspector = inspect(engine)
    try:
        columns = [col["name"] for col in inspector.get_columns("ledger_entry")]
    except Exception:
        return
    if "correlation_id" in columns:
        return
    with engine.begin() as conn:
        conn.execute(text("ALTER TABLE ledger_entry ADD COLUMN correlation_id INTEGER"))
        conn.execute(text(
            "CREATE INDEX IF NOT EXISTS ix_ledger_entry_correlation_id ON ledger_entry(correlation_id)"
        ))


def _ensure_unique_index(table: str, index_name: str, column: str):
    inspector = inspect(engine)
    try:
        indexes = inspector.get_indexes(table)
    except Exception:
        return
    if any(idx.get("name") == index_name for idx in indexes):
        return
    if any(idx.get("unique") and idx.get("column_names") == [column] for idx in indexes):
        return
    with engine.begin() as conn:
        duplicates = conn.execute(
            text(f"SELECT {column} FROM {table} GROUP BY {column} HAVING COUNT(*) > 1")
        ).fetchall()
        if duplicates:
            values = ", ".join(str(row[0]) for row in duplicates if row[0])
            logger.warning(
                "duplicate %s.%s values detected; resolve before enforcing uniqueness: %s",
                table, column, values,
            )
            return
        conn.execute(text(f"CREATE UNIQUE INDEX IF NOT EXISTS {index_name} ON {table}({column})"))
