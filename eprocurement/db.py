import contextlib
import sqlite3
from typing import Iterable, List

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g


class TransactionRollbackError(RuntimeError):
    """Raised when a failed transaction could not be rolled back cleanly."""


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection
        self._depth = 0

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    @contextlib.contextmanager
    def transaction(self):
        # Nested blocks join the outermost transaction.
        if self._depth > 0:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self._depth = 1
        if self.backend == "postgres":
            self._conn.autocommit = False
        try:
            yield self
            self._conn.commit()
        except BaseException as exc:
            try:
                self._conn.rollback()
            except Exception as rollback_exc:
                raise TransactionRollbackError(str(rollback_exc)) from exc
            raise
        finally:
            self._depth = 0
            if self.backend == "postgres":
                self._conn.autocommit = True

    def commit(self):
        if self._depth > 0:
            return
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._conn.close()


def is_integrity_error(exc: BaseException) -> bool:
    if isinstance(exc, sqlite3.IntegrityError):
        return True
    if psycopg2 is not None and isinstance(exc, psycopg2.IntegrityError):
        return True
    return False


def is_unique_violation(exc: BaseException, table: str) -> bool:
    """True only for a UNIQUE violation raised by the given table."""
    if isinstance(exc, sqlite3.IntegrityError):
        message = str(exc)
        return message.startswith("UNIQUE constraint failed") and f" {table}." in message
    if psycopg2 is not None and isinstance(exc, psycopg2.IntegrityError):
        diag = getattr(exc, "diag", None)
        return getattr(exc, "pgcode", None) == "23505" and getattr(diag, "table_name", None) == table
    return False


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 no instalado.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        g.db = connect_database(current_app.config["DB_PATH"])
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


_COLUMN_TYPES = {
    "sqlite": {"id_pk": "INTEGER PRIMARY KEY AUTOINCREMENT", "money": "REAL"},
    "postgres": {"id_pk": "SERIAL PRIMARY KEY", "money": "DOUBLE PRECISION"},
}


SCHEMA_TABLES = [
    "users_profile",
    "suppliers",
    "requests",
    "request_invitations",
    "proposals",
    "proposal_items",
    "proposal_attachments",
    "round_item_feedback",
    "round_suggestions",
    "award_selections",
    "awards",
    "notifications",
]


SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS users_profile (
        id {id_pk},
        email TEXT NOT NULL UNIQUE,
        full_name TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'creator' CHECK (
            role IN ('creator','approver','supplier','admin')
        ),
        password_hash TEXT,
        phone TEXT,
        area TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS suppliers (
        id {id_pk},
        name TEXT NOT NULL,
        contact_name TEXT,
        contact_email TEXT,
        contact_phone TEXT,
        contract_fee_percentage {money} NOT NULL DEFAULT 0,
        is_active INTEGER NOT NULL DEFAULT 1,
        total_invitations INTEGER NOT NULL DEFAULT 0,
        total_awards INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS requests (
        id {id_pk},
        request_number TEXT UNIQUE,
        creator_id INTEGER NOT NULL REFERENCES users_profile(id),
        event_type TEXT,
        title TEXT,
        description TEXT,
        internal_budget {money},
        status TEXT NOT NULL DEFAULT 'draft' CHECK (
            status IN ('draft','pending_approval','approved','active','evaluation','awarded','cancelled')
        ),
        max_rounds INTEGER NOT NULL DEFAULT 2,
        current_round INTEGER NOT NULL DEFAULT 1,
        round_status TEXT,
        round_deadline TEXT,
        approved_by INTEGER REFERENCES users_profile(id),
        approved_at TEXT,
        approval_comments TEXT,
        cancel_reason TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        CHECK (current_round >= 1 AND current_round <= max_rounds)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS request_invitations (
        id {id_pk},
        request_id INTEGER NOT NULL REFERENCES requests(id),
        supplier_id INTEGER NOT NULL REFERENCES suppliers(id),
        invited_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        notified_at TEXT,
        UNIQUE (request_id, supplier_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS proposals (
        id {id_pk},
        request_id INTEGER NOT NULL REFERENCES requests(id),
        supplier_id INTEGER NOT NULL REFERENCES suppliers(id),
        round_number INTEGER NOT NULL DEFAULT 1,
        subtotal {money} NOT NULL DEFAULT 0,
        fee_amount {money} NOT NULL DEFAULT 0,
        total_amount {money} NOT NULL DEFAULT 0,
        contextual_info TEXT,
        status TEXT NOT NULL DEFAULT 'draft' CHECK (
            status IN ('draft','submitted','under_review','adjustment_requested','finalist','awarded','not_selected')
        ),
        submitted_at TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (request_id, supplier_id, round_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS proposal_items (
        id {id_pk},
        proposal_id INTEGER NOT NULL REFERENCES proposals(id),
        item_name TEXT NOT NULL,
        description TEXT,
        quantity {money} NOT NULL DEFAULT 1,
        unit_price {money} NOT NULL DEFAULT 0,
        total_price {money} NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS proposal_attachments (
        id {id_pk},
        proposal_id INTEGER NOT NULL REFERENCES proposals(id),
        file_name TEXT NOT NULL,
        file_path TEXT NOT NULL UNIQUE,
        file_size INTEGER NOT NULL DEFAULT 0,
        mime_type TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS round_item_feedback (
        id {id_pk},
        proposal_id INTEGER NOT NULL REFERENCES proposals(id),
        proposal_item_id INTEGER NOT NULL REFERENCES proposal_items(id),
        round_number INTEGER NOT NULL,
        action TEXT NOT NULL CHECK (action IN ('modify','delete')),
        feedback_text TEXT NOT NULL,
        suggested_price {money},
        created_by INTEGER REFERENCES users_profile(id),
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS round_suggestions (
        id {id_pk},
        request_id INTEGER NOT NULL REFERENCES requests(id),
        round_number INTEGER NOT NULL,
        item_name TEXT NOT NULL,
        description TEXT NOT NULL,
        suggested_quantity {money} NOT NULL DEFAULT 1,
        notes TEXT,
        created_by INTEGER REFERENCES users_profile(id),
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS award_selections (
        id {id_pk},
        request_id INTEGER NOT NULL UNIQUE REFERENCES requests(id),
        selected_proposal_id INTEGER NOT NULL REFERENCES proposals(id),
        selected_supplier_id INTEGER NOT NULL REFERENCES suppliers(id),
        selected_amount {money} NOT NULL,
        is_lowest_price INTEGER NOT NULL DEFAULT 0,
        creator_justification TEXT,
        selected_by INTEGER REFERENCES users_profile(id),
        selected_at TEXT,
        status TEXT NOT NULL DEFAULT 'pending_approval' CHECK (
            status IN ('pending_approval','approved','rejected')
        ),
        approved_by INTEGER REFERENCES users_profile(id),
        approved_at TEXT,
        approval_notes TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS awards (
        id {id_pk},
        award_selection_id INTEGER NOT NULL UNIQUE REFERENCES award_selections(id),
        request_id INTEGER NOT NULL REFERENCES requests(id),
        winning_proposal_id INTEGER NOT NULL REFERENCES proposals(id),
        winning_supplier_id INTEGER NOT NULL REFERENCES suppliers(id),
        awarded_amount {money} NOT NULL,
        is_lowest_price INTEGER NOT NULL DEFAULT 0,
        justification TEXT,
        awarded_by INTEGER REFERENCES users_profile(id),
        awarded_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id {id_pk},
        user_id INTEGER NOT NULL REFERENCES users_profile(id),
        title TEXT NOT NULL,
        message TEXT NOT NULL,
        type TEXT NOT NULL,
        related_id INTEGER,
        is_read INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_requests_status ON requests (status)",
    "CREATE INDEX IF NOT EXISTS idx_requests_creator ON requests (creator_id)",
    "CREATE INDEX IF NOT EXISTS idx_invitations_supplier ON request_invitations (supplier_id)",
    "CREATE INDEX IF NOT EXISTS idx_proposals_request_round ON proposals (request_id, round_number)",
    "CREATE INDEX IF NOT EXISTS idx_proposal_items_proposal ON proposal_items (proposal_id)",
    "CREATE INDEX IF NOT EXISTS idx_feedback_proposal ON round_item_feedback (proposal_id, round_number)",
    "CREATE INDEX IF NOT EXISTS idx_suggestions_request ON round_suggestions (request_id, round_number)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications (user_id, is_read)",
]


def schema_statements(backend: str) -> List[str]:
    types = _COLUMN_TYPES["postgres" if backend == "postgres" else "sqlite"]
    return [statement.format(**types) for statement in SCHEMA_STATEMENTS]


def create_schema(db) -> None:
    for statement in schema_statements(db.backend):
        db.execute(statement)


def drop_schema(db) -> None:
    for table in reversed(SCHEMA_TABLES):
        db.execute(f"DROP TABLE IF EXISTS {table}")


def init_db():
    db = get_db()
    create_schema(db)
    db.commit()


def table_exists(db: Database, table: str) -> bool:
    if db.backend == "postgres":
        row = db.execute(
            """
            SELECT 1
            FROM information_schema.tables
            WHERE table_schema = 'public' AND table_name = ?
            """,
            (table,),
        ).fetchone()
        return row is not None

    row = db.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
        (table,),
    ).fetchone()
    return row is not None
