import sqlite3
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from core.config import get_settings
from core.exceptions import PersistenceError
from core.logger import setup_logger
from core.schema import Category

logger = setup_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    first_name TEXT
);

CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    ai_notes TEXT
);

CREATE TABLE IF NOT EXISTS partnerships (
    user1_id INTEGER NOT NULL,
    user2_id INTEGER NOT NULL,
    PRIMARY KEY (user1_id, user2_id),
    FOREIGN KEY(user1_id) REFERENCES users(id) ON DELETE CASCADE,
    FOREIGN KEY(user2_id) REFERENCES users(id) ON DELETE CASCADE,
    CHECK (user1_id < user2_id)
);

CREATE TABLE IF NOT EXISTS spendings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    amount REAL NOT NULL,
    description TEXT,
    category INTEGER NOT NULL,
    made_by INTEGER NOT NULL,
    spending_date TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY(category) REFERENCES categories(id) ON UPDATE CASCADE ON DELETE RESTRICT,
    FOREIGN KEY(made_by) REFERENCES users(id) ON UPDATE CASCADE ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS user_spendings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    spending_id INTEGER NOT NULL UNIQUE,
    buyer INTEGER NOT NULL,
    shared_with INTEGER,
    shared_user_takes_all BOOLEAN NOT NULL DEFAULT 0,
    settled_at TEXT DEFAULT NULL,
    FOREIGN KEY(spending_id) REFERENCES spendings(id) ON UPDATE CASCADE ON DELETE CASCADE,
    FOREIGN KEY(buyer) REFERENCES users(id) ON UPDATE CASCADE ON DELETE CASCADE,
    FOREIGN KEY(shared_with) REFERENCES users(id) ON UPDATE CASCADE ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS ai_categorization_jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    status TEXT NOT NULL DEFAULT 'pending',
    prompt TEXT NOT NULL,
    buyer INTEGER NOT NULL,
    shared_with INTEGER,
    total_amount REAL NOT NULL,
    is_finished BOOLEAN NOT NULL DEFAULT 0,
    is_ambiguity_flagged BOOLEAN NOT NULL DEFAULT 0,
    ambiguity_flag_reason TEXT,
    error_message TEXT,
    pre_settled BOOLEAN NOT NULL DEFAULT 0,
    transaction_date TEXT,
    created_at TEXT NOT NULL,
    status_updated_at TEXT NOT NULL,
    FOREIGN KEY(buyer) REFERENCES users(id) ON UPDATE CASCADE ON DELETE CASCADE,
    FOREIGN KEY(shared_with) REFERENCES users(id) ON UPDATE CASCADE ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS ai_categorized_spendings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    spending_id INTEGER NOT NULL UNIQUE,
    job_id INTEGER NOT NULL,
    FOREIGN KEY(spending_id) REFERENCES spendings(id) ON UPDATE CASCADE ON DELETE CASCADE,
    FOREIGN KEY(job_id) REFERENCES ai_categorization_jobs(id) ON UPDATE CASCADE ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_jobs_status ON ai_categorization_jobs(status);
CREATE INDEX IF NOT EXISTS idx_categorized_job ON ai_categorized_spendings(job_id);

-- Removing a job removes the spendings it produced; links and user_spendings follow by cascade.
CREATE TRIGGER IF NOT EXISTS trg_jobs_delete_spendings
BEFORE DELETE ON ai_categorization_jobs
BEGIN
    DELETE FROM spendings WHERE id IN (
        SELECT spending_id FROM ai_categorized_spendings WHERE job_id = OLD.id
    );
END;
"""

DEFAULT_CATEGORIES = [
    ("Groceries", "if the buyer mentions food or dinner bought without further explanation, "
                  "assume Groceries rather than Eating Out"),
    ("Transport", None),
    ("Eating Out", None),
    ("Entertainment (general)", None),
    ("Travel, Events & Vacation", None),
    ("Utilities", None),
    ("Technology", "e.g. phone, computer, etc."),
    ("Subscription (general)", None),
    ("Coffee", None),
    ("Alcohol", None),
    ("Nutritional drink", "e.g. Nutridrink, Fresubin, etc."),
    ("Rent/Mortgage", None),
    ("Shopping (general)", None),
    ("Clothes", None),
    ("Education", None),
    ("Health", None),
    ("Energy Drinks", None),
    ("Other", None),
]


def utc_now() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


class Database:
    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or get_settings().database_path

    def get_connection(self) -> sqlite3.Connection:
        """Create a database connection."""
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_db(self, seed_categories: bool = True) -> None:
        """Initialize database tables and seed the default category catalog."""
        conn = self.get_connection()

        try:
            conn.executescript(SCHEMA)
            if seed_categories:
                conn.executemany(
                    "INSERT OR IGNORE INTO categories (name, ai_notes) VALUES (?, ?)",
                    DEFAULT_CATEGORIES
                )
            conn.commit()
            logger.info(f"Database initialized successfully at {self.db_path}")
        except sqlite3.Error as e:
            logger.error(f"Database initialization failed: {e}")
            raise PersistenceError("Database initialization failed", details={"error": str(e)})
        finally:
            conn.close()

    # Category catalog

    def add_category(self, name: str, ai_notes: Optional[str] = None) -> int:
        """Add a category to the catalog, returning its id."""
        conn = self.get_connection()

        try:
            conn.execute(
                "INSERT OR IGNORE INTO categories (name, ai_notes) VALUES (?, ?)",
                (name, ai_notes)
            )
            row = conn.execute("SELECT id FROM categories WHERE name = ?", (name,)).fetchone()
            conn.commit()
            return row["id"]
        except sqlite3.Error as e:
            logger.error(f"Failed to add category {name}: {e}")
            raise PersistenceError(f"Failed to add category {name}", details={"error": str(e)})
        finally:
            conn.close()

    def list_categories(self) -> List[Category]:
        """Get the full category catalog ordered by name."""
        conn = self.get_connection()

        try:
            rows = conn.execute("SELECT id, name, ai_notes FROM categories ORDER BY name").fetchall()
            return [Category(id=row["id"], name=row["name"], ai_notes=row["ai_notes"]) for row in rows]
        except sqlite3.Error as e:
            logger.error(f"Failed to list categories: {e}")
            raise PersistenceError("Failed to list categories", details={"error": str(e)})
        finally:
            conn.close()

    def resolve_category_ids(self, names: Iterable[str]) -> Dict[str, int]:
        """
        Resolve category names to ids in a single query.

        Names that are not in the catalog are absent from the returned mapping.

        Args:
            names: Category names to resolve

        Returns:
            Mapping of name -> category id
        """
        unique_names = sorted({name for name in names if name})
        if not unique_names:
            return {}

        placeholders = ",".join("?" for _ in unique_names)
        conn = self.get_connection()

        try:
            rows = conn.execute(
                f"SELECT id, name FROM categories WHERE name IN ({placeholders})",
                unique_names
            ).fetchall()
            return {row["name"]: row["id"] for row in rows}
        except sqlite3.Error as e:
            logger.error(f"Failed to resolve categories {unique_names}: {e}")
            raise PersistenceError("Failed to resolve categories", details={"error": str(e)})
        finally:
            conn.close()

    # Users and partnerships

    def add_user(self, username: str, first_name: Optional[str] = None) -> int:
        """Create a user and return its id."""
        conn = self.get_connection()

        try:
            cursor = conn.execute(
                "INSERT INTO users (username, first_name) VALUES (?, ?)",
                (username, first_name)
            )
            conn.commit()
            return cursor.lastrowid
        except sqlite3.Error as e:
            logger.error(f"Failed to add user {username}: {e}")
            raise PersistenceError(f"Failed to add user {username}", details={"error": str(e)})
        finally:
            conn.close()

    def link_partners(self, user_a: int, user_b: int) -> None:
        """Register two users as settlement partners."""
        low, high = sorted((user_a, user_b))
        conn = self.get_connection()

        try:
            conn.execute(
                "INSERT OR IGNORE INTO partnerships (user1_id, user2_id) VALUES (?, ?)",
                (low, high)
            )
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to link partners {low} and {high}: {e}")
            raise PersistenceError("Failed to link partners", details={"error": str(e)})
        finally:
            conn.close()

    def get_user_name(self, user_id: int) -> Optional[str]:
        """
        Get a user's first name.

        Returns:
            The first name (username when no first name is stored),
            or None if the user does not exist
        """
        conn = self.get_connection()

        try:
            row = conn.execute(
                "SELECT username, first_name FROM users WHERE id = ?", (user_id,)
            ).fetchone()
            if row is None:
                return None
            return row["first_name"] or row["username"]
        except sqlite3.Error as e:
            logger.error(f"Failed to get user {user_id}: {e}")
            raise PersistenceError(f"Failed to get user {user_id}", details={"error": str(e)})
        finally:
            conn.close()

    def get_partner_id(self, user_id: int) -> Optional[int]:
        """Get the settlement partner of a user, if any."""
        conn = self.get_connection()

        try:
            row = conn.execute(
                """
                SELECT user2_id AS partner_id FROM partnerships WHERE user1_id = ?
                UNION
                SELECT user1_id AS partner_id FROM partnerships WHERE user2_id = ?
                """,
                (user_id, user_id)
            ).fetchone()
            return row["partner_id"] if row else None
        except sqlite3.Error as e:
            logger.error(f"Failed to get partner of user {user_id}: {e}")
            raise PersistenceError(f"Failed to get partner of user {user_id}", details={"error": str(e)})
        finally:
            conn.close()


# Global DB instance
_db: Optional[Database] = None


def get_db() -> Database:
    global _db
    if _db is None:
        _db = Database()
    return _db


def reset_db() -> None:
    """Reset database singleton (useful for testing)."""
    global _db
    _db = None
