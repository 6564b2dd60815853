"""
Document Store Module.
Key/value storage behind the sync endpoint, one store per document.

Classes:
    DocumentStore: Protocol shared by all backends.
    InMemoryStore: Process-lifetime dictionary storage.
    SQLiteStore: SQLite-backed storage, one database per document.
    StoreRegistry: Opens and caches stores by document name.
"""

import os
import re
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Protocol

from treeserve.core.logging_config import get_logger
from treeserve.webserver.config import BackendKind

logger = get_logger(__name__)

DEFAULT_DOCNAME = "default"
_DOCNAME_RE = re.compile(r"^[A-Za-z0-9_.\-]{1,128}$")


class InvalidDocnameError(ValueError):
    """Raised when a client asks for a document name that is not allowed."""


def validate_docname(docname: Any) -> str:
    """
    Normalizes a client supplied document name.

    Args:
        docname: Raw document name from a client message, empty or None
            for the default document.

    Returns:
        str: The document name to use.

    Raises:
        InvalidDocnameError: If the name is not a string or could escape
            the storage folder.
    """
    if docname is None or docname == "":
        return DEFAULT_DOCNAME
    if (
        not isinstance(docname, str)
        or not _DOCNAME_RE.match(docname)
        or docname.startswith(".")
    ):
        raise InvalidDocnameError(f"Invalid document name: {docname!r}")
    return docname


class DocumentStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def close(self) -> None: ...


class InMemoryStore:
    """Stores values in a dict; contents are lost when the process exits."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def close(self) -> None:
        pass


class SQLiteStore:
    """
    Handles the raw interactions with one document's SQLite database.
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        """
        Args:
            db_path: Path to the .sqlite database file.
                     Defaults to :memory: for testing.
        """
        self.db_path = db_path
        self._connection: Optional[sqlite3.Connection] = None
        logger.debug(f"SQLiteStore initialized with path: {self.db_path}")

    def connect(self) -> sqlite3.Connection:
        """Establishes connection to the database, reusing an open one."""
        if self._connection is not None:
            return self._connection
        try:
            connection = sqlite3.connect(self.db_path, check_same_thread=False)
            if self.db_path != ":memory:":
                connection.execute("PRAGMA journal_mode=WAL;")
            self._init_schema(connection)
        except sqlite3.Error as e:
            logger.critical(f"Failed to connect to database {self.db_path}: {e}")
            raise
        self._connection = connection
        logger.debug("Database connection established.")
        return connection

    def close(self) -> None:
        """Closes the database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None
            logger.debug("Database connection closed.")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Safe context manager for transactions."""
        connection = self.connect()
        try:
            yield connection
            connection.commit()
        except Exception as e:
            connection.rollback()
            logger.error(f"Transaction rolled back due to error: {e}")
            raise

    def _init_schema(self, connection: sqlite3.Connection) -> None:
        connection.execute(
            "CREATE TABLE IF NOT EXISTS kv_store (id TEXT PRIMARY KEY, value TEXT)"
        )
        connection.commit()

    def get(self, key: str) -> Optional[str]:
        row = (
            self.connect()
            .execute("SELECT value FROM kv_store WHERE id = ?", (key,))
            .fetchone()
        )
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO kv_store (id, value) VALUES (?, ?)",
                (key, value),
            )


class StoreRegistry:
    """
    Opens document stores on demand and keeps them for the process lifetime.
    """

    def __init__(self, kind: BackendKind, folder: Optional[str] = None) -> None:
        self.kind = kind
        self.folder = folder
        self._stores: Dict[str, DocumentStore] = {}
        if kind is BackendKind.SQLITE and folder:
            os.makedirs(folder, exist_ok=True)

    def get_store(self, docname: str) -> DocumentStore:
        """
        Returns the store for a document, creating it on first use.

        Args:
            docname: A document name already checked by validate_docname.
        """
        store = self._stores.get(docname)
        if store is not None:
            return store

        if self.kind is BackendKind.SQLITE:
            db_path = (
                os.path.join(self.folder, f"{docname}.sqlite")
                if self.folder
                else ":memory:"
            )
            sqlite_store = SQLiteStore(db_path)
            sqlite_store.connect()
            store = sqlite_store
        else:
            store = InMemoryStore()

        logger.info(f"Opened {self.kind.value} store for document {docname!r}")
        self._stores[docname] = store
        return store

    def close(self) -> None:
        for store in self._stores.values():
            store.close()
        self._stores.clear()
