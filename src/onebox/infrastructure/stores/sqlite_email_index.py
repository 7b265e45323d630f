"""SQLite implementation of the durable email index."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator, Mapping

from loguru import logger

from onebox.domain.errors import DuplicateRecordError, StorageError
from onebox.domain.models import Category, CategoryStats, EmailRecord, SearchQuery

_LIST_FIELDS = {"to", "cc", "references"}
_DATE_FIELDS = {"date", "indexed_at"}
# Record field -> column
_COLUMNS = {
    "account_id": "account_id",
    "folder": "folder",
    "subject": "subject",
    "body": "body",
    "html_body": "html_body",
    "sender": "sender",
    "to": "to_addrs",
    "cc": "cc_addrs",
    "date": "date",
    "category": "category",
    "indexed_at": "indexed_at",
    "message_id": "message_id",
    "in_reply_to": "in_reply_to",
    "references": "refs",
}


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _to_column(field: str, value: Any) -> Any:
    if field in _LIST_FIELDS:
        return json.dumps(list(value or []))
    if field in _DATE_FIELDS and isinstance(value, datetime):
        return _iso(value)
    if field == "category":
        return Category.parse(value).value
    return value


class SQLiteEmailIndex:
    """Durable index for email records backed by a single SQLite file."""

    def __init__(self, db_path: str | Path = "data/onebox.db"):
        self.db_path = Path(db_path)
        try:
            self._ensure_db()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Cannot open email index at {self.db_path}: {e}") from e

    def _ensure_db(self) -> None:
        """Create database and tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connection() as conn:
            conn.executescript("""
                PRAGMA journal_mode=WAL;

                CREATE TABLE IF NOT EXISTS emails (
                    id TEXT PRIMARY KEY,
                    account_id TEXT NOT NULL,
                    folder TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    body TEXT NOT NULL,
                    html_body TEXT,
                    sender TEXT NOT NULL,
                    to_addrs TEXT NOT NULL DEFAULT '[]',
                    cc_addrs TEXT NOT NULL DEFAULT '[]',
                    date TEXT NOT NULL,
                    category TEXT NOT NULL DEFAULT 'Uncategorized',
                    indexed_at TEXT NOT NULL,
                    message_id TEXT NOT NULL UNIQUE,
                    in_reply_to TEXT,
                    refs TEXT NOT NULL DEFAULT '[]'
                );

                CREATE INDEX IF NOT EXISTS idx_emails_account_date
                    ON emails(account_id, date);
                CREATE INDEX IF NOT EXISTS idx_emails_category
                    ON emails(category);
            """)
            logger.info(f"SQLite email index initialized at {self.db_path}")

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.IntegrityError as e:
            if "emails.message_id" in str(e):
                raise DuplicateRecordError(str(e)) from e
            raise StorageError(f"SQLite constraint violated: {e}") from e
        except sqlite3.Error as e:
            raise StorageError(f"SQLite error: {e}") from e

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> EmailRecord:
        return EmailRecord(
            id=row["id"],
            account_id=row["account_id"],
            folder=row["folder"],
            subject=row["subject"],
            body=row["body"],
            html_body=row["html_body"],
            sender=row["sender"],
            to=json.loads(row["to_addrs"]),
            cc=json.loads(row["cc_addrs"]),
            date=datetime.fromisoformat(row["date"]),
            category=Category.parse(row["category"]),
            indexed_at=datetime.fromisoformat(row["indexed_at"]),
            message_id=row["message_id"],
            in_reply_to=row["in_reply_to"],
            references=json.loads(row["refs"]),
        )

    # ----- sync implementations -----

    def _exists(self, message_id: str) -> bool:
        with self._connection() as conn:
            row = conn.execute("SELECT 1 FROM emails WHERE message_id = ? LIMIT 1", (message_id,)).fetchone()
        return row is not None

    def _insert(self, record: EmailRecord) -> None:
        data = record.model_dump()
        columns = ["id"] + [_COLUMNS[f] for f in _COLUMNS]
        values = [record.id] + [_to_column(f, data[f]) for f in _COLUMNS]
        placeholders = ",".join("?" * len(columns))
        with self._connection() as conn:
            conn.execute(f"INSERT INTO emails ({','.join(columns)}) VALUES ({placeholders})", values)
        logger.debug(f"Indexed email {record.id} ({record.message_id})")

    def _update(self, record_id: str, patch: Mapping[str, Any]) -> None:
        unknown = set(patch) - set(_COLUMNS)
        if unknown:
            raise StorageError(f"Unknown fields in patch: {sorted(unknown)}")
        if not patch:
            return
        assignments = ", ".join(f"{_COLUMNS[f]} = ?" for f in patch)
        values = [_to_column(f, v) for f, v in patch.items()]
        with self._connection() as conn:
            cursor = conn.execute(f"UPDATE emails SET {assignments} WHERE id = ?", (*values, record_id))
            if cursor.rowcount == 0:
                raise StorageError(f"No email with id {record_id}")

    def _get(self, record_id: str) -> EmailRecord | None:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM emails WHERE id = ?", (record_id,)).fetchone()
        return self._row_to_record(row) if row else None

    def _query(self, query: SearchQuery) -> list[EmailRecord]:
        clauses: list[str] = []
        params: list[Any] = []
        if query.q:
            like = f"%{_escape_like(query.q)}%"
            clauses.append(
                "(subject LIKE ? ESCAPE '\\' OR body LIKE ? ESCAPE '\\' OR sender LIKE ? ESCAPE '\\')"
            )
            params.extend([like, like, like])
        if query.account:
            clauses.append("account_id = ?")
            params.append(query.account)
        if query.folder:
            clauses.append("folder = ?")
            params.append(query.folder)
        if query.category:
            clauses.append("category = ?")
            params.append(query.category.value)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"SELECT * FROM emails {where} ORDER BY date DESC LIMIT ? OFFSET ?"
        with self._connection() as conn:
            rows = conn.execute(sql, (*params, query.size, query.offset)).fetchall()
        return [self._row_to_record(r) for r in rows]

    def _aggregate(self) -> CategoryStats:
        with self._connection() as conn:
            rows = conn.execute("SELECT category, COUNT(*) AS n FROM emails GROUP BY category").fetchall()
        by_category = {r["category"]: r["n"] for r in rows}
        return CategoryStats(total=sum(by_category.values()), by_category=by_category)

    def _ping(self) -> bool:
        with self._connection() as conn:
            conn.execute("SELECT 1")
        return True

    # ----- EmailIndex -----

    async def exists(self, message_id: str) -> bool:
        return await self._run(self._exists, message_id)

    async def insert(self, record: EmailRecord) -> None:
        await self._run(self._insert, record)

    async def update_category(self, record_id: str, category: Category) -> None:
        await self._run(self._update, record_id, {"category": category})

    async def update_fields(self, record_id: str, patch: Mapping[str, Any]) -> None:
        await self._run(self._update, record_id, dict(patch))

    async def get(self, record_id: str) -> EmailRecord | None:
        return await self._run(self._get, record_id)

    async def query(self, query: SearchQuery) -> list[EmailRecord]:
        return await self._run(self._query, query)

    async def aggregate_by_category(self) -> CategoryStats:
        return await self._run(self._aggregate)

    async def find_uncategorized(self, limit: int = 50) -> list[EmailRecord]:
        return await self.query(SearchQuery(category=Category.UNCATEGORIZED, size=limit))

    async def ping(self) -> bool:
        try:
            return await self._run(self._ping)
        except StorageError as e:
            logger.error(f"SQLite ping failed: {e}")
            return False
