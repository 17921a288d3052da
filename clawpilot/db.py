"""SQLite persistence layer."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from clawpilot.models import (
    STATUS_DONE,
    UNSETTLED_STATUSES,
    Conversation,
    PersistedMessage,
    ScheduledTask,
)

SCHEMA_VERSION = 1


class Database:
    """Small SQLite wrapper with explicit schema management."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate schema."""

        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                self._create_schema(conn)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row["version"] != SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {row['version']} (expected {SCHEMA_VERSION})"
                )

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS conversations (
                conversation_key TEXT PRIMARY KEY,
                display_name TEXT,
                is_group INTEGER NOT NULL DEFAULT 0,
                system_prompt TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_key TEXT NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                transport_message_id TEXT,
                sender_name TEXT,
                sender_id TEXT,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY(conversation_key) REFERENCES conversations(conversation_key)
            );

            CREATE INDEX IF NOT EXISTS ix_messages_conversation
                ON messages(conversation_key, id);

            CREATE TABLE IF NOT EXISTS scheduled_tasks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_key TEXT NOT NULL,
                description TEXT NOT NULL,
                cron_expression TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                last_run_at TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS tool_executions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_key TEXT NOT NULL,
                tool_name TEXT NOT NULL,
                input_json TEXT NOT NULL,
                output_json TEXT NOT NULL,
                succeeded INTEGER NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS skill_states (
                skill_name TEXT PRIMARY KEY,
                enabled INTEGER NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS memory_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_key TEXT NOT NULL,
                text TEXT NOT NULL,
                embedding_json TEXT NOT NULL,
                created_at TEXT NOT NULL
            );
            """
        )

    def ping(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    # -- conversations -----------------------------------------------------

    def get_or_create_conversation(
        self,
        conversation_key: str,
        display_name: str | None = None,
        is_group: bool = False,
    ) -> Conversation:
        now = _utc_now_iso()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO conversations(conversation_key, display_name, is_group, created_at, updated_at)
                VALUES(?, ?, ?, ?, ?)
                ON CONFLICT(conversation_key) DO NOTHING
                """,
                (conversation_key, display_name, int(is_group), now, now),
            )
            row = conn.execute(
                "SELECT * FROM conversations WHERE conversation_key = ?", (conversation_key,)
            ).fetchone()
        return Conversation(
            key=row["conversation_key"],
            display_name=row["display_name"],
            is_group=bool(row["is_group"]),
            system_prompt=row["system_prompt"],
        )

    def set_conversation_prompt(self, conversation_key: str, system_prompt: str | None) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE conversations SET system_prompt = ?, updated_at = ? WHERE conversation_key = ?",
                (system_prompt, _utc_now_iso(), conversation_key),
            )

    def touch_conversation(self, conversation_key: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE conversations SET updated_at = ? WHERE conversation_key = ?",
                (_utc_now_iso(), conversation_key),
            )

    # -- messages ----------------------------------------------------------

    def add_message(self, message: PersistedMessage) -> int:
        created_at = message.created_at or datetime.now(timezone.utc)
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO messages(
                    conversation_key, role, content, transport_message_id,
                    sender_name, sender_id, status, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message.conversation_key,
                    message.role,
                    message.content,
                    message.transport_message_id,
                    message.sender_name,
                    message.sender_id,
                    message.status,
                    created_at.isoformat(),
                ),
            )
            message_id = int(cur.lastrowid)
        message.id = message_id
        message.created_at = created_at
        return message_id

    def update_message_status(self, message_id: int, status: str) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE messages SET status = ? WHERE id = ?", (status, message_id))

    def load_recent_messages(self, conversation_key: str, limit: int) -> list[PersistedMessage]:
        """Return the newest settled messages of a conversation, oldest first."""

        placeholders = ", ".join("?" for _ in UNSETTLED_STATUSES)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT *
                FROM messages
                WHERE conversation_key = ? AND status NOT IN ({placeholders})
                ORDER BY id DESC
                LIMIT ?
                """,
                (conversation_key, *UNSETTLED_STATUSES, limit),
            ).fetchall()
        return [_to_persisted_message(row) for row in reversed(rows)]

    def get_message(self, message_id: int) -> PersistedMessage | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
        return _to_persisted_message(row) if row else None

    def search_messages(self, keyword: str, limit: int = 10) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT role, COALESCE(sender_name, 'System') AS sender, content, created_at
                FROM messages
                WHERE content LIKE ? AND status = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                (f"%{keyword}%", STATUS_DONE, limit),
            ).fetchall()
        return [dict(row) for row in rows]

    def clear_history(self, conversation_key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM messages WHERE conversation_key = ?", (conversation_key,))
            conn.execute("DELETE FROM memory_records WHERE conversation_key = ?", (conversation_key,))

    # -- scheduled tasks ---------------------------------------------------

    def create_scheduled_task(self, conversation_key: str, description: str, cron_expression: str) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO scheduled_tasks(conversation_key, description, cron_expression, is_active, created_at)
                VALUES (?, ?, ?, 1, ?)
                """,
                (conversation_key, description, cron_expression, _utc_now_iso()),
            )
            return int(cur.lastrowid)

    def list_tasks(self, conversation_key: str, active_only: bool = True) -> list[ScheduledTask]:
        query = "SELECT * FROM scheduled_tasks WHERE conversation_key = ?"
        if active_only:
            query += " AND is_active = 1"
        with self._connect() as conn:
            rows = conn.execute(query + " ORDER BY id", (conversation_key,)).fetchall()
        return [_to_scheduled_task(row) for row in rows]

    def load_active_tasks(self) -> list[ScheduledTask]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM scheduled_tasks WHERE is_active = 1 ORDER BY id").fetchall()
        return [_to_scheduled_task(row) for row in rows]

    def set_task_active(self, conversation_key: str, task_id: int, active: bool) -> bool:
        """Flip a task's active flag; False when no task in the opposite state matched."""

        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE scheduled_tasks SET is_active = ?
                WHERE id = ? AND conversation_key = ? AND is_active = ?
                """,
                (int(active), task_id, conversation_key, int(not active)),
            )
            return cur.rowcount > 0

    def delete_task(self, conversation_key: str, task_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM scheduled_tasks WHERE id = ? AND conversation_key = ?",
                (task_id, conversation_key),
            )
            return cur.rowcount > 0

    def update_task_last_run(self, task_id: int, last_run_at: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE scheduled_tasks SET last_run_at = ? WHERE id = ?",
                (last_run_at.astimezone(timezone.utc).isoformat(), task_id),
            )

    # -- tool audit --------------------------------------------------------

    def log_tool_execution(
        self,
        conversation_key: str,
        tool_name: str,
        tool_input: dict[str, Any],
        tool_output: Any,
        succeeded: bool,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tool_executions(conversation_key, tool_name, input_json, output_json, succeeded, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    conversation_key,
                    tool_name,
                    json.dumps(tool_input),
                    json.dumps(tool_output, default=str),
                    int(succeeded),
                    _utc_now_iso(),
                ),
            )

    def list_tool_executions(self, conversation_key: str) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT tool_name, input_json, succeeded FROM tool_executions WHERE conversation_key = ? ORDER BY id",
                (conversation_key,),
            ).fetchall()
        return [dict(row) for row in rows]

    # -- skills ------------------------------------------------------------

    def get_skill_states(self) -> dict[str, bool]:
        with self._connect() as conn:
            rows = conn.execute("SELECT skill_name, enabled FROM skill_states").fetchall()
        return {row["skill_name"].lower(): bool(row["enabled"]) for row in rows}

    def set_skill_state(self, skill_name: str, enabled: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO skill_states(skill_name, enabled, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(skill_name) DO UPDATE SET
                    enabled=excluded.enabled,
                    updated_at=excluded.updated_at
                """,
                (skill_name.lower(), int(enabled), _utc_now_iso()),
            )

    # -- semantic memory ---------------------------------------------------

    def add_memory_record(self, conversation_key: str, text: str, embedding: list[float]) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO memory_records(conversation_key, text, embedding_json, created_at) VALUES (?, ?, ?, ?)",
                (conversation_key, text, json.dumps(embedding), _utc_now_iso()),
            )
            return int(cur.lastrowid)

    def list_memory_records(self, conversation_key: str) -> list[tuple[str, list[float]]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT text, embedding_json FROM memory_records WHERE conversation_key = ? ORDER BY id",
                (conversation_key,),
            ).fetchall()
        return [(row["text"], json.loads(row["embedding_json"])) for row in rows]


def _to_persisted_message(row: sqlite3.Row) -> PersistedMessage:
    return PersistedMessage(
        id=row["id"],
        conversation_key=row["conversation_key"],
        role=row["role"],
        content=row["content"],
        status=row["status"],
        transport_message_id=row["transport_message_id"],
        sender_name=row["sender_name"],
        sender_id=row["sender_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _to_scheduled_task(row: sqlite3.Row) -> ScheduledTask:
    last_run = row["last_run_at"]
    return ScheduledTask(
        id=row["id"],
        conversation_key=row["conversation_key"],
        description=row["description"],
        cron_expression=row["cron_expression"],
        is_active=bool(row["is_active"]),
        last_run_at=datetime.fromisoformat(last_run) if last_run else None,
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
