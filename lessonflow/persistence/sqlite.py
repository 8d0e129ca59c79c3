"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any

from ..contracts import WorkflowInstance
from .repository import WorkflowRepository


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                resource_id TEXT NOT NULL,
                workflow_type TEXT NOT NULL,
                status TEXT NOT NULL,
                owner_id TEXT,
                created_at TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT,
                total_cost_cents INTEGER NOT NULL DEFAULT 0,
                document TEXT NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS workflows_resource_idx ON workflows (resource_id)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    @staticmethod
    def _row_values(instance: WorkflowInstance) -> tuple:
        return (
            instance.resource_id,
            instance.workflow_type,
            instance.status.value,
            instance.owner_id,
            instance.created_at.isoformat(),
            instance.started_at.isoformat() if instance.started_at else None,
            instance.completed_at.isoformat() if instance.completed_at else None,
            instance.total_cost_cents,
            instance.to_json(),
        )

    # ------------------------------------------------------------------
    # Repository API
    async def create_workflow(self, instance: WorkflowInstance) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflows (
                id, resource_id, workflow_type, status, owner_id, created_at,
                started_at, completed_at, total_cost_cents, document
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            instance.id,
            *self._row_values(instance),
        )

    async def save_workflow(self, instance: WorkflowInstance) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE workflows
            SET resource_id = ?, workflow_type = ?, status = ?, owner_id = ?,
                created_at = ?, started_at = ?, completed_at = ?,
                total_cost_cents = ?, document = ?
            WHERE id = ?
            """,
            *self._row_values(instance),
            instance.id,
        )

    async def get_workflow(self, workflow_id: str) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT document FROM workflows WHERE id = ?",
            workflow_id,
        )
        if not row:
            return None
        return WorkflowInstance.from_json(row["document"])

    async def list_workflows(
        self, resource_id: str | None = None
    ) -> list[WorkflowInstance]:
        if resource_id is None:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT document FROM workflows ORDER BY created_at",
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT document FROM workflows WHERE resource_id = ? ORDER BY created_at",
                resource_id,
            )
        return [WorkflowInstance.from_json(row["document"]) for row in rows]
