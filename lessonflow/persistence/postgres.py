"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import asyncpg

from ..contracts import WorkflowInstance
from .repository import WorkflowRepository


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS lessonflow_workflows (
                id TEXT PRIMARY KEY,
                resource_id TEXT NOT NULL,
                workflow_type TEXT NOT NULL,
                status TEXT NOT NULL,
                owner_id TEXT,
                created_at TIMESTAMPTZ NOT NULL,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                total_cost_cents INTEGER NOT NULL DEFAULT 0,
                document JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE INDEX IF NOT EXISTS lessonflow_workflows_resource_idx
            ON lessonflow_workflows (resource_id)
            """
        )

    # ------------------------------------------------------------------
    async def create_workflow(self, instance: WorkflowInstance) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO lessonflow_workflows (
                    id, resource_id, workflow_type, status, owner_id, created_at,
                    started_at, completed_at, total_cost_cents, document
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                """,
                instance.id,
                instance.resource_id,
                instance.workflow_type,
                instance.status.value,
                instance.owner_id,
                instance.created_at,
                instance.started_at,
                instance.completed_at,
                instance.total_cost_cents,
                instance.to_json(),
            )
        finally:
            await conn.close()

    async def save_workflow(self, instance: WorkflowInstance) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                UPDATE lessonflow_workflows
                SET status = $1, started_at = $2, completed_at = $3,
                    total_cost_cents = $4, document = $5
                WHERE id = $6
                """,
                instance.status.value,
                instance.started_at,
                instance.completed_at,
                instance.total_cost_cents,
                instance.to_json(),
                instance.id,
            )
        finally:
            await conn.close()

    async def get_workflow(self, workflow_id: str) -> WorkflowInstance | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT document FROM lessonflow_workflows WHERE id = $1",
                workflow_id,
            )
        finally:
            await conn.close()
        if not row:
            return None
        return WorkflowInstance.from_json(row["document"])

    async def list_workflows(
        self, resource_id: str | None = None
    ) -> list[WorkflowInstance]:
        conn = await self._connect()
        try:
            if resource_id is None:
                rows = await conn.fetch(
                    "SELECT document FROM lessonflow_workflows ORDER BY created_at"
                )
            else:
                rows = await conn.fetch(
                    """
                    SELECT document FROM lessonflow_workflows
                    WHERE resource_id = $1 ORDER BY created_at
                    """,
                    resource_id,
                )
        finally:
            await conn.close()
        return [WorkflowInstance.from_json(r["document"]) for r in rows]
