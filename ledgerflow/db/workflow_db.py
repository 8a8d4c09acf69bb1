from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession, create_async_engine
from sqlalchemy.schema import CreateIndex, CreateTable
from sqlmodel import SQLModel

from .models import Workflow, WorkflowStep

_DIALECTS = {"postgresql": postgresql.dialect, "sqlite": sqlite.dialect}


class WorkflowDB:
    """Async engine, sessions and schema management for the workflow tables."""

    def __init__(self, database_url: str, echo: bool = False) -> None:
        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.database_url = database_url
        self.engine = create_async_engine(
            database_url, echo=echo, future=True, connect_args=connect_args
        )

    async def init_db(self) -> None:
        """Create ``workflows`` and ``workflow_steps`` if they do not exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(
                SQLModel.metadata.create_all,
                tables=[Workflow.__table__, WorkflowStep.__table__],
            )

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with AsyncSession(self.engine, expire_on_commit=False) as session:
            yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """Connection inside a transaction; commits on exit, rolls back on error."""
        async with self.engine.begin() as conn:
            yield conn


def schema_ddl(dialect: str = "postgresql") -> str:
    """Render CREATE statements for both tables in the given SQL dialect."""
    try:
        target = _DIALECTS[dialect]()
    except KeyError:
        raise ValueError(f"Unsupported dialect: {dialect}") from None

    statements = []
    for table in (Workflow.__table__, WorkflowStep.__table__):
        statements.append(str(CreateTable(table).compile(dialect=target)).strip() + ";")
        for index in sorted(table.indexes, key=lambda i: i.name or ""):
            statements.append(str(CreateIndex(index).compile(dialect=target)).strip() + ";")
    return "\n\n".join(statements)
