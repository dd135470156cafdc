"""Database utilities for the FlixFinder service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import MetaData, event, inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData()


# Preference tables created before TMDB ids were tracked lack these columns.
_PREFERENCE_COLUMN_MIGRATIONS: tuple[tuple[str, str, str | None], ...] = (
    ("upstream_id", "INTEGER", None),
    ("rating", "INTEGER", None),
    ("review_text", "TEXT", None),
    ("is_favorite", "BOOLEAN DEFAULT 0", "0"),
    ("updated_at", "DATETIME", None),
)


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str, **engine_options: Any):
        self._engine: AsyncEngine = create_async_engine(
            database_url, future=True, **engine_options
        )
        if self._engine.dialect.name == "sqlite":
            event.listen(
                self._engine.sync_engine, "connect", _enable_sqlite_foreign_keys
            )
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        # Imported for its side effect of registering the mapped tables.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Ensure newly introduced columns are available on existing tables."""

        inspector = inspect(sync_connection)
        table_names = inspector.get_table_names()

        for table in ("favorites", "reviews"):
            if table not in table_names:
                continue
            existing_columns = {
                column["name"] for column in inspector.get_columns(table)
            }
            for name, ddl_type, initial in _PREFERENCE_COLUMN_MIGRATIONS:
                if name in existing_columns:
                    continue
                sync_connection.execute(
                    text(f"ALTER TABLE {table} ADD COLUMN {name} {ddl_type}")
                )
                if initial is not None:
                    sync_connection.execute(
                        text(
                            f"UPDATE {table} SET {name} = {initial} "
                            f"WHERE {name} IS NULL"
                        )
                    )
                existing_columns.add(name)

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional scope around a series of operations."""

        async with self.session_factory() as session:
            yield session


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
