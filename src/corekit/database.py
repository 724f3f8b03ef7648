"""Async relational database handle built on SQLAlchemy."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from sqlalchemy import event, inspect as inspect_schema, text
from sqlalchemy.engine import URL, Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .errors import DatabaseError
from .logs import level_number
from .models import ModelDefinition, build_model, create_declarative_base

if TYPE_CHECKING:
    from .core import Core

SCHEMA_SYNC_POLICIES = ("sync", "force", "alter")


def database_url(config: Mapping[str, Any], *, sqlite: bool) -> URL:
    if sqlite:
        return URL.create("sqlite+aiosqlite", database=str(config["database_path"]))
    return URL.create(
        "postgresql+asyncpg",
        username=config.get("database_user"),
        password=config.get("database_password"),
        host=config.get("database_host"),
        port=config.get("database_port"),
        database=config.get("database_name"),
    )


def normalize_sync_policy(value: Any) -> str | None:
    if value in (None, False, "", "off", "none"):
        return None
    if value is True:
        return "sync"
    if value in SCHEMA_SYNC_POLICIES:
        return value
    raise DatabaseError(f"unknown schema sync policy {value!r}; expected sync, force, alter or off")


def _add_missing_columns(connection: Connection, metadata: Any) -> None:
    inspector = inspect_schema(connection)
    preparer = connection.dialect.identifier_preparer
    for table in metadata.sorted_tables:
        if not inspector.has_table(table.name):
            table.create(connection)
            continue
        existing = {column["name"] for column in inspector.get_columns(table.name)}
        for column in table.columns:
            if column.name in existing:
                continue
            column_type = column.type.compile(dialect=connection.dialect)
            connection.execute(
                text(
                    f"ALTER TABLE {preparer.quote(table.name)} "
                    f"ADD COLUMN {preparer.quote(column.name)} {column_type}"
                )
            )


class Database:
    """Owns the engine, the declarative base and every registered model."""

    def __init__(
        self,
        url: URL,
        *,
        logger: logging.Logger,
        log_level: str | None = None,
        extensions: list[str] | None = None,
    ) -> None:
        self.url = url
        self.base = create_declarative_base()
        self.extensions = list(extensions or [])
        self._logger = logger
        self._models: dict[str, type] = {}
        self._engine: AsyncEngine = create_async_engine(url)
        self._session_factory = async_sessionmaker(self._engine, class_=AsyncSession, expire_on_commit=False)
        statement_level = level_number(log_level)
        if statement_level is not None:
            event.listen(self._engine.sync_engine, "before_cursor_execute", self._statement_logger(statement_level))

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def models(self) -> Mapping[str, type]:
        return MappingProxyType(self._models)

    @property
    def is_sqlite(self) -> bool:
        return self.url.get_backend_name() == "sqlite"

    def _statement_logger(self, level: int) -> Any:
        def log_statement(_conn: Any, _cursor: Any, statement: str, *_args: Any) -> None:
            self._logger.log(level, "SQL: %s", " ".join(statement.split()))

        return log_statement

    async def ensure(self) -> None:
        """Make sure the database exists. Creation is best-effort; it may already exist."""
        if self.is_sqlite:
            if self.url.database and self.url.database != ":memory:":
                Path(self.url.database).parent.mkdir(parents=True, exist_ok=True)
            return

        try:
            await self._create_postgres_database()
        except (SQLAlchemyError, OSError) as error:
            self._logger.warning("Could not ensure database %s exists: %s", self.url.database, error)

        if self.extensions:
            async with self._engine.begin() as connection:
                for extension in self.extensions:
                    await connection.execute(text(f'CREATE EXTENSION IF NOT EXISTS "{extension}"'))
            self._logger.debug("Ensured database extensions: %s", ", ".join(self.extensions))

    async def _create_postgres_database(self) -> None:
        name = self.url.database
        maintenance = create_async_engine(self.url.set(database="postgres"), isolation_level="AUTOCOMMIT")
        try:
            async with maintenance.connect() as connection:
                found = await connection.scalar(
                    text("SELECT 1 FROM pg_database WHERE datname = :name"),
                    {"name": name},
                )
                if found:
                    return
                quoted = maintenance.dialect.identifier_preparer.quote(name)
                await connection.execute(text(f"CREATE DATABASE {quoted}"))
                self._logger.info("Created database %s", name)
        finally:
            await maintenance.dispose()

    async def authenticate(self) -> None:
        try:
            async with self._engine.connect() as connection:
                await connection.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as error:
            raise DatabaseError(f"could not connect to database {self.url.database}: {error}") from error

    def register_models(self, definitions: Mapping[str, ModelDefinition], *, core: Core | None = None) -> None:
        for name in sorted(definitions):
            self._models[name] = build_model(name, definitions[name], self.base, core=core, database=self)
        models = self.models
        for model in self._models.values():
            associate = getattr(model, "associate", None)
            if callable(associate):
                associate(models)

    async def sync(self, policy: Any) -> None:
        normalized = normalize_sync_policy(policy)
        if normalized is None:
            return
        metadata = self.base.metadata
        async with self._engine.begin() as connection:
            if normalized == "force":
                await connection.run_sync(metadata.drop_all)
                await connection.run_sync(metadata.create_all)
            elif normalized == "alter":
                await connection.run_sync(_add_missing_columns, metadata)
            else:
                await connection.run_sync(metadata.create_all)
        self._logger.debug("Synced %d tables (%s)", len(metadata.tables), normalized)

    async def start_models(self) -> None:
        pending = []
        for model in self._models.values():
            start = getattr(model, "start", None)
            if not callable(start):
                continue
            result = start()
            if inspect.isawaitable(result):
                pending.append(result)
        if pending:
            await asyncio.gather(*pending)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        await self._engine.dispose()
