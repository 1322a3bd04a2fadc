"""Async database engine with read-only query execution and schema introspection."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, create_async_engine

from quarry.config import Settings

_TABLES_SQL = text(
    """
    SELECT TABLE_NAME AS table_name, TABLE_COMMENT AS table_comment
    FROM information_schema.TABLES
    WHERE TABLE_SCHEMA = :schema AND TABLE_TYPE = 'BASE TABLE'
    ORDER BY TABLE_NAME
    """
)

_COLUMNS_SQL = text(
    """
    SELECT
        TABLE_NAME AS table_name,
        COLUMN_NAME AS column_name,
        DATA_TYPE AS data_type,
        IS_NULLABLE AS is_nullable,
        COLUMN_DEFAULT AS column_default,
        COLUMN_COMMENT AS column_comment,
        COLUMN_KEY AS column_key
    FROM information_schema.COLUMNS
    WHERE TABLE_SCHEMA = :schema
    ORDER BY TABLE_NAME, ORDINAL_POSITION
    """
)

_FOREIGN_KEYS_SQL = text(
    """
    SELECT
        TABLE_NAME AS table_name,
        COLUMN_NAME AS column_name,
        REFERENCED_TABLE_NAME AS referenced_table,
        REFERENCED_COLUMN_NAME AS referenced_column
    FROM information_schema.KEY_COLUMN_USAGE
    WHERE TABLE_SCHEMA = :schema AND REFERENCED_TABLE_NAME IS NOT NULL
    """
)


class Database:
    def __init__(self, settings: Settings) -> None:
        self._schema_name = settings.db_name
        self.engine = create_async_engine(
            settings.db_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
            echo=settings.log_level == "debug",
        )

    async def connect(self) -> None:
        """Verify connectivity."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def disconnect(self) -> None:
        """Dispose of connection pool."""
        await self.engine.dispose()

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[AsyncConnection]:
        async with self.engine.connect() as conn:
            yield conn

    async def execute_readonly(self, query: str) -> list[dict[str, Any]]:
        """Run raw SQL inside a read-only transaction and return rows as dicts.

        The statement is passed to the driver without parameters so literal
        ``%`` in LIKE patterns survives. Writes fail inside MySQL with
        ER_CANT_EXECUTE_IN_READ_ONLY_TRANSACTION.
        """
        async with self.connection() as conn:
            await conn.exec_driver_sql("SET TRANSACTION READ ONLY")
            try:
                result = await conn.exec_driver_sql(
                    query, execution_options={"no_parameters": True}
                )
                rows = [dict(row) for row in result.mappings()] if result.returns_rows else []
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise
            return rows

    async def load_schema(self) -> dict[str, Any]:
        """Describe tables, columns and foreign keys of the configured schema."""
        params = {"schema": self._schema_name}
        async with self.connection() as conn:
            tables = (await conn.execute(_TABLES_SQL, params)).mappings().all()
            columns = (await conn.execute(_COLUMNS_SQL, params)).mappings().all()
            foreign_keys = (await conn.execute(_FOREIGN_KEYS_SQL, params)).mappings().all()

        fk_map = {
            (fk["table_name"], fk["column_name"]): {
                "table": fk["referenced_table"],
                "column": fk["referenced_column"],
            }
            for fk in foreign_keys
        }

        schema: dict[str, Any] = {"tables": []}
        table_map: dict[str, dict[str, Any]] = {}
        for table in tables:
            info = {
                "table_name": table["table_name"],
                "table_comment": table["table_comment"],
                "columns": [],
            }
            table_map[table["table_name"]] = info
            schema["tables"].append(info)

        for column in columns:
            table = table_map.get(column["table_name"])
            if table is None:
                continue
            table["columns"].append({
                "column_name": column["column_name"],
                "data_type": column["data_type"],
                "is_nullable": column["is_nullable"] == "YES",
                "column_default": column["column_default"],
                "column_comment": column["column_comment"],
                "is_primary_key": column["column_key"] == "PRI",
                "foreign_key": fk_map.get((column["table_name"], column["column_name"])),
            })

        return schema

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.disconnect()
