"""execute_sql_query tool: read-only SQL against the analytics database.

Rows are masked (emails, credentials) before they are returned to the model.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from quarry.api.tools import ToolDispatcher
from quarry.masking import mask_sensitive
from quarry.storage.database import Database

logger = logging.getLogger(__name__)

_STATUS_QUERY_CHARS = 500


async def execute_sql_query(query: str = "", *, _database: Database) -> dict[str, Any]:
    """Execute a read-only query.

    Returns:
        {"success": True, "count": n, "rows": [...]} or {"success": False, "error": ...}
    """
    if not query or not query.strip():
        return {"success": False, "error": "Missing required parameter: query"}

    logger.info("Executing query: %.100s", query)
    try:
        rows = await _database.execute_readonly(query)
    except SQLAlchemyError as e:
        error = getattr(e, "orig", None) or e
        logger.info("Query failed: %s", error)
        return {"success": False, "error": str(error)}

    return {"success": True, "count": len(rows), "rows": mask_sensitive(rows)}


def sql_status(args: dict[str, Any]) -> str:
    query = str(args.get("query", ""))
    if len(query) > _STATUS_QUERY_CHARS:
        query = query[:_STATUS_QUERY_CHARS] + "..."
    return f"\U0001f50d **Querying the database...**\n```sql\n{query}\n```"


_EXECUTE_SQL_QUERY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": (
        "Run a read-only query against the MySQL analytics database. "
        "Only SELECT statements are allowed."
    ),
    "properties": {
        "query": {
            "type": "string",
            "description": (
                "SQL query string. Start it with an SQL comment (-- or /* */) "
                "explaining its purpose."
            ),
        },
    },
    "required": ["query"],
}


def register_sql_tools(dispatcher: ToolDispatcher, database: Database) -> None:
    """Register execute_sql_query with the dispatcher."""

    async def _execute(query: str = "") -> dict[str, Any]:
        return await execute_sql_query(query, _database=database)

    dispatcher.register("execute_sql_query", _execute, _EXECUTE_SQL_QUERY_SCHEMA, status=sql_status)
