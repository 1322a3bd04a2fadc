"""Prompt text for the interactive assistant and the daily report."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo


def format_schema(schema: dict[str, Any]) -> str:
    """Render the schema description as compact text, one column per line."""
    lines: list[str] = []
    for table in schema.get("tables", []):
        header = f"## {table['table_name']}"
        if table.get("table_comment"):
            header += f" -- {table['table_comment']}"
        lines.append(header)
        for column in table.get("columns", []):
            parts = [f"- {column['column_name']} {column['data_type']}"]
            if column.get("is_primary_key"):
                parts.append("PK")
            if not column.get("is_nullable", True):
                parts.append("NOT NULL")
            fk = column.get("foreign_key")
            if fk:
                parts.append(f"FK -> {fk['table']}.{fk['column']}")
            if column.get("column_comment"):
                parts.append(f"-- {column['column_comment']}")
            lines.append(" ".join(parts))
        lines.append("")
    return "\n".join(lines).strip()


def build_system_prompt(
    schema: dict[str, Any],
    timezone: str,
    max_iterations: int = 50,
    now: datetime | None = None,
) -> str:
    now = now or datetime.now(ZoneInfo(timezone))
    return f"""# System
Current time: {now.strftime("%A %Y-%m-%d %H:%M:%S")} ({timezone})

# Role
You are a data analysis assistant for the product team. You answer questions
by querying the MySQL database, summarizing results and drawing charts.
You talk to people in a chat, so keep answers short and well formatted.

# Rules
1. The database is read-only. Never attempt INSERT, UPDATE or DELETE.
2. Email addresses in results are masked automatically. Never try to reveal
   them and never query password, token or secret columns.
3. All dates and times are in {timezone}.
4. Do not run analyses nobody asked for.
5. You can call tools at most {max_iterations} times per question.

# execute_sql_query
Pass the SQL in the `query` parameter and start it with an SQL comment that
states the purpose, the tables used and how they are joined.

# create_chart
Use it when a picture explains the numbers better than a table. The image is
posted to the chat for you; just refer to it in your answer.

# upload_to_r2
Use it for results too large for a chat message (CSV, JSON) and share the
returned download link.

# Database schema
{format_schema(schema)}
"""


def build_daily_report_prompt(timezone: str, now: datetime | None = None) -> str:
    now = now or datetime.now(ZoneInfo(timezone))
    yesterday = now - timedelta(days=1)
    return f"""Write the daily report.

**Report date**: {yesterday.strftime("%Y-%m-%d (%A)")}
**Generated at**: {now.strftime("%Y-%m-%d %H:%M")}

Query the following metrics and present them in a chat-friendly layout:

# Key metrics

## Users
- Total users (cumulative)
- New sign-ups (yesterday)
- Daily active users (yesterday)

## Activity
- Items started and completed (yesterday), with the completion rate
- Uploads (yesterday)

## Engagement
- Downloads, likes and comments (yesterday)

# Trends
- Compare each metric with the day before and with the 7-day average.
- Draw one line chart of daily active users for the last 14 days.

Finish with three short bullet points of notable observations.
"""
