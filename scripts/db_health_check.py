#!/usr/bin/env python
from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Connection

from geopunch.settings import get_settings


EXPECTED_HEAD = "0001_initial"
REQUIRED_TABLES = ("geofences", "employees", "punch_sessions", "audit_logs")


def _sample(conn: Connection, sql: str) -> list[list[Any]]:
    return [list(row) for row in conn.execute(text(sql)).fetchall()]


def run(database_url: str | None = None) -> dict[str, Any]:
    database_url = database_url or get_settings().database_url
    engine = create_engine(database_url)
    report: dict[str, Any] = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict[str, Any]) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    with engine.connect() as conn:
        tables = set(inspect(conn).get_table_names())

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        missing = [table for table in REQUIRED_TABLES if table not in tables]
        add("missing_tables", "fail" if missing else "ok", {"tables": missing})
        if "punch_sessions" not in tables:
            return report

        duplicate_open = _sample(
            conn,
            """
            select employee_id, count(*)
            from punch_sessions
            where punch_out_ts_utc is null
            group by employee_id
            having count(*) > 1
            """,
        )
        add(
            "duplicate_open_sessions",
            "fail" if duplicate_open else "ok",
            {"rows": duplicate_open},
        )

        break_order = _sample(
            conn,
            """
            select id
            from punch_sessions
            where (break_start_ts_utc is not null and break_start_ts_utc < punch_in_ts_utc)
               or (break_end_ts_utc is not null and break_start_ts_utc is null)
               or (break_end_ts_utc is not null and break_end_ts_utc < break_start_ts_utc)
               or (punch_out_ts_utc is not null and punch_out_ts_utc < punch_in_ts_utc)
               or (punch_out_ts_utc is not null and break_end_ts_utc is not null
                   and punch_out_ts_utc < break_end_ts_utc)
            limit 20
            """,
        )
        add(
            "session_timestamps_out_of_order",
            "fail" if break_order else "ok",
            {"sample_ids": [row[0] for row in break_order]},
        )

        unclosed_break = _sample(
            conn,
            """
            select id
            from punch_sessions
            where punch_out_ts_utc is not null
              and break_start_ts_utc is not null
              and break_end_ts_utc is null
            limit 20
            """,
        )
        add(
            "closed_session_with_open_break",
            "fail" if unclosed_break else "ok",
            {"sample_ids": [row[0] for row in unclosed_break]},
        )

        if "employees" in tables:
            orphan_employees = _sample(
                conn,
                """
                select s.id
                from punch_sessions s
                left join employees e on e.id = s.employee_id
                where e.id is null
                limit 20
                """,
            )
            add(
                "punch_session_orphan_employee",
                "fail" if orphan_employees else "ok",
                {"sample_ids": [row[0] for row in orphan_employees]},
            )

    return report


if __name__ == "__main__":
    result = run()
    print(json.dumps(result, ensure_ascii=False, indent=2))
    failed = any(check["status"] == "fail" for check in result["checks"])
    sys.exit(1 if failed else 0)
