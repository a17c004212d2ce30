from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class BaseRepository:
    @staticmethod
    def rows_to_dicts(rows: Iterable[Any]) -> list[dict]:
        return [dict(row) for row in rows]

    @staticmethod
    def row_to_dict(row: Any) -> dict | None:
        return dict(row) if row else None

    @staticmethod
    def inserted_id(cursor) -> int:
        rows = cursor.fetchall()
        row = rows[0]
        return int(row["id"] if isinstance(row, dict) else row[0])

    @staticmethod
    def placeholders(values: Iterable[Any]) -> str:
        return ", ".join("?" for _ in values)

    @staticmethod
    def assignments(fields: dict[str, Any]) -> tuple[str, list[Any]]:
        columns = sorted(fields)
        return ", ".join(f"{column} = ?" for column in columns), [fields[column] for column in columns]
