import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import requests

from .config import Config
from .models import Concert

SCHEMA_PATH = Path(__file__).resolve().parent / "database" / "schema_local.sql"

TAGGING_FIELDS = "id,title,synopsis,performers,producer,intro_images"
SCHEDULE_FIELDS = "id,title,start_date,end_date,synopsis,intro_images"

COLUMNS = (
    "id", "title", "genre", "status", "start_date", "end_date", "poster", "venue",
    "area", "open_run", "synopsis", "performers", "intro_images", "schedule",
    "producer", "ticket_price", "crew", "age_limit", "ticket_sites", "synced_at",
    "tags", "ai_keywords", "need_review", "pending_foreign_tags",
    "schedule_extracted", "updated_at",
)
JSON_COLUMNS = {"intro_images", "ticket_sites", "tags", "ai_keywords", "pending_foreign_tags"}
BOOL_COLUMNS = {"need_review", "schedule_extracted"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


class SupabaseStore:
    """``concerts`` table access through the Supabase REST (PostgREST) API."""

    table = "concerts"
    page_size = 1000

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None, timeout: float = 30):
        url = url or Config.SUPABASE_URL
        key = key or Config.SUPABASE_SERVICE_ROLE_KEY
        if not url or not key:
            raise ValueError("Missing SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY.")
        self.base_url = url.rstrip("/")
        self.key = key
        self.timeout = timeout

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        payload: Optional[Any] = None,
        prefer: Optional[str] = None,
    ) -> Any:
        headers = {
            "apikey": self.key,
            "Authorization": f"Bearer {self.key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        url = f"{self.base_url}{path}"
        response = requests.request(
            method, url, params=params, json=payload, headers=headers, timeout=self.timeout
        )
        if response.status_code >= 400:
            raise RuntimeError(f"{method} {url} failed: {response.status_code} {response.text}")
        if not response.text:
            return None
        return response.json()

    def _select(self, params: Dict[str, str], limit: Optional[int] = None) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:
            page_size = self.page_size if limit is None else min(self.page_size, limit - len(rows))
            page = self._request(
                "GET",
                f"/rest/v1/{self.table}",
                params={**params, "order": "id", "limit": str(page_size), "offset": str(offset)},
            )
            page = page if isinstance(page, list) else []
            rows.extend(page)
            offset += len(page)
            if len(page) < page_size or (limit is not None and len(rows) >= limit):
                return rows

    def fetch_untagged(self, limit: Optional[int] = None) -> List[Concert]:
        return self._select({"select": TAGGING_FIELDS, "tags": "is.null"}, limit)

    def fetch_unscheduled(self, limit: Optional[int] = None) -> List[Concert]:
        return self._select({"select": SCHEDULE_FIELDS, "schedule_extracted": "eq.false"}, limit)

    def update_concert(self, concert_id: str, fields: Dict[str, Any]) -> None:
        self._request(
            "PATCH",
            f"/rest/v1/{self.table}",
            params={"id": f"eq.{concert_id}"},
            payload=fields,
            prefer="return=minimal",
        )

    def upsert_concerts(self, rows: List[Dict[str, Any]]) -> None:
        self._request(
            "POST",
            f"/rest/v1/{self.table}",
            params={"on_conflict": "id"},
            payload=rows,
            prefer="return=minimal,resolution=merge-duplicates",
        )


class LocalStore:
    """SQLite mirror of the ``concerts`` table for offline runs."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or Config.LOCAL_DB_PATH)

    def _connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.executescript(SCHEMA_PATH.read_text(encoding="utf-8"))
        return conn

    @staticmethod
    def _encode(column: str, value: Any) -> Any:
        if column not in COLUMNS:
            raise ValueError(f"Unknown concerts column: {column}")
        if value is None:
            return None
        if column in JSON_COLUMNS:
            return json.dumps(value, ensure_ascii=False)
        if column in BOOL_COLUMNS:
            return 1 if value else 0
        return value

    @staticmethod
    def _decode(row: sqlite3.Row) -> Dict[str, Any]:
        data = dict(row)
        for column in JSON_COLUMNS & data.keys():
            if data[column] is not None:
                data[column] = json.loads(data[column])
        for column in BOOL_COLUMNS & data.keys():
            if data[column] is not None:
                data[column] = bool(data[column])
        return data

    def _select(self, fields: str, where: str, limit: Optional[int]) -> List[Concert]:
        sql = f"SELECT {fields} FROM concerts WHERE {where} ORDER BY id"
        params: Iterable[Any] = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        conn = self._connect()
        try:
            return [self._decode(row) for row in conn.execute(sql, tuple(params)).fetchall()]
        finally:
            conn.close()

    def fetch_untagged(self, limit: Optional[int] = None) -> List[Concert]:
        return self._select(TAGGING_FIELDS, "tags IS NULL", limit)

    def fetch_unscheduled(self, limit: Optional[int] = None) -> List[Concert]:
        return self._select(SCHEDULE_FIELDS, "schedule_extracted = 0", limit)

    def get_concert(self, concert_id: str) -> Optional[Dict[str, Any]]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM concerts WHERE id = ?", (concert_id,)).fetchone()
        finally:
            conn.close()
        return self._decode(row) if row else None

    def update_concert(self, concert_id: str, fields: Dict[str, Any]) -> None:
        fields = {**fields, "updated_at": _now()}
        assignments = ", ".join(f"{column} = ?" for column in fields)
        values = [self._encode(column, value) for column, value in fields.items()]
        conn = self._connect()
        try:
            cursor = conn.execute(
                f"UPDATE concerts SET {assignments} WHERE id = ?", (*values, concert_id)
            )
            if cursor.rowcount == 0:
                raise RuntimeError(f"Concert {concert_id} not found in {self.db_path}")
            conn.commit()
        finally:
            conn.close()

    def upsert_concerts(self, rows: List[Dict[str, Any]]) -> None:
        conn = self._connect()
        try:
            for row in rows:
                columns = list(row)
                values = [self._encode(column, row[column]) for column in columns]
                updates = ", ".join(f"{column} = excluded.{column}" for column in columns if column != "id")
                conn.execute(
                    f"""
                    INSERT INTO concerts ({", ".join(columns)})
                    VALUES ({", ".join("?" for _ in columns)})
                    ON CONFLICT(id) DO UPDATE SET {updates or "id = excluded.id"}
                    """,
                    values,
                )
            conn.commit()
        finally:
            conn.close()


def open_store(local_db: Optional[str] = None):
    """``LocalStore`` when a database path is given, otherwise ``SupabaseStore``."""
    if local_db:
        return LocalStore(Path(local_db))
    return SupabaseStore()
