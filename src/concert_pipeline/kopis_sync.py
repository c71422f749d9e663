"""
Sync classical performances from the KOPIS open API into the catalog.

The list endpoint is queried in 31-day windows (the API rejects longer
ranges) from ``Config.KOPIS_START_DATE`` to a year ahead; each performance's
detail record supplies synopsis, cast, intro images and ticket sites.
"""

import argparse
import logging
import xml.etree.ElementTree as ET
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

import requests
from tqdm import tqdm

from .config import Config
from .retry import with_retry
from .store import open_store

GENRE_CODE = "CCCA"  # western classical music
PAGE_ROWS = 100
UPSERT_BATCH = 100


def format_date(value: date) -> str:
    return value.strftime("%Y%m%d")


def date_windows(start: date, end: date) -> List[Tuple[str, str]]:
    windows = []
    cursor = start
    while cursor < end:
        window_end = min(cursor + timedelta(days=30), end)
        windows.append((format_date(cursor), format_date(window_end)))
        cursor += timedelta(days=31)
    return windows


def _to_value(element: ET.Element) -> Any:
    if len(element) == 0:
        text = (element.text or "").strip()
        return text or None
    result: Dict[str, Any] = {}
    for child in element:
        value = _to_value(child)
        if child.tag in result:
            existing = result[child.tag]
            if not isinstance(existing, list):
                result[child.tag] = [existing]
            result[child.tag].append(value)
        else:
            result[child.tag] = value
    return result


def parse_records(xml_data: Union[str, bytes]) -> List[Dict[str, Any]]:
    """``<dbs><db>...</db></dbs>`` -> list of dicts (one per ``db``)."""
    root = ET.fromstring(xml_data)
    records = root.findall("db") if root.tag == "dbs" else root.findall(".//db")
    return [value for value in (_to_value(db) for db in records) if isinstance(value, dict)]


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def parse_intro_images(detail: Optional[Dict[str, Any]]) -> Optional[List[str]]:
    styurls = (detail or {}).get("styurls")
    urls = [url for url in _as_list(styurls.get("styurl") if isinstance(styurls, dict) else None) if url]
    return urls or None


def parse_ticket_sites(detail: Optional[Dict[str, Any]]) -> Optional[List[Dict[str, Any]]]:
    relates = (detail or {}).get("relates")
    entries = _as_list(relates.get("relate") if isinstance(relates, dict) else None)
    sites = [
        {"name": entry.get("relatenm"), "url": entry.get("relateurl")}
        for entry in entries
        if isinstance(entry, dict)
    ]
    return sites or None


def to_row(item: Dict[str, Any], detail: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    detail = detail or {}
    return {
        "id": item.get("mt20id"),
        "title": item.get("prfnm"),
        "genre": item.get("genrenm"),
        "status": item.get("prfstate"),
        "start_date": item.get("prfpdfrom"),
        "end_date": item.get("prfpdto"),
        "poster": item.get("poster"),
        "venue": item.get("fcltynm"),
        "area": item.get("area"),
        "open_run": item.get("openrun"),
        "synopsis": detail.get("sty"),
        "performers": detail.get("prfcast"),
        "intro_images": parse_intro_images(detail),
        "schedule": detail.get("dtguidance"),
        "producer": detail.get("entrpsnmP"),
        "ticket_price": detail.get("pcseguidance"),
        "crew": detail.get("prfcrew"),
        "age_limit": detail.get("prfage"),
        "ticket_sites": parse_ticket_sites(detail),
        "synced_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
    }


class KopisClient:
    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, timeout: float = 30):
        self.api_key = api_key or Config.KOPIS_API_KEY
        if not self.api_key:
            raise ValueError("KOPIS_API_KEY not set.")
        self.base_url = (base_url or Config.KOPIS_BASE_URL).rstrip("/")
        self.timeout = timeout

    def _get(self, url: str, params: Dict[str, str]) -> bytes:
        def _call() -> bytes:
            response = requests.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.content

        return with_retry(_call, label=f"KOPIS {url}")

    def fetch_page(self, stdate: str, eddate: str, cpage: int) -> List[Dict[str, Any]]:
        params = {
            "service": self.api_key,
            "stdate": stdate,
            "eddate": eddate,
            "shcate": GENRE_CODE,
            "cpage": str(cpage),
            "rows": str(PAGE_ROWS),
        }
        return parse_records(self._get(self.base_url, params))

    def fetch_window(self, stdate: str, eddate: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        cpage = 1
        while True:
            page = self.fetch_page(stdate, eddate, cpage)
            items.extend(page)
            if len(page) < PAGE_ROWS:
                return items
            cpage += 1

    def fetch_detail(self, mt20id: str) -> Optional[Dict[str, Any]]:
        try:
            records = parse_records(self._get(f"{self.base_url}/{mt20id}", {"service": self.api_key}))
        except (requests.RequestException, ET.ParseError) as e:
            logging.warning(f"Detail fetch failed for {mt20id}: {e}")
            return None
        return records[0] if records else None


def sync(store, client: KopisClient, start: date, end: date) -> Dict[str, int]:
    windows = date_windows(start, end)
    logging.info(f"Date windows: {len(windows)}")

    items: List[Dict[str, Any]] = []
    seen = set()
    for stdate, eddate in windows:
        logging.info(f"  window {stdate} ~ {eddate}")
        for item in client.fetch_window(stdate, eddate):
            mt20id = item.get("mt20id")
            if mt20id and mt20id not in seen:
                seen.add(mt20id)
                items.append(item)

    logging.info(f"{len(items)} performances, fetching details...")
    rows = [to_row(item, client.fetch_detail(item["mt20id"])) for item in tqdm(items, desc="Details")]

    stats = {"rows": len(rows), "upserted": 0, "failed": 0}
    for start_index in range(0, len(rows), UPSERT_BATCH):
        batch = rows[start_index : start_index + UPSERT_BATCH]
        try:
            store.upsert_concerts(batch)
            stats["upserted"] += len(batch)
        except Exception as e:
            logging.error(f"Upsert failed ({start_index}~{start_index + len(batch)}): {e}")
            stats["failed"] += len(batch)

    logging.info(f"Sync done: {stats['upserted']} upserted, {stats['failed']} failed")
    return stats


def main() -> int:
    parser = argparse.ArgumentParser(description="Sync classical performances from KOPIS.")
    parser.add_argument("--local-db", help="Use a local SQLite database instead of Supabase.")
    parser.add_argument(
        "--start",
        default=Config.KOPIS_START_DATE,
        help="First date to sync (YYYY-MM-DD).",
    )
    parser.add_argument("--days-ahead", type=int, default=365, help="Sync up to this many days from today.")
    args = parser.parse_args()

    Config.setup_logging()
    try:
        Config.validate("KOPIS_API_KEY")
        store = open_store(args.local_db)
        client = KopisClient()
        start = date.fromisoformat(args.start)
    except ValueError as e:
        logging.error(str(e))
        return 1

    sync(store, client, start, date.today() + timedelta(days=args.days_ahead))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
