import argparse
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from tqdm import tqdm

from .config import Config
from .images import fetch_images
from .llm import GeminiClient, load_json_span
from .models import Concert, has_synopsis, image_urls
from .store import open_store

SYSTEM_PROMPT = """공연 정보에서 구체적인 공연 날짜 목록을 추출해주세요.

추출 규칙:
1. "YYYY년 M월 D일" 형식으로 날짜를 추출합니다.
2. 날짜에 연도가 명시되지 않은 경우, 반드시 제공된 공연 기간(시작일~종료일)의 연도를 기준으로 추론하세요.
3. 시간 정보가 있으면 날짜 뒤에 "HH:MM" 형태로 함께 추출합니다.
   예) "2026년 1월 5일 19:30"
4. 날짜 정보를 전혀 찾을 수 없으면 dates를 null로 반환합니다.
5. 날짜 범위("1월 5일~10일")는 개별 날짜로 풀지 말고 그대로 반환합니다.
6. 반드시 JSON 형식으로만 응답하세요.
   형식: {"dates": ["2026년 1월 5일 19:30", "2026년 1월 10일 15:00"]}
   또는: {"dates": null}"""

SYNOPSIS_CHARS = 1500


def parse_dates(text: str) -> Optional[List[str]]:
    """Pull the ``dates`` list out of a model reply, ignoring any surrounding prose."""
    parsed: Any = load_json_span(text, "{")
    if not isinstance(parsed, dict):
        return None
    dates = parsed.get("dates")
    if not isinstance(dates, list):
        return None
    dates = [str(d).strip() for d in dates if isinstance(d, (str, int)) and str(d).strip()]
    return dates or None


def _period(concert: Concert) -> str:
    return f"{concert.get('start_date') or ''} ~ {concert.get('end_date') or ''}"


class ScheduleExtractor:
    def __init__(
        self,
        client: Optional[GeminiClient] = None,
        image_fetcher: Callable[[Sequence[str]], List[bytes]] = fetch_images,
    ):
        self.client = client or GeminiClient()
        self.image_fetcher = image_fetcher

    def from_text(self, concert: Concert) -> Optional[List[str]]:
        text = (
            f"공연 ID: {concert['id']}\n"
            f"제목: {concert.get('title') or ''}\n"
            f"공연 기간: {_period(concert)}\n\n"
            f"공연 설명:\n{(concert.get('synopsis') or '')[:SYNOPSIS_CHARS]}"
        )
        return parse_dates(self.client.generate(SYSTEM_PROMPT, text, max_output_tokens=512))

    def from_images(self, concert: Concert) -> Optional[List[str]]:
        images = self.image_fetcher(image_urls(concert))
        if not images:
            return None
        text = (
            f"공연 ID: {concert['id']}\n"
            f"제목: {concert.get('title') or ''}\n"
            f"공연 기간: {_period(concert)}\n\n"
            f"위 이미지({len(images)}장)는 이 공연의 소개 이미지입니다. "
            "이미지에서 구체적인 공연 날짜를 찾아주세요."
        )
        return parse_dates(self.client.generate(SYSTEM_PROMPT, text, images=images, max_output_tokens=512))

    def extract(self, concert: Concert) -> Optional[List[str]]:
        dates = None
        if has_synopsis(concert):
            dates = self.from_text(concert)
        if not dates and image_urls(concert):
            dates = self.from_images(concert)
        return dates


def extract_schedules(
    store,
    extractor: Optional[ScheduleExtractor] = None,
    limit: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, int]:
    """Fill ``schedule`` for multi-day concerts that have not been processed yet."""
    extractor = extractor or ScheduleExtractor()
    pending = store.fetch_unscheduled()
    concerts = [c for c in pending if c.get("start_date") != c.get("end_date")]
    if limit is not None:
        concerts = concerts[:limit]
    logging.info(f"Unprocessed: {len(pending)} -> multi-day runs: {len(concerts)}")

    stats = {"extracted": 0, "not_found": 0, "failed": 0}
    for concert in tqdm(concerts, desc="Extracting schedules"):
        try:
            dates = extractor.extract(concert)
            if dates:
                store.update_concert(
                    concert["id"], {"schedule": "\n".join(dates), "schedule_extracted": True}
                )
                logging.info(f"  {concert.get('title')}: {len(dates)} dates")
                stats["extracted"] += 1
            else:
                store.update_concert(concert["id"], {"schedule_extracted": True})
                stats["not_found"] += 1
        except Exception as e:
            logging.error(f"Schedule extraction failed for {concert['id']}: {e}")
            stats["failed"] += 1
        sleep(Config.IMAGE_ITEM_DELAY)

    logging.info(
        f"Done: extracted {stats['extracted']}, no dates {stats['not_found']}, failed {stats['failed']}"
    )
    return stats


def main() -> int:
    parser = argparse.ArgumentParser(description="Extract per-performance dates for multi-day concerts.")
    parser.add_argument("--local-db", help="Use a local SQLite database instead of Supabase.")
    parser.add_argument("--limit", type=int, help="Process at most this many concerts.")
    args = parser.parse_args()

    Config.setup_logging()
    try:
        Config.validate("GEMINI_API_KEY")
        store = open_store(args.local_db)
    except ValueError as e:
        logging.error(str(e))
        return 1

    extract_schedules(store, limit=args.limit)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
