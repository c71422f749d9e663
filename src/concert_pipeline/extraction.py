import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .config import Config
from .images import fetch_images
from .llm import GeminiClient, load_json_span
from .models import (
    HIGH,
    LOW,
    ClassificationResult,
    Concert,
    Err,
    Ok,
    Outcome,
    empty_result,
    image_urls,
)
from .taxonomy import DEFAULT_TAXONOMY, Taxonomy, dedupe

SYSTEM_PROMPT = """당신은 클래식 공연 태깅 전문가입니다. 주어진 공연 정보를 분석하여 정해진 태그 목록에서 적절한 태그를 빠짐없이 선택해주세요.

태그 선택 규칙:
1. 공연의 핵심 요소를 최대한 많이 태깅합니다. 누락이 없도록 주의하세요.
2. 제목이나 출연자 이름만으로 파악 가능한 태그도 반드시 선택합니다.
   예) "임윤찬 피아노 리사이틀" → ["임윤찬", "피아노", "리사이틀"]
   예) "베토벤 교향곡 9번" → ["베토벤", "교향곡", "고전"]
3. 작곡가 이름의 다른 표기는 태그 목록의 표기로 선택합니다.
   예) "무소륵스키" → "무소르그스키", "차이콥스키" → "차이코프스키", "드보르작" → "드보르자크"
4. 혼합 프로그램은 해당하는 작품형태 태그를 모두 선택합니다.
   예) "피아노 협주곡 + 교향곡" 프로그램 → ["협주곡", "교향곡"] 둘 다
   예) "베토벤 교향곡 9번(합창)" → ["교향곡", "합창"] 둘 다
5. 협주곡은 독주 악기 태그도 함께 선택합니다.
   예) "바이올린 협주곡" → ["협주곡", "바이올린"]
   단, 원래 피아노곡을 오케스트라로 편곡한 경우에는 피아노 태그 없음.
6. 오케스트라(교향악단, 필하모닉, 심포니, 체임버 오케스트라)가 연주하면 "오케스트라" 태그를 선택합니다.
7. 성악가(소프라노·메조소프라노·테너·바리톤·베이스)가 출연하면 "성악" 태그를 선택합니다.
8. 프로그램에 여러 작곡가의 작품이 포함되면 해당 작곡가를 모두 태깅하고, 각 작곡가의 시대 태그(바로크·고전·낭만·근현대)도 모두 선택합니다.
9. 작품형태 태그 구분 기준:
   - 합창: 미사, 레퀴엠, 오라토리오, 칸타타, 모테트 등 합창단이 참여하는 대규모 성악·합창 작품.
   - 실내악: 현악 4중주, 피아노 트리오 등 소규모 기악 앙상블(보통 8명 이하). 합창·성악 작품에는 붙이지 않음.
   - 오페라: 오페라 공연 또는 오페라 갈라 콘서트.
   - 리사이틀: 독주자나 독창자 한 명이 중심이 되는 공연. 독주회, 독창회 포함.
   - 교향곡: 오케스트라가 교향곡을 연주하는 공연.
   - 협주곡: 독주 악기와 오케스트라가 협연하는 공연.
10. "해외아티스트" 태그는 해외 연주자·단체가 실제로 출연할 때만 선택합니다. 한국 연주자의 영문 표기(예: Yunchan Lim, Seong-Jin Cho)는 해외아티스트가 아니라 해당 아티스트 태그입니다.
11. 태그 목록에 없는 작곡가·연주자·단체·작품명은 keywords에 원래 표기 그대로 넣습니다.
12. 응답 전에 작곡가, 아티스트(해외 포함), 작품형태, 악기, 시대 다섯 분류를 하나씩 다시 확인하여 빠진 태그가 없는지 점검하세요.
13. 정보가 부족해 판단이 불확실하면 confidence를 "low"로, 그렇지 않으면 "high"로 답합니다."""

BATCH_FORMAT = (
    '반드시 JSON 형식으로만 응답하세요: '
    '{"공연ID": {"tags": ["태그1", "태그2"], "keywords": ["키워드"], "confidence": "high"}}'
)
SINGLE_FORMAT = (
    '반드시 JSON 형식으로만 응답하세요: '
    '{"tags": ["태그1", "태그2"], "keywords": ["키워드"], "confidence": "high"}'
)

COMPOSER_PROMPT = """공연 정보에 등장하는 모든 작곡가의 이름을 추출해주세요.

추출 규칙:
1. 프로그램에 포함된 작품의 작곡가만 추출합니다. 연주자, 지휘자, 단체 이름은 제외합니다.
2. 이름은 한국어 표기로 씁니다. 예) Tchaikovsky → 차이코프스키, Mussorgsky → 무소르그스키
3. 작곡가를 찾을 수 없으면 빈 배열을 반환합니다.
4. 반드시 JSON 배열로만 응답하세요: ["작곡가1", "작곡가2"]"""


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def parse_tag_result(raw: Any, expected_ids: Sequence[str]) -> Dict[str, ClassificationResult]:
    """Read one classification per expected id out of a parsed model reply.

    Missing ids get an empty, low-confidence result. A bare list is the legacy
    shape and is taken as the tag list. Single-item calls may answer with the
    bare ``{"tags": ...}`` object instead of keying it by id.
    """
    data = raw if isinstance(raw, dict) else {}
    if len(expected_ids) == 1 and str(expected_ids[0]) not in data and "tags" in data:
        data = {str(expected_ids[0]): data}

    results: Dict[str, ClassificationResult] = {}
    for concert_id in expected_ids:
        entry = data.get(str(concert_id))
        if isinstance(entry, list):
            results[concert_id] = {"tags": _string_list(entry), "keywords": [], "confidence": HIGH}
        elif isinstance(entry, dict):
            results[concert_id] = {
                "tags": _string_list(entry.get("tags")),
                "keywords": _string_list(entry.get("keywords")),
                "confidence": LOW if entry.get("confidence") == LOW else HIGH,
            }
        else:
            results[concert_id] = empty_result()
    return results


def _field(concert: Concert, key: str) -> str:
    return (concert.get(key) or "").strip()


class TagExtractor:
    """Calls the classification model for tags (text or images) and composer names."""

    def __init__(
        self,
        client: Optional[GeminiClient] = None,
        taxonomy: Taxonomy = DEFAULT_TAXONOMY,
        image_fetcher: Callable[[Iterable[str]], List[bytes]] = fetch_images,
    ):
        self.client = client or GeminiClient()
        self.taxonomy = taxonomy
        self.image_fetcher = image_fetcher

    def finalize(self, result: ClassificationResult) -> ClassificationResult:
        whitelist = self.taxonomy.whitelist
        return {
            "tags": self.taxonomy.finalize_tags(result["tags"]),
            "keywords": dedupe(k for k in result["keywords"] if k not in whitelist),
            "confidence": result["confidence"],
        }

    def _describe(self, concert: Concert, synopsis_chars: int) -> str:
        lines = [
            f"[{concert['id']}]",
            f"제목: {_field(concert, 'title')}",
            f"출연: {_field(concert, 'performers')}",
            f"제작: {_field(concert, 'producer')}",
        ]
        if synopsis_chars:
            lines.append(f"내용: {_field(concert, 'synopsis')[:synopsis_chars]}")
        return "\n".join(lines)

    def build_text_prompt(self, concerts: Sequence[Concert]) -> str:
        listing = "\n\n".join(
            self._describe(concert, Config.SYNOPSIS_PROMPT_CHARS) for concert in concerts
        )
        return f"태그 목록:\n{self.taxonomy.tag_list_prompt()}\n\n공연 목록:\n{listing}\n\n{BATCH_FORMAT}"

    def build_image_prompt(self, concert: Concert, image_count: int) -> str:
        return (
            f"태그 목록:\n{self.taxonomy.tag_list_prompt()}\n\n"
            f"{self._describe(concert, 0)}\n\n"
            f"위 이미지({image_count}장)는 이 공연의 소개 이미지입니다. "
            f"모든 이미지를 참고하여 태그를 선택해주세요.\n{SINGLE_FORMAT}"
        )

    def _generate(
        self, system: str, text: str, images: Sequence[bytes] = (), max_output_tokens: int = 1024
    ) -> Outcome:
        try:
            return Ok(self.client.generate(system, text, images=images, max_output_tokens=max_output_tokens))
        except Exception as e:
            logging.error(f"Classification call failed: {e}")
            return Err(f"call failed: {e}")

    def tag_text_batch(self, concerts: Sequence[Concert]) -> Outcome:
        """Tag a batch of concerts from their text; ``Ok({id: result})``."""
        ids = [concert["id"] for concert in concerts]
        reply = self._generate(SYSTEM_PROMPT, self.build_text_prompt(concerts), max_output_tokens=2048)
        if isinstance(reply, Err):
            return reply
        parsed = load_json_span(reply.value, "{")
        if not isinstance(parsed, dict):
            return Err(f"unparseable batch reply: {reply.value[:100]}")
        results = parse_tag_result(parsed, ids)
        return Ok({concert_id: self.finalize(result) for concert_id, result in results.items()})

    def tag_text(self, concert: Concert) -> Outcome:
        outcome = self.tag_text_batch([concert])
        if isinstance(outcome, Err):
            return outcome
        return Ok(outcome.value[concert["id"]])

    def tag_images(self, concert: Concert) -> Outcome:
        """Tag one concert from its intro images (at most three)."""
        images = self.image_fetcher(image_urls(concert))
        if not images:
            return Err("no usable images")
        reply = self._generate(
            SYSTEM_PROMPT, self.build_image_prompt(concert, len(images)), images=images, max_output_tokens=512
        )
        if isinstance(reply, Err):
            return reply
        parsed = load_json_span(reply.value, "{")
        if not isinstance(parsed, dict):
            return Err(f"unparseable image reply: {reply.value[:100]}")
        return Ok(self.finalize(parse_tag_result(parsed, [concert["id"]])[concert["id"]]))

    def _composers_from(self, reply: Outcome) -> Outcome:
        if isinstance(reply, Err):
            return reply
        parsed = load_json_span(reply.value, "[")
        if not isinstance(parsed, list):
            return Err(f"unparseable composer reply: {reply.value[:100]}")
        return Ok(dedupe(_string_list(parsed)))

    def extract_composers_text(self, concert: Concert) -> Outcome:
        text = (
            f"제목: {_field(concert, 'title')}\n"
            f"출연: {_field(concert, 'performers')}\n"
            f"내용: {_field(concert, 'synopsis')[:1500]}"
        )
        return self._composers_from(self._generate(COMPOSER_PROMPT, text, max_output_tokens=256))

    def extract_composers_images(self, concert: Concert) -> Outcome:
        images = self.image_fetcher(image_urls(concert))
        if not images:
            return Err("no usable images")
        text = (
            f"제목: {_field(concert, 'title')}\n\n"
            f"위 이미지({len(images)}장)는 이 공연의 소개 이미지입니다. 프로그램에 있는 작곡가를 모두 찾아주세요."
        )
        return self._composers_from(self._generate(COMPOSER_PROMPT, text, images=images, max_output_tokens=256))
