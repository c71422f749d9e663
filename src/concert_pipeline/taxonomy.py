"""
Tag vocabulary for classical concerts.

The taxonomy is an injectable object: the pipeline components take a
``Taxonomy`` instance so tests can run against a minimal vocabulary.
``DEFAULT_TAXONOMY`` is the production vocabulary.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

COMPOSER = "작곡가"
PERFORMER = "아티스트"
FOREIGN_PERFORMER = "해외아티스트"
WORK_FORM = "작품형태"
INSTRUMENT = "악기"
ERA = "시대"

SYMPHONY = "교향곡"
CONCERTO = "협주곡"
RECITAL = "리사이틀"
OPERA = "오페라"
ORCHESTRA = "오케스트라"


def dedupe(values: Iterable[str]) -> List[str]:
    """Drop duplicates while keeping the first occurrence of each value."""
    return list(dict.fromkeys(values))


@dataclass(frozen=True)
class Taxonomy:
    categories: Mapping[str, Sequence[str]]
    era_map: Mapping[str, Sequence[str]]
    aliases: Mapping[str, str] = field(default_factory=dict)
    known_composers: Mapping[str, str] = field(default_factory=dict)
    # Words that contain a composer name without referring to the composer
    masked_words: Tuple[str, ...] = ()

    def __post_init__(self):
        seen: Dict[str, str] = {}
        for category, tags in self.categories.items():
            for tag in tags:
                if tag in seen:
                    raise ValueError(
                        f"Tag '{tag}' is in both '{seen[tag]}' and '{category}'."
                    )
                seen[tag] = category

        composers = set(self.categories.get(COMPOSER, ()))
        eras = set(self.categories.get(ERA, ()))
        for era, members in self.era_map.items():
            if era not in eras:
                raise ValueError(f"Era '{era}' is not an {ERA} tag.")
            unknown = [name for name in members if name not in composers]
            if unknown:
                raise ValueError(f"Era '{era}' lists unknown composers: {unknown}")
        for alias, canonical in self.aliases.items():
            if canonical not in composers:
                raise ValueError(f"Alias '{alias}' maps to unknown composer '{canonical}'.")
        for name, era in self.known_composers.items():
            if era not in eras:
                raise ValueError(f"Known composer '{name}' maps to unknown era '{era}'.")

    @property
    def whitelist(self) -> frozenset:
        return frozenset(tag for tags in self.categories.values() for tag in tags)

    def tags_in(self, category: str) -> List[str]:
        return list(self.categories.get(category, ()))

    @property
    def composers(self) -> List[str]:
        return self.tags_in(COMPOSER)

    @property
    def eras(self) -> List[str]:
        return self.tags_in(ERA)

    @property
    def instruments(self) -> List[str]:
        return self.tags_in(INSTRUMENT)

    @property
    def foreign_performers(self) -> List[str]:
        return self.tags_in(FOREIGN_PERFORMER)

    def era_composers(self) -> List[str]:
        return dedupe(name for members in self.era_map.values() for name in members)

    def normalize_aliases(self, tags: Iterable[str]) -> List[str]:
        return [self.aliases.get(tag, tag) for tag in tags]

    def filter_allowed_tags(self, tags: Iterable[str]) -> List[str]:
        allowed = self.whitelist
        return dedupe(tag for tag in tags if tag in allowed)

    def add_era_tags(self, tags: Iterable[str]) -> List[str]:
        result = list(tags)
        present = set(result)
        for era, members in self.era_map.items():
            if era not in present and any(name in present for name in members):
                result.append(era)
                present.add(era)
        return dedupe(result)

    def finalize_tags(self, raw_tags: Iterable[str]) -> List[str]:
        tags = self.filter_allowed_tags(self.normalize_aliases(raw_tags))
        return self.filter_allowed_tags(self.add_era_tags(tags))

    def mask(self, text: str) -> str:
        """Lower-case ``text`` and blank out words that only look like composer names."""
        lowered = (text or "").lower()
        for word in self.masked_words:
            lowered = lowered.replace(word.lower(), " ")
        return lowered

    def mentions(self, name: str, source: str) -> bool:
        """Whether ``name`` or one of its aliases occurs in already-masked ``source``."""
        spellings = [name] + [alias for alias, canonical in self.aliases.items() if canonical == name]
        return any(spelling.lower() in source for spelling in spellings)

    def tag_list_prompt(self) -> str:
        return "\n".join(f"[{category}] {', '.join(tags)}" for category, tags in self.categories.items())


DEFAULT_TAXONOMY = Taxonomy(
    categories={
        COMPOSER: [
            "바흐", "헨델", "비발디", "하이든", "모차르트", "베토벤", "슈베르트",
            "멘델스존", "슈만", "쇼팽", "리스트", "브람스", "생상스", "드보르자크",
            "차이코프스키", "무소르그스키", "시벨리우스", "말러", "드뷔시", "라벨",
            "라흐마니노프", "스트라빈스키", "프로코피예프", "쇼스타코비치",
        ],
        PERFORMER: [
            "금난새", "김다미", "김봄소리", "김선욱", "박혜상", "백건우", "선우예권",
            "손열음", "양성원", "양인모", "임선혜", "임윤찬", "장한나", "정경화",
            "정명화", "정명훈", "조성진", "조수미", "클라라 주미 강", "황수미",
            "KBS교향악단", "경기필하모닉", "고잉홈프로젝트", "대전시립교향악단",
            "서울시립교향악단", "인천시립교향악단",
        ],
        FOREIGN_PERFORMER: [
            "베를린 필하모닉", "빈 필하모닉", "로열 콘세르트헤바우 오케스트라",
            "런던 심포니 오케스트라", "체코 필하모닉", "예브게니 키신", "랑랑",
            "유자 왕", "다닐 트리포노프", "안네 소피 무터", "힐러리 한",
            "조슈아 벨", "미샤 마이스키", "안드라스 쉬프",
        ],
        WORK_FORM: ["교향곡", "협주곡", "실내악", "합창", "오페라", "리사이틀"],
        INSTRUMENT: [
            "피아노", "바이올린", "비올라", "첼로", "플루트", "오보에", "성악",
            "관악", "타악", "오케스트라",
        ],
        ERA: ["바로크", "고전", "낭만", "근현대"],
    },
    era_map={
        "바로크": ["바흐", "헨델", "비발디"],
        "고전": ["하이든", "모차르트", "베토벤"],
        "낭만": [
            "슈베르트", "멘델스존", "슈만", "쇼팽", "리스트", "브람스", "생상스",
            "드보르자크", "차이코프스키", "무소르그스키", "말러",
        ],
        "근현대": [
            "시벨리우스", "드뷔시", "라벨", "라흐마니노프", "스트라빈스키",
            "프로코피예프", "쇼스타코비치",
        ],
    },
    aliases={
        "무소륵스키": "무소르그스키",
        "모짜르트": "모차르트",
        "핸델": "헨델",
        "멘델스죤": "멘델스존",
        "드보르작": "드보르자크",
        "차이콥스키": "차이코프스키",
        "시벨리어스": "시벨리우스",
        "드비시": "드뷔시",
        "라흐마니노브": "라흐마니노프",
        "프로코피에프": "프로코피예프",
        "쇼스타코비츠": "쇼스타코비치",
    },
    known_composers={
        "텔레만": "바로크",
        "퍼셀": "바로크",
        "코렐리": "바로크",
        "스카를라티": "바로크",
        "파헬벨": "바로크",
        "글루크": "고전",
        "보케리니": "고전",
        "베버": "낭만",
        "로시니": "낭만",
        "파가니니": "낭만",
        "베를리오즈": "낭만",
        "바그너": "낭만",
        "베르디": "낭만",
        "브루크너": "낭만",
        "비제": "낭만",
        "그리그": "낭만",
        "림스키코르사코프": "낭만",
        "엘가": "낭만",
        "푸치니": "낭만",
        "바르톡": "근현대",
        "쇤베르크": "근현대",
        "거슈윈": "근현대",
        "번스타인": "근현대",
        "피아졸라": "근현대",
        "풀랑크": "근현대",
        "브리튼": "근현대",
        "메시앙": "근현대",
        "윤이상": "근현대",
        "진은숙": "근현대",
    },
    masked_words=("첼리스트", "기타리스트", "쳄발리스트", "체크리스트", "플레이리스트", "오펜바흐"),
)
