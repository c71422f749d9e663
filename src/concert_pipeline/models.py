from dataclasses import dataclass
from typing import Any, Generic, List, Optional, TypedDict, TypeVar, Union

HIGH = "high"
LOW = "low"

T = TypeVar("T")


class Concert(TypedDict, total=False):
    id: str
    title: Optional[str]
    synopsis: Optional[str]
    performers: Optional[str]
    producer: Optional[str]
    intro_images: Optional[List[str]]
    start_date: Optional[str]
    end_date: Optional[str]


class ClassificationResult(TypedDict):
    tags: List[str]
    keywords: List[str]
    confidence: str  # "high" or "low"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    reason: str


Outcome = Union[Ok[Any], Err]


def empty_result() -> ClassificationResult:
    return {"tags": [], "keywords": [], "confidence": LOW}


def has_synopsis(concert: Concert) -> bool:
    return bool((concert.get("synopsis") or "").strip())


def image_urls(concert: Concert) -> List[str]:
    return [url for url in (concert.get("intro_images") or []) if url]
