"""
Heuristic completeness check for a concert's tag set.

A positive verdict triggers another classification pass; it never rejects a
result. Rules are evaluated in order and the first hit wins.
"""

from typing import Iterable

from .models import Concert, image_urls
from .taxonomy import (
    CONCERTO,
    DEFAULT_TAXONOMY,
    OPERA,
    ORCHESTRA,
    RECITAL,
    SYMPHONY,
    Taxonomy,
)

ORCHESTRA_KEYWORDS = (
    "교향악단", "필하모닉", "오케스트라", "심포니", "체임버", "앙상블", "신포니에타",
    "orchestra", "philharmonic", "symphony", "sinfonietta", "ensemble",
)
RECITAL_KEYWORDS = ("독주회", "리사이틀")
MIN_TAG_COUNT = 3


def has_tag_inconsistency(concert: Concert, tags: Iterable[str], taxonomy: Taxonomy = DEFAULT_TAXONOMY) -> bool:
    tag_set = set(tags)
    title = concert.get("title") or ""
    synopsis = concert.get("synopsis") or ""
    performers = (concert.get("performers") or "").lower()
    title_and_synopsis = f"{title}\n{synopsis}"

    if SYMPHONY in title_and_synopsis and SYMPHONY not in tag_set:
        return True
    if CONCERTO in title_and_synopsis and CONCERTO not in tag_set:
        return True
    solo_instruments = [name for name in taxonomy.instruments if name != ORCHESTRA]
    if CONCERTO in tag_set and not any(name in tag_set for name in solo_instruments):
        return True
    if any(keyword in performers for keyword in ORCHESTRA_KEYWORDS) and ORCHESTRA not in tag_set:
        return True

    has_era = any(era in tag_set for era in taxonomy.eras)
    if not has_era and any(name in tag_set for name in taxonomy.composers):
        return True
    if not has_era:
        everything = taxonomy.mask(f"{title}\n{concert.get('performers') or ''}\n{synopsis}")
        if image_urls(concert) or any(name.lower() in everything for name in taxonomy.known_composers):
            return True

    source = taxonomy.mask(title_and_synopsis)
    for name in taxonomy.era_composers():
        if name not in tag_set and taxonomy.mentions(name, source):
            return True

    if any(keyword in title for keyword in RECITAL_KEYWORDS) and RECITAL not in tag_set:
        return True
    if OPERA in title and OPERA not in tag_set:
        return True
    return len(tag_set) < MIN_TAG_COUNT
