import logging
from typing import Dict, List, Optional, Sequence

from .extraction import TagExtractor
from .models import Concert, Err, image_urls
from .taxonomy import DEFAULT_TAXONOMY, Taxonomy, dedupe


def extracted_composers(concert: Concert, extractor: Optional[TagExtractor]) -> List[str]:
    """Composer names the model finds in the text and (when present) the images.

    Failed calls count as "nothing found".
    """
    if extractor is None:
        return []
    outcomes = [extractor.extract_composers_text(concert)]
    if image_urls(concert):
        outcomes.append(extractor.extract_composers_images(concert))
    names: List[str] = []
    for outcome in outcomes:
        if isinstance(outcome, Err):
            logging.info(f"Composer extraction skipped for {concert.get('id')}: {outcome.reason}")
            continue
        names.extend(outcome.value)
    return dedupe(names)


def enforce_tags(
    concert: Concert,
    tags: Sequence[str],
    keywords: Sequence[str],
    extractor: Optional[TagExtractor] = None,
    taxonomy: Taxonomy = DEFAULT_TAXONOMY,
) -> Dict[str, List[str]]:
    """Add composer, era and keyword entries the classifier missed.

    Only ever adds: tags and keywords passed in are kept as given, and an
    added keyword is skipped when it matches an existing one ignoring case.
    """
    incoming = list(tags)
    tags = list(tags)
    keywords = list(keywords)

    ai_names = taxonomy.normalize_aliases(extracted_composers(concert, extractor))
    source = taxonomy.mask(
        "\n".join(
            [concert.get("title") or "", concert.get("synopsis") or ""] + keywords + ai_names
        )
    )

    for name in taxonomy.era_composers():
        if name not in tags and taxonomy.mentions(name, source):
            tags.append(name)

    keyword_keys = {keyword.lower() for keyword in keywords}
    for name, era in taxonomy.known_composers.items():
        if name.lower() not in source:
            continue
        if era not in tags:
            tags.append(era)
        if name.lower() not in keyword_keys:
            keywords.append(name)
            keyword_keys.add(name.lower())

    whitelist = taxonomy.whitelist
    for name in ai_names:
        if name not in whitelist and name.lower() not in keyword_keys:
            keywords.append(name)
            keyword_keys.add(name.lower())

    # incoming tags stay as given; only the additions go through the whitelist
    enriched = taxonomy.filter_allowed_tags(taxonomy.add_era_tags(tags))
    return {"tags": dedupe(incoming + enriched), "keywords": keywords}
