"""
Tag untagged concerts with the classification model.

Per concert: text (batched) or image tagging -> image retry when the text
result is low-confidence -> consistency retries -> enforcement pass -> write
``tags``, ``ai_keywords``, ``need_review`` and ``pending_foreign_tags``.
Concerts are processed one batch/item at a time with fixed pauses between
model calls.
"""

import argparse
import logging
import time
from typing import Callable, Dict, List, Optional, Sequence

from tqdm import tqdm

from .config import Config
from .consistency import has_tag_inconsistency
from .enforcement import enforce_tags
from .extraction import TagExtractor
from .models import (
    LOW,
    ClassificationResult,
    Concert,
    Err,
    Outcome,
    empty_result,
    has_synopsis,
    image_urls,
)
from .store import open_store
from .taxonomy import DEFAULT_TAXONOMY, Taxonomy

TEXT = "text"
IMAGE = "image"


class TaggingPipeline:
    def __init__(
        self,
        store,
        extractor: Optional[TagExtractor] = None,
        taxonomy: Taxonomy = DEFAULT_TAXONOMY,
        sleep: Callable[[float], None] = time.sleep,
        dry_run: bool = False,
    ):
        self.store = store
        self.taxonomy = taxonomy
        self.extractor = extractor or TagExtractor(taxonomy=taxonomy)
        self.sleep = sleep
        self.dry_run = dry_run

    def _extract(self, concert: Concert, modality: str) -> Outcome:
        if modality == IMAGE:
            return self.extractor.tag_images(concert)
        return self.extractor.tag_text(concert)

    def _inconsistent(self, concert: Concert, result: ClassificationResult) -> bool:
        return has_tag_inconsistency(concert, result["tags"], self.taxonomy)

    def _needs_another_pass(self, concert: Concert, result: ClassificationResult) -> bool:
        return result["confidence"] == LOW or self._inconsistent(concert, result)

    def _merge(self, current: ClassificationResult, retry: Outcome) -> ClassificationResult:
        if isinstance(retry, Err):
            logging.info(f"Retry produced no result: {retry.reason}")
            return current
        result = retry.value
        return {
            "tags": self.taxonomy.finalize_tags(current["tags"] + result["tags"]),
            "keywords": list(dict.fromkeys(current["keywords"] + result["keywords"])),
            "confidence": result["confidence"],
        }

    def classify(self, concert: Concert, result: ClassificationResult, modality: str) -> ClassificationResult:
        """Run the retry passes and the enforcement pass for one concert."""
        concert_id = concert["id"]
        has_images = bool(image_urls(concert))
        entry = modality

        if result["confidence"] == LOW and has_images and modality == TEXT:
            logging.info(f"[{concert_id}] low confidence from text, retrying with images")
            retry = self.extractor.tag_images(concert)
            if isinstance(retry, Err):
                logging.info(f"[{concert_id}] image retry failed: {retry.reason}")
            else:
                result = retry.value
                modality = IMAGE

        if result["confidence"] != LOW and self._inconsistent(concert, result):
            logging.info(f"[{concert_id}] tags look incomplete, retrying ({modality})")
            self.sleep(Config.CONSISTENCY_RETRY_DELAY)
            result = self._merge(result, self._extract(concert, modality))

            if self._needs_another_pass(concert, result) and has_images and entry == TEXT:
                logging.info(f"[{concert_id}] still incomplete, retrying with images")
                result = self._merge(result, self.extractor.tag_images(concert))

            if self._needs_another_pass(concert, result):
                result = {**result, "confidence": LOW}

        if not has_synopsis(concert) and not has_images:
            result = {**result, "confidence": LOW}

        enforced = enforce_tags(
            concert, result["tags"], result["keywords"], self.extractor, self.taxonomy
        )
        return {
            "tags": enforced["tags"],
            "keywords": enforced["keywords"],
            "confidence": result["confidence"],
        }

    def persist(self, concert: Concert, result: ClassificationResult) -> Dict[str, object]:
        foreign = set(self.taxonomy.foreign_performers)
        fields = {
            "tags": [tag for tag in result["tags"] if tag not in foreign],
            "ai_keywords": result["keywords"],
            "need_review": result["confidence"] == LOW,
            "pending_foreign_tags": [tag for tag in result["tags"] if tag in foreign],
        }
        if self.dry_run:
            logging.info(f"[dry-run] {concert['id']}: {fields}")
        else:
            self.store.update_concert(concert["id"], fields)
        return fields

    def _finish(self, concert: Concert, result: ClassificationResult, modality: str, stats: Dict[str, int]) -> None:
        try:
            fields = self.persist(concert, self.classify(concert, result, modality))
        except Exception as e:
            logging.error(f"Tagging failed for {concert.get('id')}: {e}")
            stats["failed"] += 1
            return
        if fields["need_review"]:
            stats["need_review"] += 1
        else:
            stats["auto_tagged"] += 1
        logging.info(f"  {concert.get('title') or concert['id']}: {fields['tags']}")

    def run(self, concerts: Optional[Sequence[Concert]] = None, limit: Optional[int] = None) -> Dict[str, int]:
        if concerts is None:
            concerts = self.store.fetch_untagged(limit)
        logging.info(f"Concerts to tag: {len(concerts)}")

        text_concerts = [c for c in concerts if has_synopsis(c)]
        image_concerts = [c for c in concerts if not has_synopsis(c) and image_urls(c)]
        nothing_concerts = [c for c in concerts if not has_synopsis(c) and not image_urls(c)]
        logging.info(
            f"text: {len(text_concerts)} | image: {len(image_concerts)} | no info: {len(nothing_concerts)}"
        )

        stats = {"auto_tagged": 0, "need_review": 0, "failed": 0}

        batch_size = Config.TEXT_BATCH_SIZE
        all_text: List[Concert] = text_concerts + nothing_concerts
        for start in tqdm(range(0, len(all_text), batch_size), desc="Text batches"):
            batch = all_text[start : start + batch_size]
            outcome = self.extractor.tag_text_batch(batch)
            if isinstance(outcome, Err):
                logging.warning(f"Text batch {start + 1}-{start + len(batch)} failed: {outcome.reason}")
                results = {c["id"]: empty_result() for c in batch}
            else:
                results = outcome.value
            for concert in batch:
                self._finish(concert, results.get(concert["id"], empty_result()), TEXT, stats)
                self.sleep(Config.TEXT_ITEM_DELAY)
            self.sleep(Config.TEXT_BATCH_DELAY)

        for concert in tqdm(image_concerts, desc="Image concerts"):
            outcome = self.extractor.tag_images(concert)
            modality = IMAGE
            if isinstance(outcome, Err):
                logging.warning(f"Image tagging failed for {concert['id']} ({outcome.reason}), using text")
                outcome = self.extractor.tag_text(concert)
                modality = TEXT
            result = empty_result() if isinstance(outcome, Err) else outcome.value
            self._finish(concert, result, modality, stats)
            self.sleep(Config.IMAGE_ITEM_DELAY)

        logging.info(
            f"Done: auto-tagged {stats['auto_tagged']}, "
            f"needs review {stats['need_review']}, failed {stats['failed']}"
        )
        return stats


def main() -> int:
    parser = argparse.ArgumentParser(description="Tag untagged concerts with AI-assigned taxonomy tags.")
    parser.add_argument("--local-db", help="Use a local SQLite database instead of Supabase.")
    parser.add_argument("--limit", type=int, help="Tag at most this many concerts.")
    parser.add_argument("--dry-run", action="store_true", help="Log results without writing them.")
    args = parser.parse_args()

    Config.setup_logging()
    try:
        Config.validate("GEMINI_API_KEY")
        store = open_store(args.local_db)
    except ValueError as e:
        logging.error(str(e))
        return 1

    TaggingPipeline(store, dry_run=args.dry_run).run(limit=args.limit)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
