import json

import pytest

from concert_pipeline.extraction import COMPOSER_PROMPT, TagExtractor
from concert_pipeline.store import LocalStore
from concert_pipeline.taxonomy import (
    COMPOSER,
    ERA,
    FOREIGN_PERFORMER,
    INSTRUMENT,
    PERFORMER,
    WORK_FORM,
    Taxonomy,
)


class FakeClient:
    """Stands in for ``GeminiClient``; answers from a queue of canned replies.

    Composer-extraction calls are answered separately with ``composers`` so
    tests only queue the classification replies they care about.
    """

    def __init__(self, replies=(), composers="[]"):
        self.replies = list(replies)
        self.composers = composers
        self.calls = []

    def generate(self, system, text, images=(), max_output_tokens=1024):
        self.calls.append({"system": system, "text": text, "images": list(images)})
        if system == COMPOSER_PROMPT:
            return self.composers
        if not self.replies:
            raise RuntimeError("no reply queued")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, (dict, list)):
            return json.dumps(reply, ensure_ascii=False)
        return reply

    @property
    def tag_calls(self):
        return [call for call in self.calls if call["system"] != COMPOSER_PROMPT]


def fake_image_fetcher(urls, limit=3):
    return [f"jpeg:{url}".encode() for url in list(urls)[:limit]]


class Sleeps(list):
    def __call__(self, seconds):
        self.append(seconds)


@pytest.fixture
def sleeps():
    return Sleeps()


@pytest.fixture
def make_extractor():
    def _make(replies=(), composers="[]", image_fetcher=fake_image_fetcher, taxonomy=None):
        client = FakeClient(replies, composers)
        kwargs = {"client": client, "image_fetcher": image_fetcher}
        if taxonomy is not None:
            kwargs["taxonomy"] = taxonomy
        return TagExtractor(**kwargs), client

    return _make


@pytest.fixture
def local_store(tmp_path):
    return LocalStore(tmp_path / "concerts.db")


@pytest.fixture
def mini_taxonomy():
    return Taxonomy(
        categories={
            COMPOSER: ["바흐", "모차르트", "리스트"],
            PERFORMER: ["조성진"],
            FOREIGN_PERFORMER: ["랑랑"],
            WORK_FORM: ["협주곡", "리사이틀"],
            INSTRUMENT: ["피아노", "오케스트라"],
            ERA: ["바로크", "고전", "낭만"],
        },
        era_map={"바로크": ["바흐"], "고전": ["모차르트"], "낭만": ["리스트"]},
        aliases={"모짜르트": "모차르트"},
        known_composers={"텔레만": "바로크"},
        masked_words=("첼리스트",),
    )
