import pytest

from concert_pipeline.taxonomy import COMPOSER, DEFAULT_TAXONOMY, ERA, Taxonomy


@pytest.mark.parametrize(
    "raw",
    [
        [],
        ["무소륵스키", "피아노"],
        ["바흐", "모짜르트", "없는태그", "바흐"],
        ["교향곡", "고전", "베토벤", "라흐마니노브", "근현대"],
    ],
)
def test_finalize_is_idempotent_and_closed_over_whitelist(raw):
    once = DEFAULT_TAXONOMY.finalize_tags(raw)
    assert DEFAULT_TAXONOMY.finalize_tags(once) == once
    assert set(once) <= DEFAULT_TAXONOMY.whitelist


def test_alias_normalization():
    assert DEFAULT_TAXONOMY.normalize_aliases(["무소륵스키"]) == ["무소르그스키"]
    assert DEFAULT_TAXONOMY.normalize_aliases(["무소르그스키"]) == ["무소르그스키"]


def test_era_inference():
    assert "바로크" in DEFAULT_TAXONOMY.add_era_tags(["바흐"])
    mixed = DEFAULT_TAXONOMY.add_era_tags(["바흐", "모차르트"])
    assert "바로크" in mixed and "고전" in mixed


def test_filter_keeps_input_order_and_drops_duplicates():
    tags = DEFAULT_TAXONOMY.filter_allowed_tags(["피아노", "모름", "바흐", "피아노"])
    assert tags == ["피아노", "바흐"]


def test_finalize_resolves_alias_then_adds_era():
    assert DEFAULT_TAXONOMY.finalize_tags(["무소륵스키"]) == ["무소르그스키", "낭만"]


def test_mask_hides_false_friends():
    masked = DEFAULT_TAXONOMY.mask("첼리스트 양성원")
    assert "리스트" not in masked
    assert "리스트" in DEFAULT_TAXONOMY.mask("리스트 초절기교 연습곡")


def test_mentions_matches_alias_spellings():
    source = DEFAULT_TAXONOMY.mask("차이콥스키 비창")
    assert DEFAULT_TAXONOMY.mentions("차이코프스키", source)
    assert not DEFAULT_TAXONOMY.mentions("말러", source)


def test_mini_taxonomy_is_usable(mini_taxonomy):
    assert mini_taxonomy.finalize_tags(["모짜르트", "베토벤"]) == ["모차르트", "고전"]
    assert mini_taxonomy.foreign_performers == ["랑랑"]


def test_rejects_era_member_outside_composer_category():
    with pytest.raises(ValueError, match="unknown composers"):
        Taxonomy(categories={COMPOSER: ["바흐"], ERA: ["바로크"]}, era_map={"바로크": ["헨델"]})


def test_rejects_alias_to_unknown_composer():
    with pytest.raises(ValueError, match="unknown composer"):
        Taxonomy(
            categories={COMPOSER: ["바흐"], ERA: ["바로크"]},
            era_map={"바로크": ["바흐"]},
            aliases={"핸델": "헨델"},
        )


def test_rejects_tag_in_two_categories():
    with pytest.raises(ValueError, match="both"):
        Taxonomy(categories={COMPOSER: ["리스트"], ERA: ["리스트"]}, era_map={})


def test_default_taxonomy_prompt_lists_every_category():
    prompt = DEFAULT_TAXONOMY.tag_list_prompt()
    for category in DEFAULT_TAXONOMY.categories:
        assert f"[{category}]" in prompt
