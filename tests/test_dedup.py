from harvester.adapters.structured_data import StructuredDataExtractor
from harvester.layers.dedup import Deduplicator
from harvester.layers.payload import map_review
from harvester.models.review import Review


def make_review(**fields):
    return Review(product_id="1", **fields)


def test_review_id_key():
    review = make_review(review_id="9", comment="a")
    assert review.dedup_key == "1:9"


def test_fallback_key_uses_timestamp_and_comment_prefix():
    review = make_review(created_at_timestamp=1700000000000, comment="x" * 100)
    assert review.dedup_key == "1:1700000000000:" + "x" * 80


def test_accepts_each_key_once():
    dedup = Deduplicator()
    first = make_review(review_id="9", comment="a")
    same_id = make_review(review_id="9", comment="different text")

    assert dedup.accept(first)
    assert not dedup.accept(same_id)
    assert same_id in dedup
    assert len(dedup) == 1


def test_same_comment_for_different_products_is_distinct():
    dedup = Deduplicator()

    assert dedup.accept(Review(product_id="1", comment="Nice"))
    assert dedup.accept(Review(product_id="2", comment="Nice"))


def test_comments_differing_after_prefix_collide():
    dedup = Deduplicator()
    base = "y" * 80

    assert dedup.accept(make_review(comment=base + "first"))
    assert not dedup.accept(make_review(comment=base + "second"))


def test_same_review_from_either_source_is_accepted_once(target):
    from_markup = StructuredDataExtractor().map_review(
        {"identifier": "5", "reviewBody": "From the page"}, target
    )
    from_api = map_review({"id": 5, "comment": "From the API"}, target)

    for first, second in ((from_markup, from_api), (from_api, from_markup)):
        dedup = Deduplicator()
        assert dedup.accept(first)
        assert not dedup.accept(second)
