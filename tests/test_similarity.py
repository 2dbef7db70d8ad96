from datetime import datetime, timedelta

import pytest

from idea_recommender.ml.similarity import diversity_distance, find_similar_users, rank_similar_users
from idea_recommender.models.records import IdeaRecord

NOW = datetime(2024, 5, 1)


def test_similarity_counts_distinct_shared_items():
    source = {"a", "b", "c", "d"}
    pairs = [("u1", "a"), ("u1", "a"), ("u1", "b"), ("u2", "c"), ("u3", "zzz")]

    ranked = rank_similar_users(source, pairs)

    assert ranked == [("u1", 0.5), ("u2", 0.25)]


def test_similarity_threshold_is_exclusive():
    source = {str(i) for i in range(10)}
    pairs = [("edge", "0"), ("above", "0"), ("above", "1")]

    ranked = rank_similar_users(source, pairs)

    assert [u for u, _ in ranked] == ["above"]


def test_similarity_keeps_top_n():
    source = {"a"}
    pairs = [(f"u{i}", "a") for i in range(15)]

    ranked = rank_similar_users(source, pairs, top_n=10)

    assert len(ranked) == 10
    assert ranked[0] == ("u0", 1.0)


def test_find_similar_users_reads_engagements(store, add_idea, add_behavior):
    for item in ("i1", "i2"):
        add_idea(item, category="ai")
    add_behavior("me", "i1", "view")
    add_behavior("me", "i2", "like")
    add_behavior("twin", "i1", "like")
    add_behavior("twin", "i2", "bookmark")
    add_behavior("viewer", "i1", "view")

    similar = find_similar_users("me", store.recent_behaviors("me"), store)

    assert similar == [("twin", 1.0)]


def test_identical_items_have_zero_distance():
    a = IdeaRecord(id="a", title="A", category="ai", community="python", created_at=NOW)
    assert diversity_distance(a, a) == 0.0


def test_distance_components():
    base = IdeaRecord(id="a", title="A", category="ai", community="python", created_at=NOW)
    other_category = IdeaRecord(id="b", title="B", category="devops", community="python", created_at=NOW)
    other_community = IdeaRecord(id="c", title="C", category="ai", community="golang", created_at=NOW)
    no_community = IdeaRecord(id="d", title="D", category="ai", created_at=NOW + timedelta(days=15))
    far = IdeaRecord(id="e", title="E", category="devops", community="golang", created_at=NOW + timedelta(days=90))

    assert diversity_distance(base, other_category) == pytest.approx(0.4)
    assert diversity_distance(base, other_community) == pytest.approx(0.3)
    assert diversity_distance(base, no_community) == pytest.approx(0.15)
    assert diversity_distance(base, far) == pytest.approx(1.0)
