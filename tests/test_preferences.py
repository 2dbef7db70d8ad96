from datetime import datetime, timedelta

import pytest

from idea_recommender.ml.preferences import (
    build_preference_vector,
    novelty_score,
    refresh_item_features,
    refresh_user_preferences,
    summarize_item_features,
)
from idea_recommender.models.records import ActionType, BehaviorEvent, IdeaRecord

NOW = datetime(2024, 5, 1, 12, 0, 0)


def _event(action, category=None, community=None, complexity=None, created=None, item="i"):
    return BehaviorEvent(
        user_id="u",
        item_id=item,
        action_type=action,
        occurred_at=NOW,
        category=category,
        community=community,
        item_complexity=complexity,
        item_created_at=created,
    )


def test_three_ai_likes_and_one_devops_like():
    events = [_event(ActionType.LIKE, "ai")] * 3 + [_event(ActionType.LIKE, "devops")]

    vector = build_preference_vector("u", events, now=NOW)

    assert vector.category_weights == pytest.approx({"ai": 0.75, "devops": 0.25})
    assert vector.interaction_count == 4


def test_weights_are_normalized_per_map():
    events = [
        _event(ActionType.VIEW, "ai", "python"),
        _event(ActionType.BOOKMARK, "devops"),
        _event(ActionType.GENERATE_ARTIFACT, "ai", "startups"),
        _event(ActionType.SHARE, None, "python"),
    ]

    vector = build_preference_vector("u", events)

    assert sum(vector.category_weights.values()) == pytest.approx(1.0)
    assert sum(vector.community_weights.values()) == pytest.approx(1.0)
    assert all(w >= 0 for w in vector.category_weights.values())
    # community map only sees the events that carried a community
    assert vector.community_weights["python"] == pytest.approx(5 / 10)


def test_no_events_gives_no_vector():
    assert build_preference_vector("u", []) is None


def test_complexity_preference_is_action_weighted():
    events = [
        _event(ActionType.LIKE, "ai", complexity=1.0),
        _event(ActionType.VIEW, "ai", complexity=0.0),
        _event(ActionType.VIEW, "ai"),
    ]

    vector = build_preference_vector("u", events)

    assert vector.complexity_preference == pytest.approx(0.75)
    assert vector.novelty_preference == pytest.approx(0.5)


def test_novelty_decays_over_thirty_days():
    assert novelty_score(NOW, NOW) == pytest.approx(1.0)
    assert novelty_score(NOW - timedelta(days=15), NOW) == pytest.approx(0.5)
    assert novelty_score(NOW - timedelta(days=45), NOW) == 0.0
    assert novelty_score(None, NOW) == 0.5


def test_legacy_prd_action_is_read_as_artifact_generation():
    assert ActionType.parse("generate_prd") is ActionType.GENERATE_ARTIFACT
    with pytest.raises(ValueError):
        ActionType.parse("teleport")


def test_item_popularity_is_relative_to_busiest_item():
    items = [
        IdeaRecord(id="a", title="A", category="ai", complexity=0.8, created_at=NOW),
        IdeaRecord(id="b", title="B", category="ai", created_at=NOW - timedelta(days=30)),
        IdeaRecord(id="c", title="C"),
    ]
    engagement = {
        "a": {ActionType.LIKE: 2},
        "b": {ActionType.GENERATE_ARTIFACT: 3},
    }

    summaries = {s.item_id: s for s in summarize_item_features(items, engagement, now=NOW)}

    assert summaries["b"].popularity_score == pytest.approx(1.0)
    assert summaries["a"].popularity_score == pytest.approx(6 / 15)
    assert summaries["c"].popularity_score == 0.0
    assert summaries["a"].complexity_score == pytest.approx(0.8)
    assert summaries["b"].complexity_score == pytest.approx(0.5)
    assert summaries["a"].novelty_score == pytest.approx(1.0)
    assert summaries["b"].novelty_score == pytest.approx(0.0)


def test_refresh_user_preferences_persists_vector(store, add_idea, add_behavior):
    add_idea("i1", category="ai", community="MachineLearning", complexity=0.9)
    add_idea("i2", category="devops", community="sysadmin")
    add_behavior("u1", "i1", "bookmark")
    add_behavior("u1", "i2", "view")

    vector = refresh_user_preferences("u1", store=store)
    stored = store.get_preference_vector("u1")

    assert vector.category_weights == pytest.approx({"ai": 0.8, "devops": 0.2})
    assert stored.community_weights == pytest.approx({"MachineLearning": 0.8, "sysadmin": 0.2})
    assert stored.interaction_count == 2


def test_refresh_user_preferences_without_behaviors(store):
    assert refresh_user_preferences("ghost", store=store) is None
    assert store.get_preference_vector("ghost") is None


def test_refresh_item_features_writes_public_ideas(store, add_idea, add_behavior):
    add_idea("i1", category="ai")
    add_idea("i2", category="ai", is_public=False)
    add_behavior("u1", "i1", "like")

    written = refresh_item_features(store=store)
    features = store.get_item_features(["i1", "i2"])

    assert written == 1
    assert set(features) == {"i1"}
    assert features["i1"].popularity_score == pytest.approx(1.0)
