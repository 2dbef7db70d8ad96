import asyncio
from datetime import datetime

import pytest

from idea_recommender.ml.strategies import (
    StrategyEngine,
    StrategyResult,
    content_score,
    idea_quality,
    mmr_select,
    serendipity_component,
    tally_trending,
)
from idea_recommender.models.records import (
    ActionType,
    BehaviorEvent,
    IdeaRecord,
    RecommendationStrategy,
    ScoredCandidate,
    UserPreferenceVector,
)

NOW = datetime(2024, 5, 1)


class FakeStore:
    def __init__(self, ideas=(), engagements=(), profile=None):
        self.ideas = list(ideas)
        self.engagements = list(engagements)
        self.profile = profile

    def public_ideas(self, exclude_author=None, limit=500):
        return [i for i in self.ideas if i.author_id != exclude_author][:limit]

    def engagements_since(self, since, actions):
        return list(self.engagements)

    def get_preference_vector(self, user_id):
        return self.profile

    def upsert_preference_vector(self, vector):
        return True

    def recent_behaviors(self, user_id, limit=100):
        return []


def _idea(item_id, category=None, community=None, complexity=None, **kw):
    return IdeaRecord(id=item_id, title=item_id, category=category, community=community,
                      complexity=complexity, created_at=NOW, **kw)


def _candidate(item, score):
    return ScoredCandidate(item=item, score=score, reason="r", confidence=0.5,
                           strategy=RecommendationStrategy.HYBRID)


def _profile(categories=None, communities=None, complexity=0.5):
    return UserPreferenceVector(user_id="u", category_weights=categories or {},
                                community_weights=communities or {}, complexity_preference=complexity)


def test_content_score_terms():
    profile = _profile({"ai": 0.5}, {"python": 1.0}, complexity=0.2)
    score, factors = content_score(_idea("x", "ai", "python", complexity=0.2), profile)

    assert score == pytest.approx(0.4 * 0.5 + 0.4 * 1.0 + 0.2)
    assert factors == ["category ai", "r/python"]


@pytest.mark.parametrize("weight, admitted", [(0.74, False), (0.76, True)])
def test_content_admission_boundary(weight, admitted):
    # complexity term is zero: item at 1.0, user at 0.0
    profile = _profile({"ai": weight}, complexity=0.0)
    engine = StrategyEngine(FakeStore(ideas=[_idea("x", "ai", complexity=1.0)]))

    result = engine.content_based("u", profile, limit=10)

    assert (not result.is_empty) is admitted
    if admitted:
        assert result.candidates[0].score == pytest.approx(0.4 * weight)
        assert result.candidates[0].confidence == pytest.approx(min(0.4 * weight * 1.2, 1.0))
    else:
        assert result.empty_reason == "below_threshold"


def test_content_based_without_profile():
    result = StrategyEngine(FakeStore()).content_based("u", None, limit=5)
    assert result.is_empty
    assert result.empty_reason == "no_profile"


def test_content_based_skips_excluded_items_before_truncating():
    ideas = [_idea("seen", "ai"), _idea("fresh", "ai"), _idea("other", "ai")]
    engine = StrategyEngine(FakeStore(ideas=ideas))

    result = engine.content_based("u", _profile({"ai": 1.0}), limit=2, exclude={"seen"})

    assert [c.item_id for c in result.candidates] == ["fresh", "other"]


def test_mmr_with_full_relevance_weight_keeps_relevance_order():
    items = [_idea(c, category=c) for c in "abcde"]
    candidates = [_candidate(item, s) for item, s in zip(items, (0.9, 0.8, 0.7, 0.6, 0.5))]

    picked = mmr_select(candidates, 3, diversity_weight=1.0)

    assert [c.item_id for c in picked] == ["a", "b", "c"]


def test_mmr_with_zero_weight_maximizes_distance():
    candidates = [
        _candidate(_idea("a", "ai"), 0.9),
        _candidate(_idea("b", "ai"), 0.85),
        _candidate(_idea("c", "devops"), 0.1),
    ]

    picked = mmr_select(candidates, 2, diversity_weight=0.0)

    assert [c.item_id for c in picked] == ["a", "c"]


def test_mmr_returns_small_pools_unchanged():
    candidates = [_candidate(_idea("a"), 0.2), _candidate(_idea("b"), 0.1)]
    assert mmr_select(candidates, 5, 0.3) == candidates


def test_trending_tally_weights_and_breakdown():
    a, b = _idea("a"), _idea("b")
    tallies = tally_trending([
        (a, ActionType.LIKE),
        (a, ActionType.LIKE),
        (b, ActionType.GENERATE_ARTIFACT),
        (a, ActionType.VIEW),
    ])

    assert [t.item.id for t in tallies] == ["b", "a"]
    assert tallies[1].total == 2.0
    assert tallies[1].breakdown() == "2 likes, 0 bookmarks, 0 generated PRDs"


def test_trending_scores_and_confidence():
    a = _idea("a")
    engine = StrategyEngine(FakeStore(engagements=[(a, ActionType.BOOKMARK)] * 3))

    result = engine.trending(limit=5)

    top = result.candidates[0]
    assert top.strategy is RecommendationStrategy.TRENDING
    assert top.score == pytest.approx(0.6)
    assert top.confidence == pytest.approx(0.4)


def test_trending_empty_without_engagement():
    result = StrategyEngine(FakeStore()).trending(limit=5)
    assert result.empty_reason == "no_recent_engagement"


def test_trending_excludes_before_limit():
    hot, warm = _idea("hot"), _idea("warm")
    engagements = [(hot, ActionType.BOOKMARK)] * 2 + [(warm, ActionType.LIKE)]
    engine = StrategyEngine(FakeStore(engagements=engagements))

    assert [c.item_id for c in engine.trending(limit=1, exclude={"hot"}).candidates] == ["warm"]
    assert engine.trending(limit=1, exclude={"hot", "warm"}).empty_reason == "no_recent_engagement"


def test_personalized_trending_boosts_preferred_category():
    ai, devops = _idea("ai-item", "ai"), _idea("devops-item", "devops")
    engagements = [(ai, ActionType.LIKE)] * 5 + [(devops, ActionType.BOOKMARK)] * 3
    engine = StrategyEngine(FakeStore(engagements=engagements))

    result = engine.personalized_trending(_profile({"ai": 1.0}), limit=2)

    assert [c.item_id for c in result.candidates] == ["ai-item", "devops-item"]
    assert result.candidates[0].score == pytest.approx(0.75)
    assert result.candidates[0].strategy is RecommendationStrategy.PERSONALIZED_TRENDING


def test_idea_quality_caps_at_one():
    assert idea_quality(_idea("a")) == 0.5
    assert idea_quality(_idea("a", likes_count=10)) == pytest.approx(0.7)
    assert idea_quality(_idea("a", likes_count=500, bookmarks_count=500, description_length=300)) == 1.0


def test_serendipity_component():
    item = _idea("a", "ai", "python")
    assert serendipity_component(item, set(), set()) == (1.0, True, True)
    assert serendipity_component(item, {"ai"}, set()) == (0.4, False, True)
    assert serendipity_component(item, {"ai"}, {"python"})[0] == 0.0


def test_serendipity_skips_seen_and_low_quality_items():
    seen = _idea("seen", "robotics", likes_count=40)
    novel = _idea("novel", "robotics", "hardware", likes_count=10)
    plain = _idea("plain", "biotech")
    familiar = _idea("familiar", "ai", likes_count=40)
    engine = StrategyEngine(FakeStore(ideas=[seen, novel, plain, familiar]))
    behaviors = [
        BehaviorEvent(user_id="u", item_id="seen", action_type=ActionType.VIEW, occurred_at=NOW),
        BehaviorEvent(user_id="u", item_id="old", action_type=ActionType.LIKE, occurred_at=NOW, category="ai"),
    ]

    result = engine.serendipity("u", behaviors, limit=5)

    assert [c.item_id for c in result.candidates] == ["novel"]
    assert result.candidates[0].score == pytest.approx(0.7)
    assert "new community r/hardware" in result.candidates[0].supporting_evidence


def test_collaborative_scores_by_distinct_supporters(store, add_idea, add_behavior):
    for item in ("i1", "i2", "i3", "i4"):
        add_idea(item, category="ai")
    add_behavior("me", "i1", "like")
    add_behavior("me", "i2", "like")
    add_behavior("twin", "i1", "like")
    add_behavior("twin", "i2", "like")
    add_behavior("twin", "i3", "bookmark")
    add_behavior("twin", "i3", "like")
    add_behavior("cousin", "i1", "like")
    add_behavior("cousin", "i3", "like")
    add_behavior("cousin", "i4", "generate_artifact")
    engine = StrategyEngine(store)

    result = engine.collaborative("me", engine.behaviors("me"), limit=5)

    by_id = {c.item_id: c for c in result.candidates}
    assert [c.item_id for c in result.candidates] == ["i3", "i4"]
    assert by_id["i3"].score == pytest.approx(1.0)
    assert set(by_id["i3"].supporting_evidence) == {"twin", "cousin"}
    assert by_id["i4"].score == pytest.approx(0.5)
    assert by_id["i4"].reason == "1 similar users liked this idea"


def test_collaborative_without_behaviors():
    result = StrategyEngine(FakeStore()).collaborative("u", [], limit=5)
    assert result.empty_reason == "no_behaviors"


def test_hybrid_blends_collaborative_and_content():
    x, y, z = _idea("x"), _idea("y"), _idea("z")
    engine = StrategyEngine(FakeStore())
    engine.collaborative = lambda user_id, behaviors, limit, exclude: StrategyResult([
        ScoredCandidate(x, 1.0, "2 similar users liked this idea", 0.4, RecommendationStrategy.COLLABORATIVE, ["u2"]),
        ScoredCandidate(z, 0.5, "1 similar users liked this idea", 0.2, RecommendationStrategy.COLLABORATIVE, ["u3"]),
    ])
    engine.content_based = lambda user_id, profile, limit, exclude: StrategyResult([
        ScoredCandidate(y, 0.9, "Matches your interests: category ai", 0.9, RecommendationStrategy.CONTENT_BASED, ["category ai"]),
        ScoredCandidate(x, 0.5, "Matches your interests: r/python", 0.6, RecommendationStrategy.CONTENT_BASED, ["r/python"]),
    ])

    result = asyncio.run(engine.hybrid("u", None, [], limit=3))

    assert [c.item_id for c in result.candidates] == ["x", "y", "z"]
    assert [c.score for c in result.candidates] == pytest.approx([0.8, 0.36, 0.3])
    assert all(c.strategy is RecommendationStrategy.HYBRID for c in result.candidates)
    assert result.candidates[0].supporting_evidence == ["u2", "r/python"]
    assert " + " in result.candidates[0].reason


def test_hybrid_reports_both_empty_reasons():
    engine = StrategyEngine(FakeStore())

    result = asyncio.run(engine.hybrid("u", None, [], limit=3))

    assert result.empty_reason == "no_behaviors+no_profile"


def _engine_with_pool(scored):
    engine = StrategyEngine(FakeStore())

    async def pool(user_id, profile, behaviors, limit, exclude=frozenset()):
        return StrategyResult([_candidate(i, s) for i, s in scored])

    engine.hybrid = pool
    return engine


def test_diversity_maximizing_relabels_picks_after_the_first():
    engine = _engine_with_pool([(_idea("a", "ai"), 0.9), (_idea("b", "ai"), 0.8), (_idea("c", "devops"), 0.2)])

    result = asyncio.run(engine.diversity_maximizing("u", None, [], limit=2, diversity_weight=0.0))

    first, second = result.candidates
    assert (first.item_id, second.item_id) == ("a", "c")
    assert first.strategy is RecommendationStrategy.HYBRID
    assert first.reason == "r"
    assert second.strategy is RecommendationStrategy.DIVERSITY_MAXIMIZING
    assert second.reason == "r (diversity-aware)"


def test_diversity_maximizing_returns_small_pool_as_is():
    engine = _engine_with_pool([(_idea("a", "ai"), 0.9), (_idea("b", "devops"), 0.5)])

    result = asyncio.run(engine.diversity_maximizing("u", None, [], limit=2, diversity_weight=0.0))

    assert [c.item_id for c in result.candidates] == ["a", "b"]
    assert all(c.strategy is RecommendationStrategy.HYBRID for c in result.candidates)


def test_fallback_cannot_be_run_directly():
    engine = StrategyEngine(FakeStore())
    with pytest.raises(ValueError):
        asyncio.run(engine.run(RecommendationStrategy.FALLBACK, "u", 5, 0.3))
