from datetime import datetime, timedelta

import pytest

from idea_recommender.analytics import engagement_trends, get_dashboard_data, strategy_rollup
from idea_recommender.analytics.dashboard import attribute_exposures
from idea_recommender.models.records import ActionType, BehaviorEvent, RecommendationStrategy
from idea_recommender.tasks.experiments import create_experiment, log_experiment_event

NOON = datetime(2024, 5, 1, 12, 0, 0)


def _event(user, item, action, at, duration=None):
    return BehaviorEvent(user_id=user, item_id=item, action_type=action, occurred_at=at, duration_seconds=duration)


def _exposure(user, strategy, items, at=NOON):
    return {"user_id": user, "strategy": strategy, "served_strategy": strategy, "item_ids": items, "timestamp": at}


def test_exposures_are_attributed_to_later_behavior():
    exposures = [
        _exposure("u1", "hybrid", ["a", "b"]),
        _exposure("u2", "hybrid", ["c"]),
        _exposure("u3", "trending", ["d"]),
    ]
    behaviors = [
        _event("u1", "a", ActionType.VIEW, NOON + timedelta(minutes=1)),
        _event("u1", "b", ActionType.LIKE, NOON + timedelta(minutes=2)),
        _event("u2", "c", ActionType.CLICK, NOON - timedelta(minutes=5)),
        _event("u3", "d", ActionType.CLICK, NOON + timedelta(minutes=1)),
        _event("u3", "zzz", ActionType.LIKE, NOON + timedelta(minutes=1)),
    ]

    rollup = strategy_rollup(attribute_exposures(exposures, behaviors))

    assert rollup["total_recommendations_today"] == 3
    assert rollup["avg_ctr_today"] == pytest.approx(2 / 3)
    assert rollup["avg_conversion_rate_today"] == pytest.approx(0.5)
    hybrid = rollup["strategy_performance"]["hybrid"]
    assert (hybrid["impressions"], hybrid["clicks"], hybrid["conversions"]) == (2, 1, 1)
    assert hybrid["ctr"] == pytest.approx(0.5)
    assert hybrid["conversion_rate"] == pytest.approx(1.0)
    assert rollup["strategy_performance"]["trending"]["conversion_rate"] == 0.0


def test_empty_rollup():
    rollup = strategy_rollup(attribute_exposures([], []))
    assert rollup["total_recommendations_today"] == 0
    assert rollup["strategy_performance"] == {}


def test_engagement_trends_by_day():
    day1, day2 = NOON - timedelta(days=1), NOON
    behaviors = [
        _event("u1", "a", ActionType.VIEW, day1, duration=30),
        _event("u1", "b", ActionType.VIEW, day1, duration=10),
        _event("u2", "a", ActionType.LIKE, day1),
        _event("u1", "c", ActionType.VIEW, day2, duration=5),
    ]

    trends = engagement_trends(behaviors)

    assert [t["date"] for t in trends] == ["2024-04-30", "2024-05-01"]
    assert trends[0]["total_users"] == 2
    assert trends[0]["avg_session_duration"] == pytest.approx(20.0)
    assert trends[0]["recommendations_per_user"] == pytest.approx(1.5)
    assert trends[1]["total_users"] == 1


def test_dashboard_data(store, add_idea, add_behavior):
    add_idea("i1", category="ai")
    exp = create_experiment("hybrid vs trending", "hybrid", "trending", activate=True, store=store)
    create_experiment("draft", "hybrid", "serendipity", store=store)
    log_experiment_event(exp.id, "u1", "A", "impression", "i1", store=store)
    store.insert_recommendation_metric("u1", RecommendationStrategy.HYBRID, RecommendationStrategy.TRENDING, ["i1"],
                                       timestamp=datetime.utcnow() - timedelta(seconds=5))
    add_behavior("u1", "i1", "view")

    data = get_dashboard_data(store=store)

    assert [e.id for e in data["active_experiments"]] == [exp.id]
    assert data["experiment_performances"][exp.id][0].impressions == 1
    assert data["statistical_results"][exp.id] == []
    assert data["recommendation_metrics"]["strategy_performance"]["hybrid"]["clicks"] == 1
    assert data["weekly_summary"]["active_users"] == 1
    assert len(data["user_engagement_trends"]) == 1
