"""Read-only dashboard rollups over experiments, recommendation exposures and behavior."""
from __future__ import annotations
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import pandas as pd
from idea_recommender.infrastructure.store import DataStore, StoreError
from idea_recommender.models.records import ActionType, BehaviorEvent, ExperimentStatus
from idea_recommender.tasks.experiments import compute_experiment_performance

logger = logging.getLogger(__name__)

CLICK_ACTIONS = frozenset({ActionType.CLICK, ActionType.VIEW})
CONVERSION_ACTIONS = frozenset({ActionType.LIKE, ActionType.BOOKMARK, ActionType.GENERATE_ARTIFACT, ActionType.SHARE})
TREND_DAYS = 7


def attribute_exposures(exposures: List[Dict[str, Any]], behaviors: List[BehaviorEvent]) -> pd.DataFrame:
    """One row per delivered list with whether the user clicked / converted on any listed item afterwards."""
    by_user: Dict[str, List[BehaviorEvent]] = defaultdict(list)
    for b in behaviors:
        by_user[b.user_id].append(b)
    rows = []
    for exp in exposures:
        listed = set(exp["item_ids"])
        after = [b for b in by_user.get(exp["user_id"], []) if b.item_id in listed and b.occurred_at >= exp["timestamp"]]
        rows.append({
            "strategy": exp["strategy"],
            "clicked": any(b.action_type in CLICK_ACTIONS for b in after),
            "converted": any(b.action_type in CONVERSION_ACTIONS for b in after),
        })
    return pd.DataFrame(rows, columns=["strategy", "clicked", "converted"])


def _rates(clicks: int, conversions: int, impressions: int) -> Dict[str, float]:
    return {
        "ctr": clicks / impressions if impressions else 0.0,
        "conversion_rate": conversions / clicks if clicks else 0.0,
    }


def strategy_rollup(frame: pd.DataFrame) -> Dict[str, Any]:
    if frame.empty:
        return {
            "total_recommendations_today": 0,
            "avg_ctr_today": 0.0,
            "avg_conversion_rate_today": 0.0,
            "strategy_performance": {},
        }
    grouped = frame.groupby("strategy").agg(
        impressions=("clicked", "size"), clicks=("clicked", "sum"), conversions=("converted", "sum")
    )
    per_strategy = {}
    for strategy, row in grouped.iterrows():
        impressions, clicks, conversions = int(row.impressions), int(row.clicks), int(row.conversions)
        per_strategy[strategy] = {
            "impressions": impressions,
            "clicks": clicks,
            "conversions": conversions,
            **_rates(clicks, conversions, impressions),
        }
    totals = _rates(int(frame["clicked"].sum()), int(frame["converted"].sum()), len(frame))
    return {
        "total_recommendations_today": len(frame),
        "avg_ctr_today": totals["ctr"],
        "avg_conversion_rate_today": totals["conversion_rate"],
        "strategy_performance": per_strategy,
    }


def engagement_trends(behaviors: List[BehaviorEvent]) -> List[Dict[str, Any]]:
    """Daily active users, mean time spent per user and events per user, oldest day first."""
    if not behaviors:
        return []
    df = pd.DataFrame({
        "date": [b.occurred_at.date().isoformat() for b in behaviors],
        "user_id": [b.user_id for b in behaviors],
        "duration": [b.duration_seconds or 0.0 for b in behaviors],
    })
    daily = df.groupby("date").agg(users=("user_id", "nunique"), duration=("duration", "sum"), events=("user_id", "size"))
    return [
        {
            "date": date,
            "total_users": int(row.users),
            "avg_session_duration": float(row.duration) / int(row.users),
            "recommendations_per_user": int(row.events) / int(row.users),
        }
        for date, row in daily.sort_index().iterrows()
    ]


def get_dashboard_data(store: Optional[DataStore] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    store = store or DataStore()
    now = now or datetime.utcnow()
    try:
        active = store.list_experiments(ExperimentStatus.ACTIVE)
    except StoreError as e:
        logger.error(f"Dashboard could not list active experiments: {e}")
        active = []
    performances: Dict[str, Any] = {}
    statistical_results: Dict[str, Any] = {}
    for exp in active:
        try:
            performances[exp.id] = compute_experiment_performance(exp.id, store)
        except StoreError as e:
            logger.error(f"Dashboard performance read failed for {exp.id}: {e}")
            performances[exp.id] = []
        statistical_results[exp.id] = store.stored_statistical_tests(exp.id)

    day_start = datetime(now.year, now.month, now.day)
    week_start = day_start - timedelta(days=TREND_DAYS - 1)
    exposures = store.recommendation_metrics_between(day_start, now + timedelta(seconds=1))
    week_behaviors = store.behaviors_between(week_start, now + timedelta(seconds=1))
    today_behaviors = [b for b in week_behaviors if b.occurred_at >= day_start]
    recommendation_metrics = strategy_rollup(attribute_exposures(exposures, today_behaviors))
    trends = engagement_trends(week_behaviors)

    return {
        "active_experiments": active,
        "experiment_performances": performances,
        "statistical_results": statistical_results,
        "recommendation_metrics": recommendation_metrics,
        "user_engagement_trends": trends,
        "weekly_summary": {
            "days": TREND_DAYS,
            "active_users": len({b.user_id for b in week_behaviors}),
            "behavior_events": len(week_behaviors),
            "engaged_days": len(trends),
        },
        "generated_at": now,
    }
