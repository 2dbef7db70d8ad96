"""User preference vectors and item feature summaries.

Both structures are derived data: they are recomputed from the behavior log and idea metadata and
upserted, never edited in place.
"""
from __future__ import annotations
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Sequence
from prometheus_client import Counter
from idea_recommender.config import get_settings
from idea_recommender.infrastructure.store import DataStore
from idea_recommender.models.records import (
    ActionType,
    BehaviorEvent,
    IdeaRecord,
    ItemFeatureSummary,
    UserPreferenceVector,
)

logger = logging.getLogger(__name__)

ACTION_WEIGHTS: Dict[ActionType, float] = {
    ActionType.VIEW: 1.0,
    ActionType.LIKE: 3.0,
    ActionType.BOOKMARK: 4.0,
    ActionType.GENERATE_ARTIFACT: 5.0,
    ActionType.SHARE: 4.0,
    ActionType.COPY: 3.0,
}
DEFAULT_ACTION_WEIGHT = 1.0
NOVELTY_HORIZON = timedelta(days=30)
NEUTRAL_PREFERENCE = 0.5

PREFERENCE_REFRESHES = Counter('preference_vector_refresh_total', 'Preference vector recomputations', ['outcome'])
ITEM_FEATURE_ROWS = Counter('item_feature_rows_total', 'Item feature summaries written')


def action_weight(action: ActionType) -> float:
    return ACTION_WEIGHTS.get(action, DEFAULT_ACTION_WEIGHT)


def novelty_score(created_at: Optional[datetime], at: datetime) -> float:
    """1.0 for a brand-new item decaying linearly to 0.0 at 30 days old."""
    if created_at is None:
        return NEUTRAL_PREFERENCE
    age = (at - created_at).total_seconds() / NOVELTY_HORIZON.total_seconds()
    return min(max(1.0 - age, 0.0), 1.0)


def _normalize(buckets: Mapping[str, float]) -> Dict[str, float]:
    total = sum(buckets.values())
    if total <= 0:
        return {}
    return {k: v / total for k, v in buckets.items()}


def build_preference_vector(user_id: str, events: Sequence[BehaviorEvent],
                            now: Optional[datetime] = None) -> Optional[UserPreferenceVector]:
    """Aggregate a user's behaviors into a normalized interest profile.

    Each event adds its action weight to its category and community buckets. Each map is divided by
    the weight it received so it sums to 1. Returns None when there are no events so the caller can
    branch to a non-personalized strategy.
    """
    if not events:
        return None
    categories: Dict[str, float] = defaultdict(float)
    communities: Dict[str, float] = defaultdict(float)
    complexity_sum = complexity_w = 0.0
    novelty_sum = novelty_w = 0.0
    for ev in events:
        w = action_weight(ev.action_type)
        if ev.category:
            categories[ev.category] += w
        if ev.community:
            communities[ev.community] += w
        if ev.item_complexity is not None:
            complexity_sum += w * min(max(ev.item_complexity, 0.0), 1.0)
            complexity_w += w
        if ev.item_created_at is not None:
            novelty_sum += w * novelty_score(ev.item_created_at, ev.occurred_at)
            novelty_w += w
    return UserPreferenceVector(
        user_id=user_id,
        category_weights=_normalize(categories),
        community_weights=_normalize(communities),
        complexity_preference=complexity_sum / complexity_w if complexity_w else NEUTRAL_PREFERENCE,
        novelty_preference=novelty_sum / novelty_w if novelty_w else NEUTRAL_PREFERENCE,
        interaction_count=len(events),
        last_updated=now or datetime.utcnow(),
    )


def summarize_item_features(items: Iterable[IdeaRecord],
                            engagement: Mapping[str, Mapping[ActionType, int]],
                            now: Optional[datetime] = None) -> List[ItemFeatureSummary]:
    """Derive per-item signals; popularity is normalized by the busiest item in the batch."""
    now = now or datetime.utcnow()
    items = list(items)
    raw_popularity: Dict[str, float] = {}
    for item in items:
        counts = engagement.get(item.id, {})
        raw_popularity[item.id] = sum(action_weight(a) * n for a, n in counts.items())
    peak = max(raw_popularity.values(), default=0.0)
    summaries = []
    for item in items:
        summaries.append(ItemFeatureSummary(
            item_id=item.id,
            category=item.category,
            community=item.community,
            complexity_score=item.complexity if item.complexity is not None else NEUTRAL_PREFERENCE,
            popularity_score=raw_popularity[item.id] / peak if peak > 0 else 0.0,
            novelty_score=novelty_score(item.created_at, now),
            last_updated=now,
        ))
    return summaries


def refresh_user_preferences(user_id: str, store: Optional[DataStore] = None) -> Optional[UserPreferenceVector]:
    """Rebuild and upsert one user's vector. A failed upsert still returns the fresh vector."""
    store = store or DataStore()
    events = store.recent_behaviors(user_id, limit=get_settings().behavior_lookback)
    vector = build_preference_vector(user_id, events)
    if vector is None:
        PREFERENCE_REFRESHES.labels(outcome="no_behaviors").inc()
        logger.info(f"No behaviors for user {user_id}; preference vector not built")
        return None
    if store.upsert_preference_vector(vector):
        PREFERENCE_REFRESHES.labels(outcome="stored").inc()
    else:
        PREFERENCE_REFRESHES.labels(outcome="store_failed").inc()
    return vector


def refresh_item_features(limit: Optional[int] = None, store: Optional[DataStore] = None) -> int:
    store = store or DataStore()
    items = store.public_ideas(limit=limit or get_settings().candidate_pool_size)
    if not items:
        return 0
    counts = store.engagement_counts([i.id for i in items])
    written = store.upsert_item_features(summarize_item_features(items, counts))
    ITEM_FEATURE_ROWS.inc(written)
    logger.info(f"Item feature summaries refreshed: {written}/{len(items)}")
    return written
