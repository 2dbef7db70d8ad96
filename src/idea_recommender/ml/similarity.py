from __future__ import annotations
import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Sequence, Set, Tuple
from idea_recommender.infrastructure.store import DataStore
from idea_recommender.models.records import ActionType, BehaviorEvent, IdeaRecord

logger = logging.getLogger(__name__)

ENGAGEMENT_ACTIONS = (ActionType.LIKE, ActionType.BOOKMARK, ActionType.GENERATE_ARTIFACT)
MIN_USER_SIMILARITY = 0.1
MAX_SIMILAR_USERS = 10

CATEGORY_DISTANCE = 0.4
COMMUNITY_DISTANCE = 0.3
TIME_DISTANCE = 0.3
TIME_HORIZON_DAYS = 30.0


def rank_similar_users(source_items: Set[str], co_engagements: Iterable[Tuple[str, str]],
                       min_similarity: float = MIN_USER_SIMILARITY,
                       top_n: int = MAX_SIMILAR_USERS) -> List[Tuple[str, float]]:
    """Overlap normalized by the source user's item count (asymmetric).

    ``co_engagements`` are (other_user_id, item_id) pairs. Returns (user_id, similarity) pairs,
    descending, ties kept in first-seen order.
    """
    if not source_items:
        return []
    shared: Dict[str, Set[str]] = defaultdict(set)
    for other, item_id in co_engagements:
        if item_id in source_items:
            shared[other].add(item_id)
    scored = [(u, len(items) / len(source_items)) for u, items in shared.items()]
    scored = [s for s in scored if s[1] > min_similarity]
    scored.sort(key=lambda s: s[1], reverse=True)
    return scored[:top_n]


def find_similar_users(user_id: str, behaviors: Sequence[BehaviorEvent], store: DataStore) -> List[Tuple[str, float]]:
    source_items = {b.item_id for b in behaviors}
    if not source_items:
        return []
    pairs = store.co_engagements(sorted(source_items), exclude_user=user_id, actions=ENGAGEMENT_ACTIONS)
    similar = rank_similar_users(source_items, pairs)
    logger.debug(f"User {user_id}: {len(similar)} similar users from {len(pairs)} co-engagements")
    return similar


def _days_apart(a: datetime | None, b: datetime | None) -> float:
    if a is None or b is None:
        return 0.0
    return abs((a - b).total_seconds()) / 86400.0


def diversity_distance(a: IdeaRecord, b: IdeaRecord) -> float:
    """Dissimilarity in [0, 1] from category, community and publication-time gaps."""
    distance = 0.0
    if a.category != b.category:
        distance += CATEGORY_DISTANCE
    if a.community and b.community and a.community != b.community:
        distance += COMMUNITY_DISTANCE
    distance += TIME_DISTANCE * min(_days_apart(a.created_at, b.created_at) / TIME_HORIZON_DAYS, 1.0)
    return min(distance, 1.0)
