"""Recommendation orchestration.

Runs the requested strategy, post-processes its candidates (dedupe, history exclusion, truncation),
falls back to trending and then to recent public ideas when nothing survives, and records an
exposure row per delivered list.
"""
from __future__ import annotations
import asyncio
import logging
import time
import uuid
from typing import Any, Dict, Iterable, List, Optional, Set
from prometheus_client import Counter, Histogram
from idea_recommender.config import get_settings
from idea_recommender.infrastructure.store import DataStore
from idea_recommender.ml.strategies import StrategyEngine
from idea_recommender.models.records import ActionType, RecommendationStrategy, ScoredCandidate

logger = logging.getLogger(__name__)

RECOMMENDATION_REQUESTS = Counter('recommendation_requests_total', 'Recommendation requests', ['strategy'])
RECOMMENDATION_LATENCY = Histogram('recommendation_latency_seconds', 'Recommendation latency', ['strategy'],
                                   buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5))
RECOMMENDATION_FALLBACKS = Counter('recommendation_fallbacks_total', 'Fallback activations', ['stage'])
BEHAVIOR_EVENTS = Counter('behavior_events_tracked_total', 'Behavior events written', ['action'])


def post_process(candidates: Iterable[ScoredCandidate], exclude: Set[str], limit: int) -> List[ScoredCandidate]:
    """Keep the best-scoring candidate per item, drop excluded items, truncate.

    Strategy order is preserved: a higher-scoring duplicate replaces the earlier entry in place.
    """
    best: Dict[str, ScoredCandidate] = {}
    for c in candidates:
        if c.item_id in exclude:
            continue
        current = best.get(c.item_id)
        if current is None or c.score > current.score:
            best[c.item_id] = c
    return list(best.values())[:limit]


class RecommendationOrchestrator:
    def __init__(self, store: Optional[DataStore] = None, engine: Optional[StrategyEngine] = None):
        self.store = store or DataStore()
        self.engine = engine or StrategyEngine(self.store)
        self.settings = get_settings()

    def _clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.settings.default_recommendation_limit
        return max(1, min(int(limit), self.settings.max_recommendation_limit))

    async def get_recommendations(self, user_id: str, limit: Optional[int] = None,
                                  strategy: RecommendationStrategy = RecommendationStrategy.HYBRID,
                                  diversity_weight: Optional[float] = None) -> List[ScoredCandidate]:
        if strategy is RecommendationStrategy.FALLBACK:
            raise ValueError("fallback is not a requestable strategy")
        limit = self._clamp_limit(limit)
        weight = self.settings.default_diversity_weight if diversity_weight is None else diversity_weight
        if not 0.0 <= weight <= 1.0:
            raise ValueError("diversity_weight must be within [0, 1]")
        RECOMMENDATION_REQUESTS.labels(strategy=strategy.value).inc()
        start = time.time()

        interacted = await asyncio.to_thread(self.store.interacted_item_ids, user_id)
        result = await self.engine.run(strategy, user_id, limit, weight, exclude=interacted)
        served = strategy
        final = post_process(result.candidates, interacted, limit)
        if not final and strategy is not RecommendationStrategy.TRENDING:
            RECOMMENDATION_FALLBACKS.labels(stage="trending").inc()
            logger.info(f"{strategy.value} produced nothing for user {user_id}; falling back to trending")
            served = RecommendationStrategy.TRENDING
            result = await self.engine.run(RecommendationStrategy.TRENDING, user_id, limit, weight, exclude=interacted)
            final = post_process(result.candidates, interacted, limit)
        if not final:
            RECOMMENDATION_FALLBACKS.labels(stage="recent_public").inc()
            logger.info(f"Trending empty for user {user_id}; serving recent public ideas")
            served = RecommendationStrategy.FALLBACK
            result = await asyncio.to_thread(self.engine.recent_public, user_id, limit, interacted)
            final = post_process(result.candidates, interacted, limit)

        await asyncio.to_thread(self._record_exposure, user_id, strategy, served, final)
        RECOMMENDATION_LATENCY.labels(strategy=strategy.value).observe(time.time() - start)
        return final

    def _record_exposure(self, user_id: str, strategy: RecommendationStrategy,
                         served: RecommendationStrategy, final: List[ScoredCandidate]) -> None:
        try:
            self.store.insert_recommendation_metric(user_id, strategy, served, [c.item_id for c in final])
        except Exception as e:  # telemetry never fails delivery
            logger.error(f"Recommendation metric write failed for user {user_id}: {e}")

    def track_behavior(self, user_id: str, item_id: str, action_type: str | ActionType,
                       duration: Optional[float] = None, metadata: Optional[Dict[str, Any]] = None,
                       session_id: Optional[str] = None) -> str:
        """Append a behavior event and schedule the user's preference refresh.

        Category and community are filled from the idea when the caller did not send them. Returns the
        session id used. Raises ``ValueError`` for an unknown action and ``StoreError`` when the write
        fails.
        """
        action = action_type if isinstance(action_type, ActionType) else ActionType.parse(action_type)
        meta = dict(metadata or {})
        if "category" not in meta or "community" not in meta:
            idea = self.store.get_idea(item_id)
            if idea is not None:
                if idea.category:
                    meta.setdefault("category", idea.category)
                if idea.community:
                    meta.setdefault("community", idea.community)
        session_id = session_id or str(uuid.uuid4())
        self.store.insert_behavior(user_id, item_id, action, duration=duration, session_id=session_id, metadata=meta)
        BEHAVIOR_EVENTS.labels(action=action.value).inc()
        self._schedule_preference_refresh(user_id)
        return session_id

    def _schedule_preference_refresh(self, user_id: str) -> None:
        from idea_recommender.tasks.preferences import refresh_preference_vector
        try:
            if self.settings.app_env == "test":
                refresh_preference_vector(user_id)
            else:
                refresh_preference_vector.delay(user_id)
        except Exception as e:
            logger.warning(f"Preference refresh scheduling failed for user {user_id}: {e}")


_orchestrator: Optional[RecommendationOrchestrator] = None


def get_orchestrator() -> RecommendationOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = RecommendationOrchestrator()
    return _orchestrator


def reset_orchestrator():
    global _orchestrator
    _orchestrator = None


async def get_recommendations(user_id: str, limit: Optional[int] = None,
                              strategy: RecommendationStrategy = RecommendationStrategy.HYBRID,
                              diversity_weight: Optional[float] = None) -> List[ScoredCandidate]:
    return await get_orchestrator().get_recommendations(user_id, limit, strategy, diversity_weight)


def track_behavior(user_id: str, item_id: str, action_type: str, duration: Optional[float] = None,
                   metadata: Optional[Dict[str, Any]] = None, session_id: Optional[str] = None) -> str:
    return get_orchestrator().track_behavior(user_id, item_id, action_type, duration, metadata, session_id)
