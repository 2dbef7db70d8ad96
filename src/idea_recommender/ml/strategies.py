"""Interchangeable ranking strategies.

Every strategy returns a ``StrategyResult``: candidates sorted by descending score with the caller's
``exclude`` ids already removed, or an empty list plus the reason it came back empty.
Strategies never raise for missing data; store failures surface as empty reads.
"""
from __future__ import annotations
import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import AbstractSet, Callable, Dict, List, Optional, Sequence, Set, Tuple
from prometheus_client import Counter
from idea_recommender.config import get_settings
from idea_recommender.infrastructure.store import DataStore
from idea_recommender.ml.preferences import build_preference_vector
from idea_recommender.ml.similarity import ENGAGEMENT_ACTIONS, diversity_distance, find_similar_users
from idea_recommender.models.records import (
    ActionType,
    BehaviorEvent,
    IdeaRecord,
    RecommendationStrategy,
    ScoredCandidate,
    UserPreferenceVector,
)

logger = logging.getLogger(__name__)

STRATEGY_EMPTY = Counter('recommendation_strategy_empty_total', 'Strategies that produced no candidates', ['strategy', 'reason'])

CONTENT_THRESHOLD = 0.3
DEFAULT_ITEM_COMPLEXITY = 0.5
HYBRID_COLLABORATIVE_WEIGHT = 0.6
HYBRID_CONTENT_WEIGHT = 0.4
TRENDING_WEIGHTS: Dict[ActionType, float] = {
    ActionType.LIKE: 1.0,
    ActionType.BOOKMARK: 2.0,
    ActionType.GENERATE_ARTIFACT: 3.0,
}
SERENDIPITY_THRESHOLD = 0.3
QUALITY_THRESHOLD = 0.5
FALLBACK_SCORE = 0.5
FALLBACK_CONFIDENCE = 0.3


@dataclass
class StrategyResult:
    candidates: List[ScoredCandidate] = field(default_factory=list)
    empty_reason: Optional[str] = None

    @classmethod
    def empty(cls, reason: str) -> "StrategyResult":
        return cls([], reason)

    @property
    def is_empty(self) -> bool:
        return not self.candidates


def _sorted(candidates: List[ScoredCandidate]) -> List[ScoredCandidate]:
    # stable: equal scores keep first-encountered order
    return sorted(candidates, key=lambda c: c.score, reverse=True)


# ---------------------------------------------------------------- pure scorers

def content_score(item: IdeaRecord, profile: UserPreferenceVector) -> Tuple[float, List[str]]:
    """0.4 category match + 0.4 community match + 0.2 complexity closeness."""
    factors: List[str] = []
    score = 0.0
    cat_w = profile.category_weights.get(item.category, 0.0) if item.category else 0.0
    if cat_w:
        score += 0.4 * cat_w
        factors.append(f"category {item.category}")
    comm_w = profile.community_weights.get(item.community, 0.0) if item.community else 0.0
    if comm_w:
        score += 0.4 * comm_w
        factors.append(f"r/{item.community}")
    complexity = item.complexity if item.complexity is not None else DEFAULT_ITEM_COMPLEXITY
    score += 0.2 * (1.0 - abs(complexity - profile.complexity_preference))
    return score, factors


@dataclass
class TrendingTally:
    item: IdeaRecord
    likes: int = 0
    bookmarks: int = 0
    generations: int = 0
    total: float = 0.0

    def breakdown(self) -> str:
        return f"{self.likes} likes, {self.bookmarks} bookmarks, {self.generations} generated PRDs"


def tally_trending(engagements: Sequence[Tuple[IdeaRecord, ActionType]]) -> List[TrendingTally]:
    """Sum weighted engagements per item, busiest first (ties in first-seen order)."""
    tallies: Dict[str, TrendingTally] = {}
    for item, action in engagements:
        weight = TRENDING_WEIGHTS.get(action)
        if weight is None:
            continue
        t = tallies.setdefault(item.id, TrendingTally(item=item))
        if action is ActionType.LIKE:
            t.likes += 1
        elif action is ActionType.BOOKMARK:
            t.bookmarks += 1
        else:
            t.generations += 1
        t.total += weight
    return sorted(tallies.values(), key=lambda t: t.total, reverse=True)


def idea_quality(item: IdeaRecord) -> float:
    quality = 0.5
    if item.likes_count:
        quality += min(item.likes_count / 50.0, 0.3)
    if item.bookmarks_count:
        quality += min(item.bookmarks_count / 20.0, 0.2)
    if item.description_length > 100:
        quality += 0.1
    return min(quality, 1.0)


def serendipity_component(item: IdeaRecord, seen_categories: Set[str], seen_communities: Set[str]) -> Tuple[float, bool, bool]:
    new_category = item.category not in seen_categories
    new_community = bool(item.community) and item.community not in seen_communities
    return (0.6 if new_category else 0.0) + (0.4 if new_community else 0.0), new_category, new_community


def mmr_select(candidates: Sequence[ScoredCandidate], limit: int, diversity_weight: float,
               distance: Callable[[IdeaRecord, IdeaRecord], float] = diversity_distance) -> List[ScoredCandidate]:
    """Greedy Maximal Marginal Relevance.

    ``candidates`` must already be sorted by relevance; the top one is always picked first. Each
    following pick maximizes ``w * relevance + (1 - w) * mean distance to the picks so far``; the
    first candidate reaching the best value wins ties.
    """
    if len(candidates) <= limit:
        return list(candidates)
    remaining = list(candidates)
    selected = [remaining.pop(0)]
    while len(selected) < limit and remaining:
        best_index = 0
        best_score = -1.0
        for index, candidate in enumerate(remaining):
            diversity = sum(distance(candidate.item, s.item) for s in selected) / len(selected)
            mmr = diversity_weight * candidate.score + (1 - diversity_weight) * diversity
            if mmr > best_score:
                best_score = mmr
                best_index = index
        selected.append(remaining.pop(best_index))
    return selected


# -------------------------------------------------------------------- engine

class StrategyEngine:
    """Runs one strategy for one user against the data store."""

    def __init__(self, store: Optional[DataStore] = None):
        self.store = store or DataStore()
        self.settings = get_settings()

    # inputs -----------------------------------------------------------------
    def behaviors(self, user_id: str) -> List[BehaviorEvent]:
        return self.store.recent_behaviors(user_id, limit=self.settings.behavior_lookback)

    def profile(self, user_id: str, behaviors: Sequence[BehaviorEvent]) -> Optional[UserPreferenceVector]:
        stored = self.store.get_preference_vector(user_id)
        if stored is not None and (stored.category_weights or stored.community_weights):
            return stored
        vector = build_preference_vector(user_id, behaviors)
        if vector is not None:
            self.store.upsert_preference_vector(vector)
        return vector

    # strategies -------------------------------------------------------------
    def collaborative(self, user_id: str, behaviors: Sequence[BehaviorEvent], limit: int,
                      exclude: AbstractSet[str] = frozenset()) -> StrategyResult:
        if not behaviors:
            return StrategyResult.empty("no_behaviors")
        similar = find_similar_users(user_id, behaviors, self.store)
        if not similar:
            return StrategyResult.empty("no_similar_users")
        seen = {b.item_id for b in behaviors} | set(exclude)
        rows = self.store.engagements_by_users([u for u, _ in similar], ENGAGEMENT_ACTIONS, exclude_items=seen)
        items: Dict[str, IdeaRecord] = {}
        supporters: Dict[str, List[str]] = defaultdict(list)
        for other, item in rows:
            items.setdefault(item.id, item)
            if other not in supporters[item.id]:
                supporters[item.id].append(other)
        if not items:
            return StrategyResult.empty("no_candidates")
        ranked = sorted(items, key=lambda i: len(supporters[i]), reverse=True)[: limit * 2]
        candidates = []
        for item_id in ranked:
            backers = supporters[item_id]
            candidates.append(ScoredCandidate(
                item=items[item_id],
                score=min(len(backers) / len(similar), 1.0),
                reason=f"{len(backers)} similar users liked this idea",
                confidence=min(len(backers) / 5.0, 1.0),
                strategy=RecommendationStrategy.COLLABORATIVE,
                supporting_evidence=backers[:3],
            ))
        return StrategyResult(_sorted(candidates))

    def content_based(self, user_id: str, profile: Optional[UserPreferenceVector], limit: int,
                      exclude: AbstractSet[str] = frozenset()) -> StrategyResult:
        if profile is None:
            return StrategyResult.empty("no_profile")
        candidates = []
        for item in self.store.public_ideas(exclude_author=user_id, limit=self.settings.candidate_pool_size):
            if item.id in exclude:
                continue
            score, factors = content_score(item, profile)
            if score <= CONTENT_THRESHOLD:
                continue
            candidates.append(ScoredCandidate(
                item=item,
                score=min(score, 1.0),
                reason=f"Matches your interests: {', '.join(factors[:3])}" if factors else "Matches your preferred complexity",
                confidence=min(score * 1.2, 1.0),
                strategy=RecommendationStrategy.CONTENT_BASED,
                supporting_evidence=factors[:3],
            ))
        if not candidates:
            return StrategyResult.empty("below_threshold")
        return StrategyResult(_sorted(candidates)[:limit])

    async def hybrid(self, user_id: str, profile: Optional[UserPreferenceVector],
                     behaviors: Sequence[BehaviorEvent], limit: int,
                     exclude: AbstractSet[str] = frozenset()) -> StrategyResult:
        collaborative, content = await asyncio.gather(
            asyncio.to_thread(self.collaborative, user_id, behaviors, limit * 2, exclude),
            asyncio.to_thread(self.content_based, user_id, profile, limit * 2, exclude),
        )
        merged: Dict[str, ScoredCandidate] = {}
        for c in collaborative.candidates:
            merged[c.item_id] = replace(
                c,
                score=c.score * HYBRID_COLLABORATIVE_WEIGHT,
                reason=f"Hybrid: {c.reason}",
                strategy=RecommendationStrategy.HYBRID,
                supporting_evidence=list(c.supporting_evidence),
            )
        for c in content.candidates:
            existing = merged.get(c.item_id)
            if existing is None:
                merged[c.item_id] = replace(
                    c,
                    score=c.score * HYBRID_CONTENT_WEIGHT,
                    reason=f"Hybrid: {c.reason}",
                    strategy=RecommendationStrategy.HYBRID,
                    supporting_evidence=list(c.supporting_evidence),
                )
                continue
            existing.score += c.score * HYBRID_CONTENT_WEIGHT
            existing.confidence = min((existing.confidence + c.confidence) / 2 * 1.2, 1.0)
            existing.reason += f" + {c.reason}"
            existing.supporting_evidence.extend(c.supporting_evidence)
        if not merged:
            return StrategyResult.empty(f"{collaborative.empty_reason}+{content.empty_reason}")
        return StrategyResult(_sorted(list(merged.values()))[:limit])

    def trending(self, limit: int, exclude: AbstractSet[str] = frozenset()) -> StrategyResult:
        since = datetime.utcnow() - timedelta(days=self.settings.trending_window_days)
        tallies = tally_trending(self.store.engagements_since(since, TRENDING_WEIGHTS.keys()))
        tallies = [t for t in tallies if t.item.id not in exclude]
        if not tallies:
            return StrategyResult.empty("no_recent_engagement")
        candidates = [
            ScoredCandidate(
                item=t.item,
                score=min(t.total / 10.0, 1.0),
                reason=f"Popular in the last {self.settings.trending_window_days} days: {t.breakdown()}",
                confidence=min(t.total / 15.0, 1.0),
                strategy=RecommendationStrategy.TRENDING,
                supporting_evidence=[t.breakdown()],
            )
            for t in tallies[:limit]
        ]
        return StrategyResult(candidates)

    def personalized_trending(self, profile: Optional[UserPreferenceVector], limit: int,
                              exclude: AbstractSet[str] = frozenset()) -> StrategyResult:
        base = self.trending(limit * 3, exclude)
        if base.is_empty or profile is None:
            return StrategyResult(base.candidates[:limit], base.empty_reason)
        boosted = []
        for c in base.candidates:
            score = c.score
            cat_w = profile.category_weights.get(c.item.category, 0.0) if c.item.category else 0.0
            if cat_w:
                score *= 1 + cat_w * 0.5
            comm_w = profile.community_weights.get(c.item.community, 0.0) if c.item.community else 0.0
            if comm_w:
                score *= 1 + comm_w * 0.1
            boosted.append(replace(
                c,
                score=min(score, 1.0),
                reason=f"Personalized trending: {c.reason}",
                strategy=RecommendationStrategy.PERSONALIZED_TRENDING,
            ))
        return StrategyResult(_sorted(boosted)[:limit])

    async def diversity_maximizing(self, user_id: str, profile: Optional[UserPreferenceVector],
                                   behaviors: Sequence[BehaviorEvent], limit: int,
                                   diversity_weight: float,
                                   exclude: AbstractSet[str] = frozenset()) -> StrategyResult:
        pool = await self.hybrid(user_id, profile, behaviors, limit * 5, exclude)
        if len(pool.candidates) <= limit:
            return pool
        # the top pick is pure relevance; only the MMR-chosen picks carry the diversity label
        first, *rest = mmr_select(pool.candidates, limit, diversity_weight)
        return StrategyResult([first] + [
            replace(c, reason=f"{c.reason} (diversity-aware)", strategy=RecommendationStrategy.DIVERSITY_MAXIMIZING)
            for c in rest
        ])

    def serendipity(self, user_id: str, behaviors: Sequence[BehaviorEvent], limit: int,
                    exclude: AbstractSet[str] = frozenset()) -> StrategyResult:
        seen_items = {b.item_id for b in behaviors} | set(exclude)
        seen_categories = {b.category for b in behaviors if b.category}
        seen_communities = {b.community for b in behaviors if b.community}
        candidates = []
        for item in self.store.public_ideas(exclude_author=user_id, limit=self.settings.serendipity_pool_size):
            if item.id in seen_items:
                continue
            component, new_category, new_community = serendipity_component(item, seen_categories, seen_communities)
            quality = idea_quality(item)
            if component <= SERENDIPITY_THRESHOLD or quality <= QUALITY_THRESHOLD:
                continue
            novel = []
            if new_category:
                novel.append(f"new category {item.category}")
            if new_community:
                novel.append(f"new community r/{item.community}")
            candidates.append(ScoredCandidate(
                item=item,
                score=component * quality,
                reason=f"Something new: {', '.join(novel)}",
                confidence=quality,
                strategy=RecommendationStrategy.SERENDIPITY,
                supporting_evidence=novel,
            ))
        if not candidates:
            return StrategyResult.empty("no_novel_quality_items")
        return StrategyResult(_sorted(candidates)[:limit])

    def recent_public(self, user_id: str, limit: int, exclude: Set[str]) -> StrategyResult:
        items = self.store.public_ideas(exclude_author=user_id, limit=limit + len(exclude))
        candidates = [
            ScoredCandidate(
                item=item,
                score=FALLBACK_SCORE,
                reason="Recently added idea",
                confidence=FALLBACK_CONFIDENCE,
                strategy=RecommendationStrategy.FALLBACK,
            )
            for item in items if item.id not in exclude
        ][:limit]
        if not candidates:
            return StrategyResult.empty("no_public_items")
        return StrategyResult(candidates)

    # dispatch ---------------------------------------------------------------
    async def run(self, strategy: RecommendationStrategy, user_id: str, limit: int,
                  diversity_weight: float, exclude: AbstractSet[str] = frozenset()) -> StrategyResult:
        """Run one strategy; ``exclude`` ids are dropped before any truncation or diversity selection."""
        if strategy is RecommendationStrategy.TRENDING:
            result = await asyncio.to_thread(self.trending, limit, exclude)
        else:
            behaviors = await asyncio.to_thread(self.behaviors, user_id)
            if strategy is RecommendationStrategy.COLLABORATIVE:
                result = await asyncio.to_thread(self.collaborative, user_id, behaviors, limit, exclude)
            elif strategy is RecommendationStrategy.SERENDIPITY:
                result = await asyncio.to_thread(self.serendipity, user_id, behaviors, limit, exclude)
            else:
                profile = await asyncio.to_thread(self.profile, user_id, behaviors)
                if strategy is RecommendationStrategy.CONTENT_BASED:
                    result = await asyncio.to_thread(self.content_based, user_id, profile, limit, exclude)
                elif strategy is RecommendationStrategy.PERSONALIZED_TRENDING:
                    result = await asyncio.to_thread(self.personalized_trending, profile, limit, exclude)
                elif strategy is RecommendationStrategy.DIVERSITY_MAXIMIZING:
                    result = await self.diversity_maximizing(user_id, profile, behaviors, limit,
                                                             diversity_weight, exclude)
                elif strategy is RecommendationStrategy.HYBRID:
                    result = await self.hybrid(user_id, profile, behaviors, limit, exclude)
                else:
                    raise ValueError(f"Strategy {strategy.value} cannot be requested directly")
        if result.is_empty:
            STRATEGY_EMPTY.labels(strategy=strategy.value, reason=result.empty_reason or "unknown").inc()
            logger.info(f"Strategy {strategy.value} empty for user {user_id}: {result.empty_reason}")
        return result
