"""Typed records passed between the store, the strategies and the experiment layer.

Free-form JSON metadata from the store is unpacked into explicit optional fields here so that
scoring code never reaches into open dictionaries.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ActionType(str, Enum):
    VIEW = "view"
    LIKE = "like"
    BOOKMARK = "bookmark"
    GENERATE_ARTIFACT = "generate_artifact"
    SHARE = "share"
    COPY = "copy"
    CLICK = "click"

    @classmethod
    def parse(cls, raw: str) -> "ActionType":
        # legacy rows store PRD generation as generate_prd
        if raw == "generate_prd":
            return cls.GENERATE_ARTIFACT
        return cls(raw)


class RecommendationStrategy(str, Enum):
    COLLABORATIVE = "collaborative"
    CONTENT_BASED = "content_based"
    HYBRID = "hybrid"
    TRENDING = "trending"
    PERSONALIZED_TRENDING = "personalized_trending"
    DIVERSITY_MAXIMIZING = "diversity_maximizing"
    SERENDIPITY = "serendipity"
    FALLBACK = "fallback"


class ExperimentStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class Variant(str, Enum):
    A = "A"  # control
    B = "B"  # treatment


class ExperimentAction(str, Enum):
    IMPRESSION = "impression"
    CLICK = "click"
    LIKE = "like"
    BOOKMARK = "bookmark"
    GENERATE_ARTIFACT = "generate_artifact"
    SHARE = "share"


CONVERSION_ACTIONS = frozenset({
    ExperimentAction.LIKE.value,
    ExperimentAction.BOOKMARK.value,
    ExperimentAction.GENERATE_ARTIFACT.value,
    ExperimentAction.SHARE.value,
})


@dataclass
class IdeaRecord:
    id: str
    title: str
    category: Optional[str] = None
    community: Optional[str] = None
    author_id: Optional[str] = None
    complexity: Optional[float] = None
    likes_count: int = 0
    bookmarks_count: int = 0
    description_length: int = 0
    url: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class BehaviorEvent:
    user_id: str
    item_id: str
    action_type: ActionType
    occurred_at: datetime
    category: Optional[str] = None
    community: Optional[str] = None
    duration_seconds: Optional[float] = None
    session_id: Optional[str] = None
    item_complexity: Optional[float] = None
    item_created_at: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UserPreferenceVector:
    user_id: str
    category_weights: Dict[str, float]
    community_weights: Dict[str, float]
    complexity_preference: float = 0.5
    novelty_preference: float = 0.5
    interaction_count: int = 0
    last_updated: datetime = field(default_factory=datetime.utcnow)


@dataclass
class ItemFeatureSummary:
    item_id: str
    category: Optional[str]
    community: Optional[str]
    complexity_score: float
    popularity_score: float
    novelty_score: float
    last_updated: datetime = field(default_factory=datetime.utcnow)


@dataclass
class ScoredCandidate:
    item: IdeaRecord
    score: float
    reason: str
    confidence: float
    strategy: RecommendationStrategy
    supporting_evidence: List[str] = field(default_factory=list)

    @property
    def item_id(self) -> str:
        return self.item.id


@dataclass
class ExperimentRecord:
    id: str
    name: str
    strategy_control: RecommendationStrategy
    strategy_treatment: RecommendationStrategy
    traffic_split: float
    start_date: datetime
    status: ExperimentStatus
    success_metric: str = "ctr"
    min_sample_size: int = 1000
    confidence_level: float = 0.95
    power_target: float = 0.8
    end_date: Optional[datetime] = None
    hypothesis: Optional[str] = None
    description: Optional[str] = None


@dataclass
class PerformanceLogEntry:
    experiment_id: str
    user_id: str
    variant: Variant
    action: ExperimentAction
    item_id: str
    occurred_at: datetime
    position_in_list: Optional[int] = None
    session_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ExperimentPerformance:
    experiment_id: str
    variant: Variant
    total_users: int = 0
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0
    ctr: float = 0.0
    conversion_rate: float = 0.0
    avg_engagement_time: float = 0.0


@dataclass
class StatisticalTestResult:
    experiment_id: str
    metric_name: str
    control_mean: float
    treatment_mean: float
    control_n: int
    treatment_n: int
    control_variance: float
    treatment_variance: float
    t_statistic: float
    p_value: float
    is_significant: bool
    ci_lower: float
    ci_upper: float
    effect_size: float
    power: float
    calculated_at: datetime = field(default_factory=datetime.utcnow)
