from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, JSON, Float, Index, Text, Boolean
from sqlalchemy.orm import Mapped, mapped_column
from idea_recommender.infrastructure.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Idea(Base):
    """Harvested idea (item). Owned by the collector job; read-only for the recommender."""
    __tablename__ = "ideas"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(512))
    content: Mapped[str | None] = mapped_column(Text, default=None)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    category: Mapped[str | None] = mapped_column(String(64), index=True, default=None)
    subreddit: Mapped[str | None] = mapped_column(String(128), index=True, default=None)
    author: Mapped[str | None] = mapped_column(String(128), default=None)
    user_id: Mapped[str | None] = mapped_column(String(64), index=True, default=None)
    url: Mapped[str | None] = mapped_column(String(1024), default=None)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    # complexity, likes_count, bookmarks_count ...
    meta: Mapped[dict | None] = mapped_column("metadata", JSON, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    __table_args__ = (
        Index("ix_ideas_public_created", "is_public", "created_at"),
    )


class UserBehavior(Base):
    """Append-only behavior log. Rows are never updated."""
    __tablename__ = "user_behaviors"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    idea_id: Mapped[str] = mapped_column(String(36), index=True)
    action_type: Mapped[str] = mapped_column(String(32), index=True)
    duration: Mapped[float | None] = mapped_column(Float, default=None)
    session_id: Mapped[str | None] = mapped_column(String(64), index=True, default=None)
    meta: Mapped[dict | None] = mapped_column("metadata", JSON, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    __table_args__ = (
        Index("ix_behavior_user_ts", "user_id", "created_at"),
        Index("ix_behavior_action_ts", "action_type", "created_at"),
        Index("ix_behavior_idea_action", "idea_id", "action_type"),
    )


class UserPreferenceVectorRow(Base):
    """Derived per-user interest profile; recomputable from user_behaviors."""
    __tablename__ = "user_preference_vectors"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    category_weights: Mapped[dict] = mapped_column(JSON, default=dict)
    tag_preferences: Mapped[dict] = mapped_column(JSON, default=dict)
    complexity_preference: Mapped[float] = mapped_column(Float, default=0.5)
    novelty_preference: Mapped[float] = mapped_column(Float, default=0.5)
    interaction_frequency: Mapped[int] = mapped_column(Integer, default=0)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class IdeaFeatureVectorRow(Base):
    """Derived per-idea signals used for content-based and diversity scoring."""
    __tablename__ = "idea_feature_vectors"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    idea_id: Mapped[str] = mapped_column(String(36), unique=True, index=True)
    category: Mapped[str | None] = mapped_column(String(64), index=True, default=None)
    community: Mapped[str | None] = mapped_column(String(128), index=True, default=None)
    complexity_score: Mapped[float] = mapped_column(Float, default=0.5)
    popularity_score: Mapped[float] = mapped_column(Float, default=0.0)
    novelty_score: Mapped[float] = mapped_column(Float, default=0.0)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class RecommendationExperiment(Base):
    """A/B experiment comparing two recommendation strategies.

    status: draft|active|paused|completed|archived (archived is terminal)
    strategy_a is the control arm (variant A), strategy_b the treatment arm (variant B).
    """
    __tablename__ = "recommendation_experiments"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(256), index=True)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    hypothesis: Mapped[str | None] = mapped_column(Text, default=None)
    strategy_a: Mapped[str] = mapped_column(String(32))
    strategy_b: Mapped[str] = mapped_column(String(32))
    traffic_split: Mapped[float] = mapped_column(Float, default=0.5)
    start_date: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    status: Mapped[str] = mapped_column(String(16), index=True, default="draft")
    success_metric: Mapped[str] = mapped_column(String(32), default="ctr")
    minimum_sample_size: Mapped[int] = mapped_column(Integer, default=1000)
    confidence_level: Mapped[float] = mapped_column(Float, default=0.95)
    statistical_power: Mapped[float] = mapped_column(Float, default=0.8)
    created_by: Mapped[str | None] = mapped_column(String(64), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class UserExperimentAssignment(Base):
    """Sticky user -> variant assignment. Written once per (user, experiment)."""
    __tablename__ = "user_experiment_assignments"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    experiment_id: Mapped[str] = mapped_column(String(36), index=True)
    variant: Mapped[str] = mapped_column(String(1))
    assigned_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    __table_args__ = (
        Index("ux_user_experiment", "user_id", "experiment_id", unique=True),
    )


class ExperimentPerformanceLog(Base):
    __tablename__ = "experiment_performance_logs"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    experiment_id: Mapped[str] = mapped_column(String(36), index=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    variant: Mapped[str] = mapped_column(String(1), index=True)
    action_taken: Mapped[str] = mapped_column(String(32), index=True)
    recommended_idea_id: Mapped[str] = mapped_column(String(36), index=True)
    position_in_list: Mapped[int | None] = mapped_column(Integer, default=None)
    session_id: Mapped[str | None] = mapped_column(String(64), default=None)
    meta: Mapped[dict | None] = mapped_column("metadata", JSON, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    __table_args__ = (
        Index("ix_perf_exp_variant_action", "experiment_id", "variant", "action_taken"),
    )


class StatisticalSignificanceTest(Base):
    """Latest significance snapshot per (experiment, metric). Always recomputable from logs."""
    __tablename__ = "statistical_significance_tests"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    experiment_id: Mapped[str] = mapped_column(String(36), index=True)
    metric_name: Mapped[str] = mapped_column(String(64), index=True)
    control_mean: Mapped[float] = mapped_column(Float)
    treatment_mean: Mapped[float] = mapped_column(Float)
    control_variance: Mapped[float] = mapped_column(Float)
    treatment_variance: Mapped[float] = mapped_column(Float)
    control_sample_size: Mapped[int] = mapped_column(Integer)
    treatment_sample_size: Mapped[int] = mapped_column(Integer)
    t_statistic: Mapped[float] = mapped_column(Float)
    p_value: Mapped[float] = mapped_column(Float)
    is_significant: Mapped[bool] = mapped_column(Boolean, default=False)
    confidence_interval_lower: Mapped[float] = mapped_column(Float)
    confidence_interval_upper: Mapped[float] = mapped_column(Float)
    effect_size: Mapped[float] = mapped_column(Float)
    power: Mapped[float] = mapped_column(Float)
    calculated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    __table_args__ = (
        Index("ux_significance_exp_metric", "experiment_id", "metric_name", unique=True),
    )


class RecommendationMetric(Base):
    """Exposure record: one row per delivered recommendation list."""
    __tablename__ = "recommendation_metrics"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    recommendation_strategy: Mapped[str] = mapped_column(String(32), index=True)
    served_strategy: Mapped[str | None] = mapped_column(String(32), default=None)
    recommended_idea_ids: Mapped[list] = mapped_column(JSON, default=list)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    __table_args__ = (
        Index("ix_rec_metric_strategy_ts", "recommendation_strategy", "timestamp"),
    )
