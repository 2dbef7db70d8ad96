"""Data store access for the recommender and experiment layers.

Two failure policies live side by side:

* Hot-path reads and telemetry writes (behaviors, candidates, metrics, performance logs,
  derived vectors) catch ``SQLAlchemyError``, log it and return an empty value. A recommendation
  request must never fail because the store is flaky.
* Experiment administration and the behavior write raise ``StoreError`` so the caller can tell
  the operator (or user) that the write did not happen.
"""
from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from idea_recommender.infrastructure import db
from idea_recommender.models.records import (
    ActionType,
    BehaviorEvent,
    ExperimentAction,
    ExperimentRecord,
    ExperimentStatus,
    IdeaRecord,
    ItemFeatureSummary,
    PerformanceLogEntry,
    RecommendationStrategy,
    StatisticalTestResult,
    UserPreferenceVector,
    Variant,
)
from idea_recommender.models.tables import (
    ExperimentPerformanceLog,
    Idea,
    IdeaFeatureVectorRow,
    RecommendationExperiment,
    RecommendationMetric,
    StatisticalSignificanceTest,
    UserBehavior,
    UserExperimentAssignment,
    UserPreferenceVectorRow,
)

logger = logging.getLogger(__name__)

_COMMUNITY_KEYS = ("community", "subreddit")


class StoreError(RuntimeError):
    """A write (or administrative read) against the data store failed."""


def _action_values(actions: Iterable[ActionType]) -> list[str]:
    values = []
    for a in actions:
        values.append(a.value)
        if a is ActionType.GENERATE_ARTIFACT:
            values.append("generate_prd")
    return values


def idea_record(row: Idea) -> IdeaRecord:
    meta = row.meta or {}
    complexity = meta.get("complexity")
    text = row.description or ""
    return IdeaRecord(
        id=row.id,
        title=row.title,
        category=row.category,
        community=row.subreddit,
        author_id=row.user_id,
        complexity=float(complexity) if isinstance(complexity, (int, float)) else None,
        likes_count=int(meta.get("likes_count") or 0),
        bookmarks_count=int(meta.get("bookmarks_count") or 0),
        description_length=len(text),
        url=row.url,
        created_at=row.created_at,
    )


def behavior_event(row: UserBehavior, idea: Optional[Idea] = None) -> Optional[BehaviorEvent]:
    try:
        action = ActionType.parse(row.action_type)
    except ValueError:
        logger.warning(f"Skipping behavior {row.id} with unknown action_type {row.action_type!r}")
        return None
    meta = dict(row.meta or {})
    category = meta.pop("category", None)
    community = None
    for key in _COMMUNITY_KEYS:
        value = meta.pop(key, None)
        community = community or value
    complexity = None
    created = None
    if idea is not None:
        category = category or idea.category
        community = community or idea.subreddit
        raw = (idea.meta or {}).get("complexity")
        complexity = float(raw) if isinstance(raw, (int, float)) else None
        created = idea.created_at
    return BehaviorEvent(
        user_id=row.user_id,
        item_id=row.idea_id,
        action_type=action,
        occurred_at=row.created_at,
        category=category,
        community=community,
        duration_seconds=row.duration,
        session_id=row.session_id,
        item_complexity=complexity,
        item_created_at=created,
        extra=meta,
    )


def experiment_record(row: RecommendationExperiment) -> ExperimentRecord:
    return ExperimentRecord(
        id=row.id,
        name=row.name,
        strategy_control=RecommendationStrategy(row.strategy_a),
        strategy_treatment=RecommendationStrategy(row.strategy_b),
        traffic_split=row.traffic_split,
        start_date=row.start_date,
        end_date=row.end_date,
        status=ExperimentStatus(row.status),
        success_metric=row.success_metric,
        min_sample_size=row.minimum_sample_size,
        confidence_level=row.confidence_level,
        power_target=row.statistical_power,
        hypothesis=row.hypothesis,
        description=row.description,
    )


class DataStore:
    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory or db.get_session

    def _session(self) -> Session:
        return self._session_factory()

    # ------------------------------------------------------------------ ideas
    def get_idea(self, item_id: str) -> Optional[IdeaRecord]:
        try:
            with self._session() as s:
                row = s.get(Idea, item_id)
                return idea_record(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"get_idea failed for {item_id}: {e}")
            return None

    def public_ideas(self, exclude_author: Optional[str] = None, limit: int = 500) -> List[IdeaRecord]:
        try:
            with self._session() as s:
                q = s.query(Idea).filter(Idea.is_public.is_(True))
                if exclude_author:
                    q = q.filter((Idea.user_id.is_(None)) | (Idea.user_id != exclude_author))
                rows = q.order_by(Idea.created_at.desc()).limit(limit).all()
                return [idea_record(r) for r in rows]
        except SQLAlchemyError as e:
            logger.error(f"public_ideas failed: {e}")
            return []

    # -------------------------------------------------------------- behaviors
    def insert_behavior(
        self,
        user_id: str,
        item_id: str,
        action_type: ActionType,
        duration: Optional[float] = None,
        session_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        occurred_at: Optional[datetime] = None,
    ) -> None:
        try:
            with self._session() as s:
                s.add(UserBehavior(
                    user_id=user_id,
                    idea_id=item_id,
                    action_type=action_type.value,
                    duration=duration,
                    session_id=session_id,
                    meta=metadata or {},
                    created_at=occurred_at or datetime.utcnow(),
                ))
                s.commit()
        except SQLAlchemyError as e:
            logger.error(f"insert_behavior failed for user {user_id}: {e}")
            raise StoreError("behavior write failed") from e

    def recent_behaviors(self, user_id: str, limit: int = 100) -> List[BehaviorEvent]:
        """Most recent behaviors first, enriched with the idea's category/community when missing."""
        try:
            with self._session() as s:
                rows = s.execute(
                    select(UserBehavior, Idea)
                    .outerjoin(Idea, Idea.id == UserBehavior.idea_id)
                    .where(UserBehavior.user_id == user_id)
                    .order_by(UserBehavior.created_at.desc(), UserBehavior.id.desc())
                    .limit(limit)
                ).all()
                events = [behavior_event(b, i) for b, i in rows]
                return [e for e in events if e is not None]
        except SQLAlchemyError as e:
            logger.error(f"recent_behaviors failed for user {user_id}: {e}")
            return []

    def interacted_item_ids(self, user_id: str) -> Set[str]:
        try:
            with self._session() as s:
                rows = s.execute(select(UserBehavior.idea_id).where(UserBehavior.user_id == user_id).distinct()).all()
                return {r[0] for r in rows}
        except SQLAlchemyError as e:
            logger.error(f"interacted_item_ids failed for user {user_id}: {e}")
            return set()

    def co_engagements(self, item_ids: Sequence[str], exclude_user: str,
                       actions: Iterable[ActionType]) -> List[Tuple[str, str]]:
        """(user_id, idea_id) pairs of other users who engaged with any of ``item_ids``."""
        if not item_ids:
            return []
        try:
            with self._session() as s:
                rows = s.execute(
                    select(UserBehavior.user_id, UserBehavior.idea_id)
                    .where(
                        UserBehavior.idea_id.in_(list(item_ids)),
                        UserBehavior.user_id != exclude_user,
                        UserBehavior.action_type.in_(_action_values(actions)),
                    )
                ).all()
                return [(u, i) for u, i in rows]
        except SQLAlchemyError as e:
            logger.error(f"co_engagements failed for user {exclude_user}: {e}")
            return []

    def engagements_by_users(self, user_ids: Sequence[str], actions: Iterable[ActionType],
                             exclude_items: Set[str]) -> List[Tuple[str, IdeaRecord]]:
        """(user_id, idea) pairs for public ideas the given users engaged with, newest first."""
        if not user_ids:
            return []
        try:
            with self._session() as s:
                q = (
                    select(UserBehavior.user_id, Idea)
                    .join(Idea, Idea.id == UserBehavior.idea_id)
                    .where(
                        UserBehavior.user_id.in_(list(user_ids)),
                        UserBehavior.action_type.in_(_action_values(actions)),
                        Idea.is_public.is_(True),
                    )
                    .order_by(UserBehavior.created_at.desc())
                )
                if exclude_items:
                    q = q.where(UserBehavior.idea_id.notin_(list(exclude_items)))
                return [(u, idea_record(i)) for u, i in s.execute(q).all()]
        except SQLAlchemyError as e:
            logger.error(f"engagements_by_users failed: {e}")
            return []

    def engagements_since(self, since: datetime, actions: Iterable[ActionType]) -> List[Tuple[IdeaRecord, ActionType]]:
        """Engagements on public ideas since ``since``, newest first."""
        try:
            with self._session() as s:
                rows = s.execute(
                    select(Idea, UserBehavior.action_type)
                    .select_from(UserBehavior)
                    .join(Idea, Idea.id == UserBehavior.idea_id)
                    .where(
                        UserBehavior.created_at >= since,
                        UserBehavior.action_type.in_(_action_values(actions)),
                        Idea.is_public.is_(True),
                    )
                    .order_by(UserBehavior.created_at.desc(), UserBehavior.id.desc())
                ).all()
                return [(idea_record(i), ActionType.parse(a)) for i, a in rows]
        except SQLAlchemyError as e:
            logger.error(f"engagements_since failed: {e}")
            return []

    def behaviors_between(self, start: datetime, end: Optional[datetime] = None) -> List[BehaviorEvent]:
        try:
            with self._session() as s:
                q = select(UserBehavior).where(UserBehavior.created_at >= start)
                if end is not None:
                    q = q.where(UserBehavior.created_at < end)
                rows = s.execute(q.order_by(UserBehavior.created_at.asc())).scalars().all()
                events = [behavior_event(r) for r in rows]
                return [e for e in events if e is not None]
        except SQLAlchemyError as e:
            logger.error(f"behaviors_between failed: {e}")
            return []

    def engagement_counts(self, item_ids: Sequence[str]) -> Dict[str, Dict[ActionType, int]]:
        if not item_ids:
            return {}
        try:
            with self._session() as s:
                rows = s.execute(
                    select(UserBehavior.idea_id, UserBehavior.action_type, func.count(UserBehavior.id))
                    .where(UserBehavior.idea_id.in_(list(item_ids)))
                    .group_by(UserBehavior.idea_id, UserBehavior.action_type)
                ).all()
        except SQLAlchemyError as e:
            logger.error(f"engagement_counts failed: {e}")
            return {}
        counts: Dict[str, Dict[ActionType, int]] = {}
        for idea_id, action, n in rows:
            try:
                parsed = ActionType.parse(action)
            except ValueError:
                continue
            bucket = counts.setdefault(idea_id, {})
            bucket[parsed] = bucket.get(parsed, 0) + int(n)
        return counts

    # ------------------------------------------------------ derived profiles
    def get_preference_vector(self, user_id: str) -> Optional[UserPreferenceVector]:
        try:
            with self._session() as s:
                row = s.query(UserPreferenceVectorRow).filter_by(user_id=user_id).first()
                if not row:
                    return None
                return UserPreferenceVector(
                    user_id=row.user_id,
                    category_weights=dict(row.category_weights or {}),
                    community_weights=dict(row.tag_preferences or {}),
                    complexity_preference=row.complexity_preference,
                    novelty_preference=row.novelty_preference,
                    interaction_count=row.interaction_frequency,
                    last_updated=row.last_updated,
                )
        except SQLAlchemyError as e:
            logger.error(f"get_preference_vector failed for user {user_id}: {e}")
            return None

    def upsert_preference_vector(self, vector: UserPreferenceVector) -> bool:
        try:
            with self._session() as s:
                row = s.query(UserPreferenceVectorRow).filter_by(user_id=vector.user_id).first()
                if row is None:
                    row = UserPreferenceVectorRow(user_id=vector.user_id)
                    s.add(row)
                row.category_weights = vector.category_weights
                row.tag_preferences = vector.community_weights
                row.complexity_preference = vector.complexity_preference
                row.novelty_preference = vector.novelty_preference
                row.interaction_frequency = vector.interaction_count
                row.last_updated = vector.last_updated
                s.commit()
                return True
        except SQLAlchemyError as e:
            logger.error(f"upsert_preference_vector failed for user {vector.user_id}: {e}")
            return False

    def upsert_item_features(self, summaries: Iterable[ItemFeatureSummary]) -> int:
        written = 0
        try:
            with self._session() as s:
                for summary in summaries:
                    row = s.query(IdeaFeatureVectorRow).filter_by(idea_id=summary.item_id).first()
                    if row is None:
                        row = IdeaFeatureVectorRow(idea_id=summary.item_id)
                        s.add(row)
                    row.category = summary.category
                    row.community = summary.community
                    row.complexity_score = summary.complexity_score
                    row.popularity_score = summary.popularity_score
                    row.novelty_score = summary.novelty_score
                    row.last_updated = summary.last_updated
                    written += 1
                s.commit()
                return written
        except SQLAlchemyError as e:
            logger.error(f"upsert_item_features failed: {e}")
            return 0

    def get_item_features(self, item_ids: Sequence[str]) -> Dict[str, ItemFeatureSummary]:
        if not item_ids:
            return {}
        try:
            with self._session() as s:
                rows = s.query(IdeaFeatureVectorRow).filter(IdeaFeatureVectorRow.idea_id.in_(list(item_ids))).all()
                return {
                    r.idea_id: ItemFeatureSummary(
                        item_id=r.idea_id,
                        category=r.category,
                        community=r.community,
                        complexity_score=r.complexity_score,
                        popularity_score=r.popularity_score,
                        novelty_score=r.novelty_score,
                        last_updated=r.last_updated,
                    )
                    for r in rows
                }
        except SQLAlchemyError as e:
            logger.error(f"get_item_features failed: {e}")
            return {}

    # ------------------------------------------------ recommendation metrics
    def insert_recommendation_metric(self, user_id: str, strategy: RecommendationStrategy,
                                     served_strategy: Optional[RecommendationStrategy],
                                     item_ids: List[str], timestamp: Optional[datetime] = None) -> bool:
        try:
            with self._session() as s:
                s.add(RecommendationMetric(
                    user_id=user_id,
                    recommendation_strategy=strategy.value,
                    served_strategy=served_strategy.value if served_strategy else None,
                    recommended_idea_ids=item_ids,
                    timestamp=timestamp or datetime.utcnow(),
                ))
                s.commit()
                return True
        except SQLAlchemyError as e:
            logger.error(f"insert_recommendation_metric failed for user {user_id}: {e}")
            return False

    def recommendation_metrics_between(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        try:
            with self._session() as s:
                rows = s.query(RecommendationMetric).filter(
                    RecommendationMetric.timestamp >= start, RecommendationMetric.timestamp < end
                ).order_by(RecommendationMetric.timestamp.asc()).all()
                return [
                    {
                        "user_id": r.user_id,
                        "strategy": r.recommendation_strategy,
                        "served_strategy": r.served_strategy,
                        "item_ids": list(r.recommended_idea_ids or []),
                        "timestamp": r.timestamp,
                    }
                    for r in rows
                ]
        except SQLAlchemyError as e:
            logger.error(f"recommendation_metrics_between failed: {e}")
            return []

    # ------------------------------------------------------------ experiments
    def insert_experiment(self, **fields: Any) -> ExperimentRecord:
        try:
            with self._session() as s:
                row = RecommendationExperiment(**fields)
                s.add(row)
                s.commit()
                return experiment_record(row)
        except SQLAlchemyError as e:
            logger.error(f"insert_experiment failed: {e}")
            raise StoreError("experiment write failed") from e

    def get_experiment(self, experiment_id: str) -> Optional[ExperimentRecord]:
        try:
            with self._session() as s:
                row = s.get(RecommendationExperiment, experiment_id)
                return experiment_record(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"get_experiment failed for {experiment_id}: {e}")
            raise StoreError("experiment read failed") from e

    def list_experiments(self, status: Optional[ExperimentStatus] = None) -> List[ExperimentRecord]:
        try:
            with self._session() as s:
                q = s.query(RecommendationExperiment)
                if status is not None:
                    q = q.filter(RecommendationExperiment.status == status.value)
                rows = q.order_by(RecommendationExperiment.created_at.desc()).all()
                return [experiment_record(r) for r in rows]
        except SQLAlchemyError as e:
            logger.error(f"list_experiments failed: {e}")
            raise StoreError("experiment read failed") from e

    def set_experiment_status(self, experiment_id: str, status: ExperimentStatus,
                              end_date: Optional[datetime] = None) -> ExperimentRecord:
        try:
            with self._session() as s:
                row = s.get(RecommendationExperiment, experiment_id)
                if row is None:
                    raise StoreError(f"experiment {experiment_id} vanished")
                row.status = status.value
                row.updated_at = datetime.utcnow()
                if end_date is not None:
                    row.end_date = end_date
                s.commit()
                return experiment_record(row)
        except SQLAlchemyError as e:
            logger.error(f"set_experiment_status failed for {experiment_id}: {e}")
            raise StoreError("experiment write failed") from e

    def get_assignment(self, user_id: str, experiment_id: str) -> Optional[Variant]:
        try:
            with self._session() as s:
                row = s.query(UserExperimentAssignment).filter_by(user_id=user_id, experiment_id=experiment_id).first()
                return Variant(row.variant) if row else None
        except SQLAlchemyError as e:
            logger.error(f"get_assignment failed for user {user_id}: {e}")
            raise StoreError("assignment read failed") from e

    def insert_assignment(self, user_id: str, experiment_id: str, variant: Variant) -> Tuple[Variant, bool]:
        """Persist an assignment; on a unique-key conflict return the row that won.

        Returns ``(persisted_variant, created)``.
        """
        try:
            with self._session() as s:
                s.add(UserExperimentAssignment(user_id=user_id, experiment_id=experiment_id, variant=variant.value))
                s.commit()
                return variant, True
        except IntegrityError:
            logger.info(f"Assignment race for user {user_id} in {experiment_id}; reading persisted winner")
        except SQLAlchemyError as e:
            logger.error(f"insert_assignment failed for user {user_id}: {e}")
            raise StoreError("assignment write failed") from e
        winner = self.get_assignment(user_id, experiment_id)
        if winner is None:
            raise StoreError("assignment conflict without a persisted row")
        return winner, False

    def insert_performance_log(self, entry: PerformanceLogEntry) -> bool:
        try:
            with self._session() as s:
                s.add(ExperimentPerformanceLog(
                    experiment_id=entry.experiment_id,
                    user_id=entry.user_id,
                    variant=entry.variant.value,
                    action_taken=entry.action.value,
                    recommended_idea_id=entry.item_id,
                    position_in_list=entry.position_in_list,
                    session_id=entry.session_id,
                    meta=entry.metadata or {},
                    created_at=entry.occurred_at,
                ))
                s.commit()
                return True
        except SQLAlchemyError as e:
            logger.error(f"insert_performance_log failed for {entry.experiment_id}: {e}")
            return False

    def performance_logs(self, experiment_id: str) -> List[PerformanceLogEntry]:
        try:
            with self._session() as s:
                rows = s.query(ExperimentPerformanceLog).filter(
                    ExperimentPerformanceLog.experiment_id == experiment_id
                ).order_by(ExperimentPerformanceLog.created_at.asc()).all()
        except SQLAlchemyError as e:
            logger.error(f"performance_logs failed for {experiment_id}: {e}")
            raise StoreError("performance log read failed") from e
        entries = []
        for r in rows:
            action = "generate_artifact" if r.action_taken == "generate_prd" else r.action_taken
            try:
                entries.append(PerformanceLogEntry(
                    experiment_id=r.experiment_id,
                    user_id=r.user_id,
                    variant=Variant(r.variant),
                    action=ExperimentAction(action),
                    item_id=r.recommended_idea_id,
                    occurred_at=r.created_at,
                    position_in_list=r.position_in_list,
                    session_id=r.session_id,
                    metadata=dict(r.meta or {}),
                ))
            except ValueError:
                logger.warning(f"Skipping performance log {r.id} with unknown variant/action")
        return entries

    def upsert_statistical_test(self, result: StatisticalTestResult) -> bool:
        try:
            with self._session() as s:
                row = s.query(StatisticalSignificanceTest).filter_by(
                    experiment_id=result.experiment_id, metric_name=result.metric_name
                ).first()
                if row is None:
                    row = StatisticalSignificanceTest(experiment_id=result.experiment_id, metric_name=result.metric_name)
                    s.add(row)
                row.control_mean = result.control_mean
                row.treatment_mean = result.treatment_mean
                row.control_variance = result.control_variance
                row.treatment_variance = result.treatment_variance
                row.control_sample_size = result.control_n
                row.treatment_sample_size = result.treatment_n
                row.t_statistic = result.t_statistic
                row.p_value = result.p_value
                row.is_significant = result.is_significant
                row.confidence_interval_lower = result.ci_lower
                row.confidence_interval_upper = result.ci_upper
                row.effect_size = result.effect_size
                row.power = result.power
                row.calculated_at = result.calculated_at
                s.commit()
                return True
        except SQLAlchemyError as e:
            logger.error(f"upsert_statistical_test failed for {result.experiment_id}/{result.metric_name}: {e}")
            return False

    def stored_statistical_tests(self, experiment_id: str) -> List[StatisticalTestResult]:
        try:
            with self._session() as s:
                rows = s.query(StatisticalSignificanceTest).filter_by(experiment_id=experiment_id).all()
                return [
                    StatisticalTestResult(
                        experiment_id=r.experiment_id,
                        metric_name=r.metric_name,
                        control_mean=r.control_mean,
                        treatment_mean=r.treatment_mean,
                        control_n=r.control_sample_size,
                        treatment_n=r.treatment_sample_size,
                        control_variance=r.control_variance,
                        treatment_variance=r.treatment_variance,
                        t_statistic=r.t_statistic,
                        p_value=r.p_value,
                        is_significant=bool(r.is_significant),
                        ci_lower=r.confidence_interval_lower,
                        ci_upper=r.confidence_interval_upper,
                        effect_size=r.effect_size,
                        power=r.power,
                        calculated_at=r.calculated_at,
                    )
                    for r in rows
                ]
        except SQLAlchemyError as e:
            logger.error(f"stored_statistical_tests failed for {experiment_id}: {e}")
            return []
