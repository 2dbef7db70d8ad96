"""A/B experiments over recommendation strategies.

Lifecycle: draft -> active -> (paused <-> active | completed) -> archived. Archived is terminal and
nothing skips active on the way to completed.

Assignment is sticky: the first persisted (user, experiment) row wins forever, whatever the traffic
split says later. Concurrent first requests are settled by the unique index; the loser re-reads the
winner.
"""
from __future__ import annotations
import logging
import math
import random
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import numpy as np
from celery import shared_task
from prometheus_client import Counter
from idea_recommender.config import get_settings
from idea_recommender.infrastructure.store import DataStore, StoreError
from idea_recommender.models.records import (
    CONVERSION_ACTIONS,
    ExperimentAction,
    ExperimentPerformance,
    ExperimentRecord,
    ExperimentStatus,
    PerformanceLogEntry,
    RecommendationStrategy,
    StatisticalTestResult,
    Variant,
)
from idea_recommender.utils.significance import binomial_variance, welch_t_test

logger = logging.getLogger(__name__)

EXPERIMENT_ASSIGNMENTS = Counter('experiment_assignments_total', 'Experiment assignments created', ['variant'])
ASSIGNMENT_CONFLICTS = Counter('experiment_assignment_conflicts_total', 'Assignment races resolved by re-reading the winner')
EXPERIMENT_EVENTS = Counter('experiment_events_total', 'Experiment performance events logged', ['action'])
EXPERIMENT_ANALYSES = Counter('experiment_analyses_total', 'Experiment analyses run', ['outcome'])

TESTED_METRICS = ("ctr", "conversion_rate")
SUCCESS_METRICS = frozenset(TESTED_METRICS)

ALLOWED_TRANSITIONS: Dict[ExperimentStatus, frozenset] = {
    ExperimentStatus.DRAFT: frozenset({ExperimentStatus.ACTIVE}),
    ExperimentStatus.ACTIVE: frozenset({ExperimentStatus.PAUSED, ExperimentStatus.COMPLETED}),
    ExperimentStatus.PAUSED: frozenset({ExperimentStatus.ACTIVE, ExperimentStatus.ARCHIVED}),
    ExperimentStatus.COMPLETED: frozenset({ExperimentStatus.ARCHIVED}),
    ExperimentStatus.ARCHIVED: frozenset(),
}


class ExperimentError(Exception):
    pass


class ExperimentNotFound(ExperimentError):
    pass


class InvalidStatusTransition(ExperimentError):
    pass


def _requestable_strategy(value: str | RecommendationStrategy) -> RecommendationStrategy:
    strategy = RecommendationStrategy(value)
    if strategy is RecommendationStrategy.FALLBACK:
        raise ValueError("fallback cannot be an experiment arm")
    return strategy


def _require(experiment_id: str, store: DataStore) -> ExperimentRecord:
    exp = store.get_experiment(experiment_id)
    if exp is None:
        raise ExperimentNotFound(experiment_id)
    return exp


# ---------------------------------------------------------------- lifecycle

def create_experiment(name: str, strategy_control: str | RecommendationStrategy,
                      strategy_treatment: str | RecommendationStrategy, traffic_split: float = 0.5,
                      duration_days: Optional[int] = None, success_metric: str = "ctr",
                      min_sample_size: Optional[int] = None, confidence_level: float = 0.95,
                      power_target: float = 0.8, hypothesis: Optional[str] = None,
                      description: Optional[str] = None, created_by: Optional[str] = None,
                      activate: bool = False, store: Optional[DataStore] = None) -> ExperimentRecord:
    store = store or DataStore()
    settings = get_settings()
    if not name or not name.strip():
        raise ValueError("experiment name is required")
    control = _requestable_strategy(strategy_control)
    treatment = _requestable_strategy(strategy_treatment)
    if not 0.0 < traffic_split < 1.0:
        raise ValueError("traffic_split must be strictly between 0 and 1")
    if success_metric not in SUCCESS_METRICS:
        raise ValueError(f"success_metric must be one of {sorted(SUCCESS_METRICS)}")
    if not 0.0 < confidence_level < 1.0 or not 0.0 < power_target < 1.0:
        raise ValueError("confidence_level and power_target must be within (0, 1)")
    start = datetime.utcnow()
    days = duration_days if duration_days is not None else settings.experiment_default_duration_days
    if days <= 0:
        raise ValueError("duration_days must be positive")
    exp = store.insert_experiment(
        name=name.strip(),
        description=description,
        hypothesis=hypothesis,
        strategy_a=control.value,
        strategy_b=treatment.value,
        traffic_split=traffic_split,
        start_date=start,
        end_date=start + timedelta(days=days),
        status=(ExperimentStatus.ACTIVE if activate else ExperimentStatus.DRAFT).value,
        success_metric=success_metric,
        minimum_sample_size=min_sample_size or settings.experiment_min_sample_size,
        confidence_level=confidence_level,
        statistical_power=power_target,
        created_by=created_by,
    )
    logger.info(f"Experiment {exp.id} created: {control.value} vs {treatment.value} ({exp.status.value})")
    return exp


def update_experiment_status(experiment_id: str, status: str | ExperimentStatus,
                             store: Optional[DataStore] = None) -> ExperimentRecord:
    store = store or DataStore()
    target = ExperimentStatus(status)
    exp = _require(experiment_id, store)
    if exp.status is target:
        return exp
    if target not in ALLOWED_TRANSITIONS[exp.status]:
        raise InvalidStatusTransition(f"{exp.status.value} -> {target.value} is not allowed")
    end_date = datetime.utcnow() if target is ExperimentStatus.COMPLETED else None
    updated = store.set_experiment_status(experiment_id, target, end_date=end_date)
    logger.info(f"Experiment {experiment_id} status {exp.status.value} -> {target.value}")
    return updated


def get_experiment(experiment_id: str, store: Optional[DataStore] = None) -> ExperimentRecord:
    return _require(experiment_id, store or DataStore())


def list_experiments(status: str | ExperimentStatus | None = None,
                     store: Optional[DataStore] = None) -> List[ExperimentRecord]:
    store = store or DataStore()
    return store.list_experiments(ExperimentStatus(status) if status is not None else None)


# ----------------------------------------------------------- assignment/logs

def assign_variant(user_id: str, experiment_id: str, store: Optional[DataStore] = None,
                   rng: Optional[random.Random] = None) -> Variant:
    """Sticky variant for (user, experiment). Control when the experiment is not active."""
    store = store or DataStore()
    try:
        existing = store.get_assignment(user_id, experiment_id)
        if existing is not None:
            return existing
        exp = store.get_experiment(experiment_id)
    except StoreError as e:
        logger.error(f"Assignment lookup failed for user {user_id} in {experiment_id}: {e}")
        return Variant.A
    if exp is None or exp.status is not ExperimentStatus.ACTIVE:
        return Variant.A
    draw = (rng or random).random()
    variant = Variant.A if draw < exp.traffic_split else Variant.B
    try:
        persisted, created = store.insert_assignment(user_id, experiment_id, variant)
    except StoreError as e:
        logger.error(f"Assignment write failed for user {user_id} in {experiment_id}: {e}")
        return Variant.A
    if created:
        EXPERIMENT_ASSIGNMENTS.labels(variant=persisted.value).inc()
    else:
        ASSIGNMENT_CONFLICTS.inc()
    return persisted


def log_experiment_event(experiment_id: str, user_id: str, variant: str | Variant, action: str | ExperimentAction,
                         item_id: str, position: Optional[int] = None, session_id: Optional[str] = None,
                         metadata: Optional[Dict[str, Any]] = None, store: Optional[DataStore] = None) -> bool:
    """Append one performance log row. Returns False when the write was dropped."""
    store = store or DataStore()
    if action == "generate_prd":
        action = ExperimentAction.GENERATE_ARTIFACT
    entry = PerformanceLogEntry(
        experiment_id=experiment_id,
        user_id=user_id,
        variant=Variant(variant),
        action=ExperimentAction(action),
        item_id=item_id,
        occurred_at=datetime.utcnow(),
        position_in_list=position,
        session_id=session_id,
        metadata=dict(metadata or {}),
    )
    written = store.insert_performance_log(entry)
    if written:
        EXPERIMENT_EVENTS.labels(action=entry.action.value).inc()
    return written


# --------------------------------------------------------------- analysis

def summarize_performance(experiment_id: str, entries: List[PerformanceLogEntry]) -> List[ExperimentPerformance]:
    users: Dict[Variant, set] = defaultdict(set)
    counts: Dict[Variant, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
    durations: Dict[Variant, List[float]] = defaultdict(list)
    for e in entries:
        users[e.variant].add(e.user_id)
        action = e.action.value
        if action in CONVERSION_ACTIONS:
            counts[e.variant]["conversions"] += 1
        else:
            counts[e.variant][action] += 1
        duration = e.metadata.get("duration_seconds")
        if isinstance(duration, (int, float)):
            durations[e.variant].append(float(duration))
    out = []
    for variant in (Variant.A, Variant.B):
        if variant not in users:
            continue
        c = counts[variant]
        impressions = c[ExperimentAction.IMPRESSION.value]
        clicks = c[ExperimentAction.CLICK.value]
        conversions = c["conversions"]
        spent = durations[variant]
        out.append(ExperimentPerformance(
            experiment_id=experiment_id,
            variant=variant,
            total_users=len(users[variant]),
            impressions=impressions,
            clicks=clicks,
            conversions=conversions,
            ctr=clicks / impressions if impressions else 0.0,
            conversion_rate=min(conversions / impressions, 1.0) if impressions else 0.0,
            avg_engagement_time=float(np.mean(spent)) if spent else 0.0,
        ))
    return out


def compute_experiment_performance(experiment_id: str, store: Optional[DataStore] = None) -> List[ExperimentPerformance]:
    store = store or DataStore()
    return summarize_performance(experiment_id, store.performance_logs(experiment_id))


def _lift_phrase(test: StatisticalTestResult) -> str:
    winner = Variant.B if test.treatment_mean > test.control_mean else Variant.A
    if test.control_mean:
        lift = abs((test.treatment_mean - test.control_mean) / test.control_mean * 100)
        return f"{test.metric_name} is {lift:.1f}% higher in variant {winner.value}."
    return f"{test.metric_name} is higher in variant {winner.value}."


def build_recommendation(tests: List[StatisticalTestResult]) -> str:
    significant = [t for t in tests if t.is_significant]
    if not significant:
        return "No statistically significant difference found. Collect more data."
    parts = [_lift_phrase(t) for t in significant]
    return " ".join(parts) + " Consider rolling the winning strategy out to production."


def overall_confidence(tests: List[StatisticalTestResult]) -> float:
    if not tests:
        return 0.0
    return max(0.0, 1.0 - sum(t.p_value for t in tests) / len(tests))


def analyze_experiment(experiment_id: str, store: Optional[DataStore] = None,
                       mode: Optional[str] = None) -> Dict[str, Any]:
    store = store or DataStore()
    exp = _require(experiment_id, store)
    mode = mode or get_settings().significance_mode
    performance = compute_experiment_performance(experiment_id, store)
    by_variant = {p.variant: p for p in performance}
    if Variant.A not in by_variant or Variant.B not in by_variant:
        EXPERIMENT_ANALYSES.labels(outcome="insufficient_data").inc()
        return {
            "performance": performance,
            "statistical_tests": [],
            "recommendation": "Not enough data: both variants need logged activity.",
            "confidence": 0.0,
        }
    a, b = by_variant[Variant.A], by_variant[Variant.B]
    tests: List[StatisticalTestResult] = []
    now = datetime.utcnow()
    for metric in TESTED_METRICS:
        mean_a, mean_b = getattr(a, metric), getattr(b, metric)
        var_a, var_b = binomial_variance(mean_a), binomial_variance(mean_b)
        outcome = welch_t_test(mean_a, mean_b, a.total_users, b.total_users, var_a, var_b, mode=mode)
        result = StatisticalTestResult(
            experiment_id=experiment_id,
            metric_name=metric,
            control_mean=mean_a,
            treatment_mean=mean_b,
            control_n=a.total_users,
            treatment_n=b.total_users,
            control_variance=var_a,
            treatment_variance=var_b,
            t_statistic=outcome.t_statistic,
            p_value=outcome.p_value,
            is_significant=outcome.is_significant,
            ci_lower=outcome.ci_lower,
            ci_upper=outcome.ci_upper,
            effect_size=outcome.effect_size,
            power=outcome.power,
            calculated_at=now,
        )
        store.upsert_statistical_test(result)
        tests.append(result)
    recommendation = build_recommendation(tests)
    if min(a.total_users, b.total_users) < exp.min_sample_size:
        recommendation += (f" Warning: fewer than {exp.min_sample_size} users in at least one variant;"
                           " treat these results as preliminary.")
    EXPERIMENT_ANALYSES.labels(outcome="significant" if any(t.is_significant for t in tests) else "inconclusive").inc()
    return {
        "performance": performance,
        "statistical_tests": tests,
        "recommendation": recommendation,
        "confidence": overall_confidence(tests),
    }


def _summary(exp: ExperimentRecord, performance: List[ExperimentPerformance]) -> str:
    if exp.end_date is not None:
        days = math.ceil((exp.end_date - exp.start_date).total_seconds() / 86400)
        duration = f"ran for {days} days"
    else:
        duration = "is ongoing"
    users = sum(p.total_users for p in performance)
    return (f"Experiment '{exp.name}' {duration}, comparing {exp.strategy_control.value} (control) with "
            f"{exp.strategy_treatment.value} (treatment). {users} users took part.")


def _key_findings(performance: List[ExperimentPerformance], tests: List[StatisticalTestResult]) -> List[str]:
    findings = []
    by_variant = {p.variant: p for p in performance}
    a, b = by_variant.get(Variant.A), by_variant.get(Variant.B)
    if a and b:
        findings.append(f"Control CTR: {a.ctr * 100:.2f}%, treatment CTR: {b.ctr * 100:.2f}%")
        findings.append(f"Control conversion rate: {a.conversion_rate * 100:.2f}%, "
                        f"treatment conversion rate: {b.conversion_rate * 100:.2f}%")
    for t in tests:
        if t.is_significant:
            findings.append(f"Significant difference in {t.metric_name} (p={t.p_value:.3f})")
    return findings


def _next_steps(significant: bool) -> List[str]:
    if significant:
        steps = [
            "Roll the winning strategy out to 100% of traffic",
            "Share the results with the team and document what was learned",
            "Design a follow-up experiment for the next improvement area",
        ]
    else:
        steps = [
            "Consider extending the experiment to reach a larger sample",
            "Revisit the design (expected effect size, success metric)",
            "Explore alternative strategies",
        ]
    steps.append("Archive the results in the experiment knowledge base")
    return steps


def generate_experiment_report(experiment_id: str, store: Optional[DataStore] = None,
                               mode: Optional[str] = None) -> Dict[str, Any]:
    store = store or DataStore()
    exp = _require(experiment_id, store)
    analysis = analyze_experiment(experiment_id, store, mode=mode)
    significant = any(t.is_significant for t in analysis["statistical_tests"])
    return {
        "experiment_info": exp,
        "summary": _summary(exp, analysis["performance"]),
        "key_findings": _key_findings(analysis["performance"], analysis["statistical_tests"]),
        "statistical_significance": significant,
        "recommendation": analysis["recommendation"],
        "next_steps": _next_steps(significant),
    }


@shared_task
def analyze_active_experiments():
    """Beat task: refresh significance snapshots for every active experiment."""
    store = DataStore()
    try:
        active = store.list_experiments(ExperimentStatus.ACTIVE)
    except StoreError as e:
        logger.error(f"Active experiment listing failed: {e}")
        return {"status": "store_error"}
    if not active:
        return {"status": "no_experiments"}
    analyzed = 0
    for exp in active:
        try:
            analyze_experiment(exp.id, store)
            analyzed += 1
        except (ExperimentError, StoreError) as e:
            logger.error(f"Analysis failed for experiment {exp.id}: {e}")
    return {"status": "ok", "experiments": len(active), "analyzed": analyzed}
