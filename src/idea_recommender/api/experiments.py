from __future__ import annotations
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter
from pydantic import BaseModel, Field
from idea_recommender.analytics import get_dashboard_data
from idea_recommender.tasks import experiments as manager

router = APIRouter(tags=["experiments"])


class ExperimentIn(BaseModel):
    name: str
    strategy_control: str
    strategy_treatment: str
    traffic_split: float = 0.5
    duration_days: int | None = None
    success_metric: str = "ctr"
    min_sample_size: int | None = None
    confidence_level: float = 0.95
    power_target: float = 0.8
    hypothesis: str | None = None
    description: str | None = None
    created_by: str | None = None
    activate: bool = False


class ExperimentOut(BaseModel):
    id: str
    name: str
    strategy_control: str
    strategy_treatment: str
    traffic_split: float
    start_date: datetime
    end_date: datetime | None
    status: str
    success_metric: str
    min_sample_size: int
    confidence_level: float
    power_target: float
    hypothesis: str | None = None
    description: str | None = None


class StatusIn(BaseModel):
    status: str


class AssignIn(BaseModel):
    user_id: str


class ExperimentEventIn(BaseModel):
    user_id: str
    variant: str
    action: str
    idea_id: str
    position: int | None = None
    session_id: str | None = None
    metadata: dict = Field(default_factory=dict)


class PerformanceOut(BaseModel):
    variant: str
    total_users: int
    impressions: int
    clicks: int
    conversions: int
    ctr: float
    conversion_rate: float
    avg_engagement_time: float


class StatisticalTestOut(BaseModel):
    metric_name: str
    control_mean: float
    treatment_mean: float
    control_n: int
    treatment_n: int
    t_statistic: float
    p_value: float
    is_significant: bool
    ci_lower: float
    ci_upper: float
    effect_size: float
    power: float
    calculated_at: datetime


class AnalysisOut(BaseModel):
    performance: List[PerformanceOut]
    statistical_tests: List[StatisticalTestOut]
    recommendation: str
    confidence: float


class ReportOut(BaseModel):
    experiment_info: ExperimentOut
    summary: str
    key_findings: List[str]
    statistical_significance: bool
    recommendation: str
    next_steps: List[str]


def _experiment_out(exp) -> ExperimentOut:
    return ExperimentOut(**{
        **asdict(exp),
        "strategy_control": exp.strategy_control.value,
        "strategy_treatment": exp.strategy_treatment.value,
        "status": exp.status.value,
    })


def _performance_out(p) -> PerformanceOut:
    return PerformanceOut(**{**asdict(p), "variant": p.variant.value})


@router.post("/experiments", response_model=ExperimentOut, status_code=201)
def create(body: ExperimentIn):
    return _experiment_out(manager.create_experiment(**body.model_dump()))


@router.get("/experiments", response_model=List[ExperimentOut])
def list_all(status: Optional[str] = None):
    return [_experiment_out(e) for e in manager.list_experiments(status)]


@router.get("/experiments/{experiment_id}", response_model=ExperimentOut)
def get_one(experiment_id: str):
    return _experiment_out(manager.get_experiment(experiment_id))


@router.post("/experiments/{experiment_id}/status", response_model=ExperimentOut)
def change_status(experiment_id: str, body: StatusIn):
    return _experiment_out(manager.update_experiment_status(experiment_id, body.status))


@router.post("/experiments/{experiment_id}/assign")
def assign(experiment_id: str, body: AssignIn):
    variant = manager.assign_variant(body.user_id, experiment_id)
    return {"experiment_id": experiment_id, "user_id": body.user_id, "variant": variant.value}


@router.post("/experiments/{experiment_id}/events", status_code=202)
def log_event(experiment_id: str, body: ExperimentEventIn):
    written = manager.log_experiment_event(
        experiment_id, body.user_id, body.variant, body.action, body.idea_id,
        position=body.position, session_id=body.session_id, metadata=body.metadata,
    )
    return {"status": "accepted" if written else "dropped"}


@router.get("/experiments/{experiment_id}/analysis", response_model=AnalysisOut)
def analysis(experiment_id: str):
    result = manager.analyze_experiment(experiment_id)
    return AnalysisOut(
        performance=[_performance_out(p) for p in result["performance"]],
        statistical_tests=[StatisticalTestOut(**asdict(t)) for t in result["statistical_tests"]],
        recommendation=result["recommendation"],
        confidence=result["confidence"],
    )


@router.get("/experiments/{experiment_id}/report", response_model=ReportOut)
def report(experiment_id: str):
    result = manager.generate_experiment_report(experiment_id)
    return ReportOut(**{**result, "experiment_info": _experiment_out(result["experiment_info"])})


@router.get("/analytics/dashboard")
def dashboard() -> Dict[str, Any]:
    data = get_dashboard_data()
    return {
        **data,
        "active_experiments": [_experiment_out(e).model_dump(mode="json") for e in data["active_experiments"]],
        "experiment_performances": {
            k: [_performance_out(p).model_dump() for p in v] for k, v in data["experiment_performances"].items()
        },
        "statistical_results": {
            k: [StatisticalTestOut(**asdict(t)).model_dump(mode="json") for t in v]
            for k, v in data["statistical_results"].items()
        },
        "generated_at": data["generated_at"].isoformat(),
    }
