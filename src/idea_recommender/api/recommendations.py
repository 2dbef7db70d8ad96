from __future__ import annotations
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Query
from pydantic import BaseModel, Field
from idea_recommender.ml.recommendation_engine import get_orchestrator
from idea_recommender.models.records import RecommendationStrategy, ScoredCandidate

router = APIRouter(tags=["recommendations"])


class IdeaOut(BaseModel):
    id: str
    title: str
    category: str | None = None
    community: str | None = None
    url: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class RecommendationOut(BaseModel):
    idea: IdeaOut
    score: float
    reason: str
    confidence: float
    strategy: str
    supporting_evidence: List[str] = Field(default_factory=list)

    @classmethod
    def from_candidate(cls, c: ScoredCandidate) -> "RecommendationOut":
        return cls(
            idea=IdeaOut.model_validate(c.item),
            score=c.score,
            reason=c.reason,
            confidence=c.confidence,
            strategy=c.strategy.value,
            supporting_evidence=c.supporting_evidence,
        )


class BehaviorIn(BaseModel):
    user_id: str
    idea_id: str
    action_type: str
    duration: float | None = None
    session_id: str | None = None
    metadata: dict = Field(default_factory=dict)


@router.get("/recommendations", response_model=List[RecommendationOut])
async def recommendations(
    user_id: str,
    limit: Optional[int] = Query(None, ge=1),
    strategy: RecommendationStrategy = RecommendationStrategy.HYBRID,
    diversity_weight: Optional[float] = Query(None, ge=0.0, le=1.0),
):
    results = await get_orchestrator().get_recommendations(user_id, limit, strategy, diversity_weight)
    return [RecommendationOut.from_candidate(c) for c in results]


@router.post("/behaviors", status_code=202)
def track(behavior: BehaviorIn):
    session_id = get_orchestrator().track_behavior(
        behavior.user_id,
        behavior.idea_id,
        behavior.action_type,
        duration=behavior.duration,
        metadata=behavior.metadata,
        session_id=behavior.session_id,
    )
    return {"status": "accepted", "session_id": session_id}
