"""Card ordering endpoints.

POST  /sorting/apply       — deterministic rule chain over the posted records
POST  /sorting/refine      — rule chain followed by the AI refinement pass
POST  /sorting/strategies  — ask the classifier for grouping suggestions
"""
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from app.config import settings
from app.dependencies import get_classifier
from app.services.ai_refinement import Classifier, run_refinement
from app.services.strategy_discovery import suggest_grouping_strategies
from app.utils.card_sorter import apply_sorting
from app.utils.sort_config import SortConfiguration

router = APIRouter(prefix="/sorting", tags=["sorting"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class SortRequest(BaseModel):
    records: list[dict[str, Any]]
    config: Optional[dict] = None


class SortedResultResponse(BaseModel):
    record: dict[str, Any]
    original_index: int
    group_id: Optional[str] = None
    group_size: Optional[int] = None
    ai_group_id: Optional[str] = None
    ai_similarity_score: Optional[float] = None


class SortResponse(BaseModel):
    results: list[SortedResultResponse]
    total: int


class RefineResponse(SortResponse):
    ai_status: str
    warning: Optional[str] = None


class StrategyRequest(BaseModel):
    records: list[dict[str, Any]]
    columns: list[str] = Field(default_factory=list)


class StrategyResponse(BaseModel):
    id: str
    name: str
    description: str
    mode: str
    suggested_fields: list[str]
    confidence: float


class StrategiesResponse(BaseModel):
    strategies: list[StrategyResponse]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _parse_config(raw: Optional[dict]) -> SortConfiguration:
    try:
        return SortConfiguration.from_dict(raw)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid sort configuration: {exc}",
        )


def _to_response(results: list) -> list[SortedResultResponse]:
    return [SortedResultResponse(**r.to_dict()) for r in results]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/apply", response_model=SortResponse)
async def apply(body: SortRequest):
    config = _parse_config(body.config)
    results = apply_sorting(body.records, config)
    return SortResponse(results=_to_response(results), total=len(results))


@router.post("/refine", response_model=RefineResponse)
async def refine(
    body: SortRequest,
    classifier: Annotated[Classifier, Depends(get_classifier)],
):
    config = _parse_config(body.config)
    base = apply_sorting(body.records, config)
    outcome = await run_refinement(
        base,
        config.ai_refinement,
        classifier,
        timeout=settings.ai_request_timeout_seconds,
    )
    warning = None
    if not outcome.succeeded and outcome.error:
        warning = f"AI sorting failed, showing the rule-based order: {outcome.error}"
    return RefineResponse(
        results=_to_response(outcome.results),
        total=len(outcome.results),
        ai_status=outcome.status,
        warning=warning,
    )


@router.post("/strategies", response_model=StrategiesResponse)
async def strategies(
    body: StrategyRequest,
    classifier: Annotated[Classifier, Depends(get_classifier)],
):
    found = await suggest_grouping_strategies(
        body.records,
        body.columns,
        classifier,
        sample_size=settings.strategy_sample_size,
    )
    return StrategiesResponse(strategies=[StrategyResponse(**s.to_dict()) for s in found])
