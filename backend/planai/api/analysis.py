from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from planai.api.deps import get_analysis_runner, get_store
from planai.api.errors import upstream_exception
from planai.services.analysis import AnalysisRunner
from planai.services.errors import AIServiceError
from planai.store.entity_store import EntityStore

router = APIRouter(tags=["analysis"])


class AnalysisRequest(BaseModel):
    project_id: str | None = None


class AnalysisResponse(BaseModel):
    source: str
    project_id: str | None
    features: dict
    result: dict


@router.post("/analysis", response_model=AnalysisResponse)
async def run_analysis(
    body: AnalysisRequest,
    store: EntityStore = Depends(get_store),
    runner: AnalysisRunner = Depends(get_analysis_runner),
):
    """Analyse every project, or just ``project_id`` when given."""
    if body.project_id and not store.get_project_by_id(body.project_id):
        raise HTTPException(status_code=404, detail="Project not found")
    try:
        outcome = await runner.run(body.project_id)
    except AIServiceError as exc:
        raise upstream_exception(exc) from exc
    return AnalysisResponse(
        source=outcome.source,
        project_id=body.project_id,
        features=outcome.features,
        result=outcome.result,
    )
