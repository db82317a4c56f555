from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from planai.api.deps import get_store
from planai.api.validation import Content, Labels, Title
from planai.store.entities import Learning, LearningType
from planai.store.entity_store import EntityStore

router = APIRouter(prefix="/learnings", tags=["learnings"])


class CreateLearningRequest(BaseModel):
    title: Title
    content: Content
    type: LearningType
    tags: Labels = []
    related_step: str | None = None
    project: str = ""
    project_id: str | None = None


class UpdateLearningRequest(BaseModel):
    title: Title | None = None
    content: Content | None = None
    type: LearningType | None = None
    tags: Labels | None = None
    related_step: str | None = None
    project: str | None = None
    project_id: str | None = None


@router.get("", response_model=list[Learning])
async def list_learnings(project_id: str | None = None, store: EntityStore = Depends(get_store)):
    """Newest first; ``project_id`` narrows to one project."""
    if project_id:
        return store.get_learnings_by_project_id(project_id)
    return store.get_learnings()


@router.post("", response_model=Learning, status_code=201)
async def create_learning(body: CreateLearningRequest, store: EntityStore = Depends(get_store)):
    data = body.model_dump()
    if body.project_id and not body.project:
        project = store.get_project_by_id(body.project_id)
        if project:
            data["project"] = project.title
    return store.add_learning(data)


@router.patch("/{learning_id}", response_model=Learning)
async def update_learning(
    learning_id: str,
    body: UpdateLearningRequest,
    store: EntityStore = Depends(get_store),
):
    learning = store.update_learning(learning_id, body.model_dump(exclude_unset=True, exclude_none=True))
    if not learning:
        raise HTTPException(status_code=404, detail="Learning not found")
    return learning


@router.delete("/{learning_id}")
async def delete_learning(learning_id: str, store: EntityStore = Depends(get_store)):
    if not store.delete_learning(learning_id):
        raise HTTPException(status_code=404, detail="Learning not found")
    return {"detail": "Learning deleted"}
