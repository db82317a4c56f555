from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from planai.api.deps import get_store
from planai.api.validation import Description, Hours, Label, Labels, Notes, Title
from planai.store.entities import (
    Priority,
    Project,
    ProjectStatus,
    Step,
    StepPriority,
    StepStatus,
)
from planai.store.entity_store import EntityStore
from planai.store.metrics import RiskLevel, TimelineStatus, project_health

router = APIRouter(tags=["projects"])


# --- Pydantic models ---


class CreateProjectRequest(BaseModel):
    title: Title
    description: Description
    category: Label = "general"
    priority: Priority = "medium"
    status: ProjectStatus = "planning"
    due_date: str = ""
    technologies: Labels = []
    team: Labels = []
    budget: str = ""
    time_spent: str = ""
    estimated_completion: str = ""


class UpdateProjectRequest(BaseModel):
    title: Title | None = None
    description: Description | None = None
    category: Label | None = None
    priority: Priority | None = None
    status: ProjectStatus | None = None
    due_date: str | None = None
    technologies: Labels | None = None
    team: Labels | None = None
    budget: str | None = None
    time_spent: str | None = None
    estimated_completion: str | None = None


class SubTaskRequest(BaseModel):
    id: str | None = None
    title: Title
    completed: bool = False


class CreateStepRequest(BaseModel):
    title: Title
    description: Description
    priority: StepPriority | None = None
    estimated_hours: Hours | None = None
    status: StepStatus = "not_started"
    completed: bool = False
    notes: Notes = ""
    subtasks: list[SubTaskRequest] = []
    learnings: list[str] = []
    impact: list[str] = []


class UpdateStepRequest(BaseModel):
    title: Title | None = None
    description: Description | None = None
    priority: StepPriority | None = None
    estimated_hours: Hours | None = None
    status: StepStatus | None = None
    completed: bool | None = None
    notes: Notes | None = None
    subtasks: list[SubTaskRequest] | None = None
    learnings: list[str] | None = None
    impact: list[str] | None = None


class ProjectHealthResponse(BaseModel):
    project_id: str
    overall_score: int
    velocity: float
    quality: int
    risk: RiskLevel
    efficiency: float
    timeline: TimelineStatus
    code_health_score: int
    high_severity_issues: int
    medium_severity_issues: int


def _changes(body: BaseModel) -> dict:
    return body.model_dump(exclude_unset=True, exclude_none=True)


def _require_project(store: EntityStore, project_id: str) -> Project:
    project = store.get_project_by_id(project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


# --- Projects ---


@router.get("/projects", response_model=list[Project])
async def list_projects(store: EntityStore = Depends(get_store)):
    return store.get_projects()


@router.post("/projects", response_model=Project, status_code=201)
async def create_project(body: CreateProjectRequest, store: EntityStore = Depends(get_store)):
    return store.add_project(body.model_dump())


@router.get("/projects/{project_id}", response_model=Project)
async def get_project(project_id: str, store: EntityStore = Depends(get_store)):
    return _require_project(store, project_id)


@router.patch("/projects/{project_id}", response_model=Project)
async def update_project(
    project_id: str,
    body: UpdateProjectRequest,
    store: EntityStore = Depends(get_store),
):
    project = store.update_project(project_id, _changes(body))
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


@router.delete("/projects/{project_id}")
async def delete_project(project_id: str, store: EntityStore = Depends(get_store)):
    """Delete a project with its steps, learnings, code issues and tasks."""
    if not store.delete_project(project_id):
        raise HTTPException(status_code=404, detail="Project not found")
    return {"detail": "Project deleted"}


@router.get("/projects/{project_id}/health", response_model=ProjectHealthResponse)
async def get_project_health(project_id: str, store: EntityStore = Depends(get_store)):
    project = _require_project(store, project_id)
    health = project_health(
        project,
        store.get_steps_by_project_id(project_id),
        store.get_learnings_by_project_id(project_id),
        store.get_code_issues_by_project_id(project_id),
    )
    return ProjectHealthResponse(project_id=project_id, **health.to_dict())


# --- Steps ---


@router.get("/projects/{project_id}/steps", response_model=list[Step])
async def list_steps(project_id: str, store: EntityStore = Depends(get_store)):
    return store.get_steps_by_project_id(project_id)


@router.post("/projects/{project_id}/steps", response_model=Step, status_code=201)
async def create_step(
    project_id: str,
    body: CreateStepRequest,
    store: EntityStore = Depends(get_store),
):
    _require_project(store, project_id)
    return store.add_step(project_id, body.model_dump(exclude_none=True))


@router.patch("/projects/{project_id}/steps/{step_id}", response_model=Step)
async def update_step(
    project_id: str,
    step_id: str,
    body: UpdateStepRequest,
    store: EntityStore = Depends(get_store),
):
    step = store.update_step(project_id, step_id, _changes(body))
    if not step:
        raise HTTPException(status_code=404, detail="Step not found")
    return step


@router.delete("/projects/{project_id}/steps/{step_id}")
async def delete_step(project_id: str, step_id: str, store: EntityStore = Depends(get_store)):
    if not store.delete_step(project_id, step_id):
        raise HTTPException(status_code=404, detail="Step not found")
    return {"detail": "Step deleted"}


@router.post("/projects/{project_id}/steps/{step_id}/toggle", response_model=Step)
async def toggle_step(project_id: str, step_id: str, store: EntityStore = Depends(get_store)):
    step = store.toggle_step_completion(project_id, step_id)
    if not step:
        raise HTTPException(status_code=404, detail="Step not found")
    return step
