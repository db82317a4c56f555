"""Entity types held by the in-memory store.

These are plain pydantic models rather than SQLModel tables: the whole
collection is serialised as one JSON document into a store slot (see
``planai.store.persistence``).
"""

from datetime import UTC, date, datetime
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

ProjectStatus = Literal["planning", "in-progress", "review", "completed"]
Priority = Literal["low", "medium", "high"]
StepPriority = Literal["low", "medium", "high", "critical"]
StepStatus = Literal["not_started", "in_progress", "blocked", "completed"]
LearningType = Literal["success", "failure", "insight"]
IssueType = Literal["length", "duplicate", "complexity", "security"]
TaskStatus = Literal["todo", "in_progress", "done"]

DEFAULT_OWNER = "You"


def new_id() -> str:
    return uuid4().hex


def utcnow() -> datetime:
    return datetime.now(UTC)


def _unique(values: list[str]) -> list[str]:
    """Collapse duplicates while keeping first-seen order."""
    return list(dict.fromkeys(values))


class Project(BaseModel):
    id: str
    title: str
    description: str = ""
    status: ProjectStatus = "planning"
    priority: Priority = "medium"
    category: str = "general"
    due_date: str = ""
    progress: int = Field(default=0, ge=0, le=100)
    steps_completed: int = Field(default=0, ge=0)
    total_steps: int = Field(default=0, ge=0)
    technologies: list[str] = Field(default_factory=list)
    team: list[str] = Field(default_factory=lambda: [DEFAULT_OWNER])
    budget: str = ""
    time_spent: str = ""
    estimated_completion: str = ""
    created_at: datetime
    last_updated: datetime

    @field_validator("technologies")
    @classmethod
    def _technologies_as_set(cls, v: list[str]) -> list[str]:
        return _unique(v)

    @field_validator("team")
    @classmethod
    def _team_has_owner(cls, v: list[str]) -> list[str]:
        return _unique(v) or [DEFAULT_OWNER]


class SubTask(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    completed: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None


class Step(BaseModel):
    id: str
    project_id: str
    title: str
    description: str = ""
    completed: bool = False
    status: StepStatus = "not_started"
    priority: StepPriority | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    notes: str = ""
    subtasks: list[SubTask] = Field(default_factory=list)
    learnings: list[str] = Field(default_factory=list)
    impact: list[str] = Field(default_factory=list)
    created_at: datetime
    completed_at: datetime | None = None


class Learning(BaseModel):
    id: str
    title: str
    content: str
    type: LearningType
    tags: list[str] = Field(default_factory=list)
    related_step: str | None = None
    project: str = ""
    project_id: str | None = None
    date: datetime

    @field_validator("tags")
    @classmethod
    def _tags_as_set(cls, v: list[str]) -> list[str]:
        return _unique(v)


class CodeIssue(BaseModel):
    id: str
    file: str
    lines: int = Field(gt=0)
    type: IssueType
    severity: Priority
    description: str = ""
    suggestion: str = ""
    project_id: str | None = None
    resolved: bool = False
    resolved_at: datetime | None = None
    created_at: datetime


class Task(BaseModel):
    """A standalone work item, usually created from a voice note."""

    id: str
    title: str
    description: str = ""
    priority: Priority = "medium"
    due_date: date | None = None
    status: TaskStatus = "todo"
    tags: list[str] = Field(default_factory=list)
    project_id: str | None = None
    created_from_voice: bool = False
    original_note: str = ""
    created_at: datetime

    @field_validator("tags")
    @classmethod
    def _tags_as_set(cls, v: list[str]) -> list[str]:
        return _unique(v)


class StoreState(BaseModel):
    projects: list[Project] = Field(default_factory=list)
    steps: dict[str, list[Step]] = Field(default_factory=dict)
    learnings: list[Learning] = Field(default_factory=list)
    code_issues: list[CodeIssue] = Field(default_factory=list)
    tasks: list[Task] = Field(default_factory=list)
