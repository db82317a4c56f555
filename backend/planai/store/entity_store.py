"""In-memory entity store with write-through persistence.

Every mutation works on a deep copy of the current state, persists it, and
only then swaps it in, so a failed save leaves the visible state untouched.
Updates and deletes that target a missing id are silent no-ops: nothing is
persisted and ``None``/``False`` is returned.
"""

import logging
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel

from planai.store.entities import (
    CodeIssue,
    Learning,
    Project,
    Step,
    StoreState,
    SubTask,
    Task,
    new_id,
    utcnow,
)
from planai.store.metrics import completion_percent

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Fields callers may never overwrite through a partial update
_IDENTITY_FIELDS = {"id", "created_at"}
_PROJECT_DERIVED_FIELDS = {"progress", "steps_completed", "total_steps", "last_updated"}
_STEP_FIXED_FIELDS = _IDENTITY_FIELDS | {"project_id"}


class StorePersistence(Protocol):
    def load(self) -> StoreState | None: ...

    def save(self, state: StoreState) -> None: ...


def _index_of(items: list, item_id: str) -> int | None:
    for index, item in enumerate(items):
        if item.id == item_id:
            return index
    return None


def _merge(model: ModelT, fields: dict[str, Any], fixed: set[str]) -> ModelT:
    """Shallow-merge ``fields`` into ``model`` and re-validate the result."""
    changes = {k: v for k, v in fields.items() if k not in fixed}
    return type(model).model_validate({**model.model_dump(), **changes})


def _keep_owner(current: list[str], proposed: list[str]) -> list[str]:
    owner = current[0]
    return [owner, *(member for member in proposed if member != owner)]


def _settle_subtasks(subtasks: list[SubTask], previous: list[SubTask] = ()) -> list[SubTask]:
    """Stamp ``completed_at`` on a false->true change only.

    A subtask that matches a ``previous`` one by id keeps its ``created_at``
    and, while it stays completed, its ``completed_at``.
    """
    before = {subtask.id: subtask for subtask in previous}
    settled = []
    for subtask in subtasks:
        old = before.get(subtask.id)
        update: dict[str, Any] = {}
        if old is not None:
            update["created_at"] = old.created_at
        if not subtask.completed:
            update["completed_at"] = None
        elif old is not None and old.completed:
            update["completed_at"] = old.completed_at or subtask.completed_at or utcnow()
        else:
            update["completed_at"] = subtask.completed_at or utcnow()
        settled.append(subtask.model_copy(update=update))
    return settled


def _settle_step(step: Step, was_completed: bool, previous: Step | None = None) -> Step:
    """Make ``completed``, ``status`` and ``completed_at`` agree.

    A change of the ``completed`` flag wins over ``status``; otherwise a
    status moved to or away from ``completed`` drives the flag.
    """
    completed = step.completed
    if completed == was_completed:
        if step.status == "completed" and not completed:
            completed = True
        elif step.status != "completed" and completed:
            completed = False

    subtasks = _settle_subtasks(step.subtasks, previous.subtasks if previous else ())
    update: dict[str, Any] = {"completed": completed, "subtasks": subtasks}
    if completed:
        update["status"] = "completed"
        update["completed_at"] = step.completed_at or utcnow()
    else:
        update["completed_at"] = None
        if step.status == "completed":
            update["status"] = "in_progress"
    return step.model_copy(update=update)


def _settle_issue(issue: CodeIssue, was_resolved: bool) -> CodeIssue:
    if issue.resolved and not was_resolved:
        return issue.model_copy(update={"resolved_at": issue.resolved_at or utcnow()})
    if not issue.resolved and issue.resolved_at is not None:
        return issue.model_copy(update={"resolved_at": None})
    return issue


class EntityStore:
    """Single source of truth for projects, steps, learnings, code issues and tasks."""

    def __init__(
        self,
        persistence: StorePersistence | None = None,
        state: StoreState | None = None,
    ):
        self._persistence = persistence
        if state is None and persistence is not None:
            state = persistence.load()
        self._state = state or StoreState()

    # --- Internals ---

    def _draft(self) -> StoreState:
        return self._state.model_copy(deep=True)

    def _commit(self, draft: StoreState) -> None:
        if self._persistence is not None:
            self._persistence.save(draft)
        self._state = draft

    def _recount(self, draft: StoreState, project_id: str) -> None:
        index = _index_of(draft.projects, project_id)
        if index is None:
            return
        steps = draft.steps.get(project_id, [])
        completed = sum(1 for step in steps if step.completed)
        draft.projects[index] = draft.projects[index].model_copy(
            update={
                "total_steps": len(steps),
                "steps_completed": completed,
                "progress": completion_percent(completed, len(steps)),
                "last_updated": utcnow(),
            }
        )

    def snapshot(self) -> StoreState:
        return self._state.model_copy(deep=True)

    # --- Projects ---

    def add_project(self, data: dict[str, Any]) -> Project:
        now = utcnow()
        project = Project.model_validate(
            {
                **data,
                "id": new_id(),
                "created_at": now,
                "last_updated": now,
                "steps_completed": 0,
                "total_steps": 0,
                "progress": 0,
            }
        )
        draft = self._draft()
        draft.projects.append(project)
        draft.steps[project.id] = []
        self._commit(draft)
        logger.debug(f"Added project {project.id}")
        return project.model_copy(deep=True)

    def update_project(self, project_id: str, fields: dict[str, Any]) -> Project | None:
        draft = self._draft()
        index = _index_of(draft.projects, project_id)
        if index is None:
            return None
        current = draft.projects[index]
        fields = dict(fields)
        if "team" in fields:
            fields["team"] = _keep_owner(current.team, fields["team"] or [])
        updated = _merge(current, fields, _IDENTITY_FIELDS | _PROJECT_DERIVED_FIELDS)
        updated = updated.model_copy(update={"last_updated": utcnow()})
        draft.projects[index] = updated
        self._commit(draft)
        return updated.model_copy(deep=True)

    def delete_project(self, project_id: str) -> bool:
        draft = self._draft()
        if _index_of(draft.projects, project_id) is None and project_id not in draft.steps:
            return False
        removed_steps = len(draft.steps.pop(project_id, []))
        draft.projects = [p for p in draft.projects if p.id != project_id]
        learnings = [learning for learning in draft.learnings if learning.project_id != project_id]
        issues = [i for i in draft.code_issues if i.project_id != project_id]
        tasks = [t for t in draft.tasks if t.project_id != project_id]
        logger.info(
            f"Deleting project {project_id}: {removed_steps} steps, "
            f"{len(draft.learnings) - len(learnings)} learnings, "
            f"{len(draft.code_issues) - len(issues)} code issues, "
            f"{len(draft.tasks) - len(tasks)} tasks"
        )
        draft.learnings, draft.code_issues, draft.tasks = learnings, issues, tasks
        self._commit(draft)
        return True

    # --- Steps ---

    def add_step(self, project_id: str, data: dict[str, Any]) -> Step:
        step = Step.model_validate(
            {**data, "id": new_id(), "project_id": project_id, "created_at": utcnow()}
        )
        step = _settle_step(step, was_completed=False)
        draft = self._draft()
        if _index_of(draft.projects, project_id) is None:
            logger.warning(f"Adding step to unknown project {project_id}")
        draft.steps.setdefault(project_id, []).append(step)
        self._recount(draft, project_id)
        self._commit(draft)
        return step.model_copy(deep=True)

    def update_step(
        self, project_id: str, step_id: str, fields: dict[str, Any]
    ) -> Step | None:
        draft = self._draft()
        steps = draft.steps.get(project_id)
        index = _index_of(steps, step_id) if steps else None
        if index is None:
            return None
        current = steps[index]
        updated = _settle_step(
            _merge(current, fields, _STEP_FIXED_FIELDS), current.completed, previous=current
        )
        steps[index] = updated
        if updated.completed != current.completed:
            self._recount(draft, project_id)
        self._commit(draft)
        return updated.model_copy(deep=True)

    def delete_step(self, project_id: str, step_id: str) -> bool:
        draft = self._draft()
        steps = draft.steps.get(project_id, [])
        remaining = [step for step in steps if step.id != step_id]
        if len(remaining) == len(steps):
            return False
        draft.steps[project_id] = remaining
        self._recount(draft, project_id)
        self._commit(draft)
        return True

    def toggle_step_completion(self, project_id: str, step_id: str) -> Step | None:
        draft = self._draft()
        steps = draft.steps.get(project_id)
        index = _index_of(steps, step_id) if steps else None
        if index is None:
            return None
        current = steps[index]
        flipped = current.model_copy(update={"completed": not current.completed})
        steps[index] = _settle_step(flipped, current.completed, previous=current)
        self._recount(draft, project_id)
        self._commit(draft)
        return steps[index].model_copy(deep=True)

    # --- Learnings ---

    def add_learning(self, data: dict[str, Any]) -> Learning:
        learning = Learning.model_validate({**data, "id": new_id(), "date": utcnow()})
        draft = self._draft()
        draft.learnings.insert(0, learning)
        self._commit(draft)
        return learning.model_copy(deep=True)

    def update_learning(self, learning_id: str, fields: dict[str, Any]) -> Learning | None:
        draft = self._draft()
        index = _index_of(draft.learnings, learning_id)
        if index is None:
            return None
        draft.learnings[index] = _merge(draft.learnings[index], fields, {"id"})
        self._commit(draft)
        return draft.learnings[index].model_copy(deep=True)

    def delete_learning(self, learning_id: str) -> bool:
        draft = self._draft()
        if _index_of(draft.learnings, learning_id) is None:
            return False
        draft.learnings = [learning for learning in draft.learnings if learning.id != learning_id]
        self._commit(draft)
        return True

    # --- Code issues ---

    def add_code_issue(self, data: dict[str, Any]) -> CodeIssue:
        issue = CodeIssue.model_validate({**data, "id": new_id(), "created_at": utcnow()})
        issue = _settle_issue(issue, was_resolved=False)
        draft = self._draft()
        draft.code_issues.append(issue)
        self._commit(draft)
        return issue.model_copy(deep=True)

    def update_code_issue(self, issue_id: str, fields: dict[str, Any]) -> CodeIssue | None:
        draft = self._draft()
        index = _index_of(draft.code_issues, issue_id)
        if index is None:
            return None
        current = draft.code_issues[index]
        updated = _settle_issue(_merge(current, fields, _IDENTITY_FIELDS), current.resolved)
        draft.code_issues[index] = updated
        self._commit(draft)
        return updated.model_copy(deep=True)

    def resolve_code_issue(self, issue_id: str) -> CodeIssue | None:
        return self.update_code_issue(issue_id, {"resolved": True})

    def delete_code_issue(self, issue_id: str) -> bool:
        draft = self._draft()
        if _index_of(draft.code_issues, issue_id) is None:
            return False
        draft.code_issues = [i for i in draft.code_issues if i.id != issue_id]
        self._commit(draft)
        return True

    # --- Tasks ---

    def add_task(self, data: dict[str, Any]) -> Task:
        task = Task.model_validate({**data, "id": new_id(), "created_at": utcnow()})
        draft = self._draft()
        draft.tasks.append(task)
        self._commit(draft)
        return task.model_copy(deep=True)

    def update_task(self, task_id: str, fields: dict[str, Any]) -> Task | None:
        draft = self._draft()
        index = _index_of(draft.tasks, task_id)
        if index is None:
            return None
        draft.tasks[index] = _merge(draft.tasks[index], fields, _IDENTITY_FIELDS)
        self._commit(draft)
        return draft.tasks[index].model_copy(deep=True)

    def delete_task(self, task_id: str) -> bool:
        draft = self._draft()
        if _index_of(draft.tasks, task_id) is None:
            return False
        draft.tasks = [t for t in draft.tasks if t.id != task_id]
        self._commit(draft)
        return True

    # --- Queries ---

    def get_projects(self) -> list[Project]:
        return [p.model_copy(deep=True) for p in self._state.projects]

    def get_project_by_id(self, project_id: str) -> Project | None:
        index = _index_of(self._state.projects, project_id)
        if index is None:
            return None
        return self._state.projects[index].model_copy(deep=True)

    def get_steps_by_project_id(self, project_id: str) -> list[Step]:
        return [s.model_copy(deep=True) for s in self._state.steps.get(project_id, [])]

    def get_learnings(self) -> list[Learning]:
        return [learning.model_copy(deep=True) for learning in self._state.learnings]

    def get_learnings_by_project_id(self, project_id: str) -> list[Learning]:
        return [learning.model_copy(deep=True) for learning in self._state.learnings if learning.project_id == project_id]

    def get_code_issues(self) -> list[CodeIssue]:
        return [i.model_copy(deep=True) for i in self._state.code_issues]

    def get_code_issues_by_project_id(self, project_id: str) -> list[CodeIssue]:
        return [i.model_copy(deep=True) for i in self._state.code_issues if i.project_id == project_id]

    def get_tasks(self) -> list[Task]:
        return [t.model_copy(deep=True) for t in self._state.tasks]

    def get_tasks_by_project_id(self, project_id: str) -> list[Task]:
        return [t.model_copy(deep=True) for t in self._state.tasks if t.project_id == project_id]
