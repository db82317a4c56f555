from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from planai.api.deps import get_store
from planai.api.validation import Description, Labels, Title
from planai.store.entities import Priority, Task, TaskStatus
from planai.store.entity_store import EntityStore

router = APIRouter(prefix="/tasks", tags=["tasks"])


class UpdateTaskRequest(BaseModel):
    title: Title | None = None
    description: Description | None = None
    priority: Priority | None = None
    due_date: date | None = None
    status: TaskStatus | None = None
    tags: Labels | None = None


@router.get("", response_model=list[Task])
async def list_tasks(project_id: str | None = None, store: EntityStore = Depends(get_store)):
    if project_id:
        return store.get_tasks_by_project_id(project_id)
    return store.get_tasks()


@router.patch("/{task_id}", response_model=Task)
async def update_task(task_id: str, body: UpdateTaskRequest, store: EntityStore = Depends(get_store)):
    task = store.update_task(task_id, body.model_dump(exclude_unset=True, exclude_none=True))
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


@router.delete("/{task_id}")
async def delete_task(task_id: str, store: EntityStore = Depends(get_store)):
    if not store.delete_task(task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    return {"detail": "Task deleted"}
