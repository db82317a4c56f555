from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from planai.api.deps import get_store
from planai.api.validation import Description
from planai.store.entities import CodeIssue, IssueType, Priority
from planai.store.entity_store import EntityStore

router = APIRouter(prefix="/code-issues", tags=["code-issues"])


class CreateCodeIssueRequest(BaseModel):
    file: str = Field(min_length=1)
    lines: int = Field(ge=1)
    type: IssueType
    severity: Priority
    description: Description
    suggestion: str = ""
    project_id: str | None = None


class UpdateCodeIssueRequest(BaseModel):
    file: str | None = Field(default=None, min_length=1)
    lines: int | None = Field(default=None, ge=1)
    type: IssueType | None = None
    severity: Priority | None = None
    description: Description | None = None
    suggestion: str | None = None
    resolved: bool | None = None


@router.get("", response_model=list[CodeIssue])
async def list_code_issues(project_id: str | None = None, store: EntityStore = Depends(get_store)):
    if project_id:
        return store.get_code_issues_by_project_id(project_id)
    return store.get_code_issues()


@router.post("", response_model=CodeIssue, status_code=201)
async def create_code_issue(body: CreateCodeIssueRequest, store: EntityStore = Depends(get_store)):
    return store.add_code_issue(body.model_dump())


@router.patch("/{issue_id}", response_model=CodeIssue)
async def update_code_issue(
    issue_id: str,
    body: UpdateCodeIssueRequest,
    store: EntityStore = Depends(get_store),
):
    issue = store.update_code_issue(issue_id, body.model_dump(exclude_unset=True, exclude_none=True))
    if not issue:
        raise HTTPException(status_code=404, detail="Code issue not found")
    return issue


@router.post("/{issue_id}/resolve", response_model=CodeIssue)
async def resolve_code_issue(issue_id: str, store: EntityStore = Depends(get_store)):
    issue = store.resolve_code_issue(issue_id)
    if not issue:
        raise HTTPException(status_code=404, detail="Code issue not found")
    return issue


@router.delete("/{issue_id}")
async def delete_code_issue(issue_id: str, store: EntityStore = Depends(get_store)):
    if not store.delete_code_issue(issue_id):
        raise HTTPException(status_code=404, detail="Code issue not found")
    return {"detail": "Code issue deleted"}
