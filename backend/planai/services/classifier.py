"""Turn a transcribed voice note into a structured task or project."""

import json
import logging
import re
from datetime import date
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from planai.services.errors import ClassificationParseError
from planai.services.providers import ChatProvider, ChatReply, ToolSpec, with_retries

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an intelligent task organizer. Analyze the user's voice note and determine:
1. Whether it should be a task or a project
2. Extract a clear title
3. Create a detailed description
4. Determine priority (low/medium/high)
5. Suggest a due date if mentioned or implied
6. For a project, list the tasks it breaks down into

Return your analysis as JSON with this structure:
{
  "type": "task" or "project",
  "title": "clear title",
  "description": "detailed description",
  "priority": "low/medium/high",
  "due_date": "YYYY-MM-DD or null",
  "tasks": ["task1", "task2"],
  "action_items": ["item1", "item2"],
  "category": "suggested category if project",
  "tags": ["tag1"]
}"""

ORGANIZE_NOTE_TOOL = ToolSpec(
    name="organize_note",
    description="Organize a voice note into a structured task or project",
    parameters={
        "type": "object",
        "properties": {
            "type": {"type": "string", "enum": ["task", "project"]},
            "title": {"type": "string"},
            "description": {"type": "string"},
            "priority": {"type": "string", "enum": ["low", "medium", "high"]},
            "due_date": {"type": "string"},
            "tasks": {"type": "array", "items": {"type": "string"}},
            "action_items": {"type": "array", "items": {"type": "string"}},
            "category": {"type": "string"},
            "tags": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["type", "title", "description", "priority"],
        "additionalProperties": False,
    },
)

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


class Classification(BaseModel):
    type: Literal["task", "project"]
    title: str = Field(min_length=1)
    description: str
    priority: Literal["low", "medium", "high"]
    due_date: date | None = None
    tasks: list[str] = Field(default_factory=list)
    action_items: list[str] = Field(default_factory=list)
    category: str | None = None
    tags: list[str] = Field(default_factory=list)

    @field_validator("type", "priority", mode="before")
    @classmethod
    def _lowercase(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be blank")
        return v

    @field_validator("due_date", mode="before")
    @classmethod
    def _optional_date(cls, v):
        # Models answer "null", "" or prose like "next week" when no date applies
        if v is None or isinstance(v, date):
            return v
        try:
            return date.fromisoformat(str(v).strip()[:10])
        except ValueError:
            return None

    @field_validator("category", mode="before")
    @classmethod
    def _blank_category(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def work_items(self) -> list[str]:
        """Child task titles: ``tasks``, or ``action_items`` when ``tasks`` is empty.

        Blanks and repeats are removed.
        """
        items = [item.strip() for item in self.tasks]
        if not any(items):
            items = [item.strip() for item in self.action_items]
        return list(dict.fromkeys(item for item in items if item))


def _extract_json(text: str) -> str:
    fenced = _FENCED_JSON.search(text)
    if fenced:
        return fenced.group(1)
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise ClassificationParseError("No JSON object in the AI reply")
    return text[start : end + 1]


def parse_classification(reply: ChatReply) -> Classification:
    """Validate a provider reply against the classification contract.

    Tool-call arguments take precedence over the free-text content. Any
    reply that does not yield a complete ``Classification`` raises
    ``ClassificationParseError``.
    """
    raw = reply.tool_arguments if reply.tool_arguments else _extract_json(reply.content)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ClassificationParseError(f"AI reply is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ClassificationParseError("AI reply JSON is not an object")
    try:
        return Classification.model_validate(data)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise ClassificationParseError(f"AI reply is missing or has invalid fields: {fields}") from exc


class ClassificationAdapter:
    def __init__(self, provider: ChatProvider):
        self.provider = provider

    async def classify(self, text: str) -> Classification:
        if not text or not text.strip():
            raise ValueError("Cannot classify an empty transcription")
        reply = await with_retries(
            lambda: self.provider.complete(SYSTEM_PROMPT, text, ORGANIZE_NOTE_TOOL),
            operation="classification",
        )
        try:
            classification = parse_classification(reply)
        except ClassificationParseError:
            logger.warning(f"Unparseable classification from {self.provider.kind.value} provider")
            raise
        logger.info(f"Classified note as {classification.type}: {classification.title!r}")
        return classification
