"""Field limits shared by the request bodies."""

from typing import Annotated

from pydantic import BeforeValidator, Field, StringConstraints


def sanitize_string(value):
    """Trim and drop angle brackets before the length checks run."""
    if isinstance(value, str):
        return value.strip().replace("<", "").replace(">", "")
    return value


def _text(min_length: int = 0, max_length: int | None = None):
    return Annotated[
        str,
        StringConstraints(min_length=min_length, max_length=max_length),
        BeforeValidator(sanitize_string),
    ]


Title = _text(1, 100)
Description = _text(1, 500)
Notes = _text(0, 1000)
Content = _text(1, 2000)
Label = _text(1)
Labels = Annotated[list[Label], Field(max_length=10)]
Hours = Annotated[float, Field(ge=0, le=1000)]
