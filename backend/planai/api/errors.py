"""HTTP statuses for typed pipeline and provider failures."""

import math

from fastapi import HTTPException

from planai.services.errors import AIServiceError, RateLimitError

STATUS_BY_REASON = {
    "rate_limited": 429,
    "payment_required": 402,
    "unauthorized": 502,
    "parse_error": 502,
    "invalid_analysis": 502,
    "transcription_failed": 502,
    "upstream_error": 502,
    "timeout": 504,
    "network": 503,
    "not_configured": 503,
    "empty_recording": 400,
    "empty_transcription": 400,
    "cancelled": 400,
    "persistence_error": 500,
}


def failure_exception(
    reason: str,
    message: str,
    retry_after: float | None = None,
    **extra,
) -> HTTPException:
    headers = None
    if retry_after is not None:
        headers = {"Retry-After": str(math.ceil(retry_after))}
    return HTTPException(
        status_code=STATUS_BY_REASON.get(reason, 500),
        detail={"reason": reason, "message": message, **extra},
        headers=headers,
    )


def upstream_exception(exc: AIServiceError) -> HTTPException:
    retry_after = exc.retry_after if isinstance(exc, RateLimitError) else None
    return failure_exception(exc.reason, exc.user_message, retry_after)
