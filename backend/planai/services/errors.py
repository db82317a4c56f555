"""Typed failures raised by the AI adapters.

Each error carries a stable ``reason`` code (used as the ``Failed(reason)``
of the ingestion pipeline), a user-facing message and a ``retryable`` flag.
Only timeouts and network errors are retryable.
"""

import httpx
import openai


class AIServiceError(Exception):
    reason = "upstream_error"
    retryable = False
    user_message = "The AI service returned an unexpected error."

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.user_message)
        self.detail = detail


class RateLimitError(AIServiceError):
    reason = "rate_limited"
    user_message = "Rate limits exceeded, please try again later."

    def __init__(self, detail: str = "", retry_after: float | None = None):
        super().__init__(detail)
        self.retry_after = retry_after


class PaymentRequiredError(AIServiceError):
    reason = "payment_required"
    user_message = "Payment required, please add funds to your AI provider account."


class AuthorizationError(AIServiceError):
    reason = "unauthorized"
    user_message = "The AI provider rejected the configured API key."


class UpstreamTimeoutError(AIServiceError):
    reason = "timeout"
    retryable = True
    user_message = "The AI service did not answer in time."


class UpstreamNetworkError(AIServiceError):
    reason = "network"
    retryable = True
    user_message = "Could not reach the AI service."


class UpstreamResponseError(AIServiceError):
    reason = "upstream_error"

    def __init__(self, detail: str = "", status_code: int | None = None):
        super().__init__(detail)
        self.status_code = status_code


class ClassificationParseError(AIServiceError):
    reason = "parse_error"
    user_message = "The AI reply could not be turned into a task or project."


class AnalysisValidationError(AIServiceError):
    reason = "invalid_analysis"
    user_message = "The analysis provider returned an incomplete result."


class TranscriptionError(AIServiceError):
    reason = "transcription_failed"
    user_message = "The recording could not be transcribed."


class ProviderNotConfiguredError(AIServiceError):
    reason = "not_configured"
    user_message = "No AI provider is configured. Add an API key or endpoint in settings."


def _retry_after(resp: httpx.Response) -> float | None:
    value = resp.headers.get("retry-after")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def raise_for_upstream_status(resp: httpx.Response) -> None:
    """Translate a non-2xx provider response into a typed error."""
    if resp.is_success:
        return
    body = resp.text[:200]
    if resp.status_code == 429:
        raise RateLimitError(body, retry_after=_retry_after(resp))
    if resp.status_code == 402:
        raise PaymentRequiredError(body)
    if resp.status_code in (401, 403):
        raise AuthorizationError(body)
    if resp.status_code in (408, 504):
        raise UpstreamTimeoutError(body)
    raise UpstreamResponseError(
        f"AI provider error ({resp.status_code}): {body}", status_code=resp.status_code
    )


def translate_httpx_error(exc: httpx.HTTPError) -> AIServiceError:
    if isinstance(exc, httpx.TimeoutException):
        return UpstreamTimeoutError(str(exc))
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            raise_for_upstream_status(exc.response)
        except AIServiceError as translated:
            return translated
    return UpstreamNetworkError(str(exc))


def translate_openai_error(exc: openai.OpenAIError) -> AIServiceError:
    # APITimeoutError subclasses APIConnectionError, so check it first
    if isinstance(exc, openai.APITimeoutError):
        return UpstreamTimeoutError(str(exc))
    if isinstance(exc, openai.APIConnectionError):
        return UpstreamNetworkError(str(exc))
    if isinstance(exc, openai.RateLimitError):
        return RateLimitError(str(exc), retry_after=_retry_after(exc.response))
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return AuthorizationError(str(exc))
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code == 402:
            return PaymentRequiredError(str(exc))
        return UpstreamResponseError(str(exc), status_code=exc.status_code)
    return UpstreamResponseError(str(exc))
