# core/errors.py
"""Typed failures raised by the narration engine."""

from __future__ import annotations


class EngineError(Exception):
    """Base error for the narration engine.

    ``status_code`` and ``code`` let the calling layer map the failure onto a
    transport response without inspecting the message.
    """

    status_code: int = 500
    code: str = "engine_error"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code


class ContextError(EngineError):
    """Collaborator data for the request is unavailable."""

    status_code = 502
    code = "context_unavailable"


class TemplateError(EngineError):
    """No usable prompt template for the request."""

    status_code = 500
    code = "template_not_found"


class InferenceError(EngineError):
    """The backend could not produce text after all retry attempts."""

    status_code = 503
    code = "inference_failed"

    def __init__(
        self,
        message: str,
        *,
        attempts: int = 0,
        retry_after: float | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.retry_after = retry_after
        self.cause = cause


class EnrichmentError(EngineError):
    """Heuristic post-processing failed; always recovered by the engine."""

    code = "enrichment_failed"
