from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class InferenceUsage:
    """Backend call metrics for one inference client."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_attempts: int = 0
    total_response_time_ms: float = 0.0
    total_tokens: int = 0
    responses_by_type: dict[str, int] = field(default_factory=dict)

    def record_success(
        self, request_type: str, response_time_ms: float, tokens: int, attempts: int
    ) -> None:
        """Accumulate one successful logical call."""
        self.total_requests += 1
        self.successful_requests += 1
        self.total_attempts += attempts
        self.total_response_time_ms += response_time_ms
        self.total_tokens += tokens
        self.responses_by_type[request_type] = (
            self.responses_by_type.get(request_type, 0) + 1
        )

    def record_failure(self, attempts: int) -> None:
        self.total_requests += 1
        self.failed_requests += 1
        self.total_attempts += attempts

    @property
    def average_response_time_ms(self) -> float:
        if not self.successful_requests:
            return 0.0
        return self.total_response_time_ms / self.successful_requests

    @property
    def error_rate(self) -> float:
        if not self.total_requests:
            return 0.0
        return self.failed_requests / self.total_requests

    def snapshot(self) -> dict[str, object]:
        """Return a plain dict copy suitable for health reports."""
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "total_attempts": self.total_attempts,
            "average_response_time_ms": round(self.average_response_time_ms, 2),
            "error_rate": round(self.error_rate, 4),
            "total_tokens": self.total_tokens,
            "responses_by_type": dict(self.responses_by_type),
        }
