# core/llm_interface.py
"""
Handles all direct interactions with the Ollama inference backend.
Includes the generate call with retry/backoff, streaming generation,
liveness and capability checks, and the coarse token and confidence
heuristics attached to every response.
"""

# Standard library imports
import asyncio
import json
import math
import time
from collections.abc import Callable, Mapping

# Type hints
from typing import Any

# Third-party imports
import httpx
import structlog
from async_lru import alru_cache

# Local imports
from config import NarratorSettings, settings

from core.errors import InferenceError
from core.model_profiles import ModelRouter
from core.usage import InferenceUsage
from models.narration_models import (
    GeneratedResponse,
    ModelProfile,
    RequestType,
    ResponseMetadata,
)

logger = structlog.get_logger(__name__)


def estimate_tokens(text: str, chars_per_token: float | None = None) -> int:
    """
    Coarse token estimate: ``ceil(len(text) / chars_per_token)``.
    Not a tokenizer; counts are approximate for any model.
    """
    if not text:
        return 0
    ratio = chars_per_token or settings.FALLBACK_CHARS_PER_TOKEN
    return math.ceil(len(text) / ratio)


def calculate_confidence(text: str, config: NarratorSettings = settings) -> float:
    """Heuristic confidence from length and punctuation. Not calibrated."""
    text = text or ""
    if len(text) < config.CONFIDENCE_MIN_LENGTH:
        return config.CONFIDENCE_SHORT_SCORE
    if "?" in text and len(text) < config.CONFIDENCE_QUESTION_MAX_LENGTH:
        return config.CONFIDENCE_QUESTION_SCORE
    if len(text) > config.CONFIDENCE_LONG_MIN_LENGTH and "." in text:
        return config.CONFIDENCE_LONG_SCORE
    return config.CONFIDENCE_DEFAULT_SCORE


class InferenceClient:
    """Utility class for interacting with the Ollama generate endpoints."""

    def __init__(
        self,
        router: ModelRouter | None = None,
        config: NarratorSettings = settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config
        self._transport = transport
        self.router = router or ModelRouter(config=config)
        # Use a single async client for all requests to reuse connections
        self._client = self._build_client()
        self.usage = InferenceUsage()
        self.request_count = 0
        logger.info(
            "InferenceClient initialized.",
            base_url=config.OLLAMA_URL,
            max_retries=config.LLM_RETRY_ATTEMPTS,
        )

    @property
    def config(self) -> NarratorSettings:
        return self._config

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._config.OLLAMA_URL,
            timeout=self._config.OLLAMA_TIMEOUT_SECONDS,
            headers={"Content-Type": "application/json"},
            transport=self._transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def update_config(self, **changes: Any) -> None:
        """Apply configuration changes and rebuild the HTTP client."""
        self._config = self._config.model_copy(update=changes)
        self.router.update_config(self._config)
        old_client = self._client
        self._client = self._build_client()
        await old_client.aclose()
        logger.info("InferenceClient configuration updated.", keys=sorted(changes))

    # --- retry policy ---

    def retry_delay(self, exc: BaseException | None, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based) given its cause."""
        if (
            isinstance(exc, httpx.HTTPStatusError)
            and exc.response.status_code == 429
        ):
            return self._config.RATE_LIMIT_RETRY_DELAY_SECONDS
        if isinstance(exc, httpx.ConnectError):
            return self._config.CONNECTION_REFUSED_RETRY_DELAY_SECONDS
        return self._config.LLM_RETRY_DELAY_SECONDS * (2**attempt)

    async def _backoff_delay(self, delay: float) -> None:
        await asyncio.sleep(delay)

    def _build_payload(
        self, prompt: str, profile: ModelProfile, stream: bool
    ) -> dict[str, Any]:
        return {
            "model": profile.model_name,
            "prompt": prompt,
            "options": {
                "temperature": profile.temperature,
                "top_p": profile.top_p,
                "repeat_penalty": profile.repeat_penalty,
                "num_predict": profile.max_tokens,
            },
            "stream": stream,
        }

    async def _post_generate(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._client.post("/api/generate", json=payload)
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict) or not isinstance(data.get("response"), str):
            raise ValueError(
                f"Ollama returned no 'response' text for model '{payload['model']}'"
            )
        return data

    async def _call_model_with_retries(
        self, payload: dict[str, Any]
    ) -> tuple[dict[str, Any], int]:
        """Try calling the model with retry logic. Returns data and attempts used."""
        max_attempts = max(1, self._config.LLM_RETRY_ATTEMPTS)
        last_exc: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                self.request_count += 1
                data = await self._post_generate(payload)
                return data, attempt
            except httpx.HTTPStatusError as e_status:
                last_exc = e_status
                status = e_status.response.status_code
                logger.warning(
                    f"Ollama generate (Attempt {attempt}/{max_attempts}): HTTP status {status}. "
                    f"Body: {e_status.response.text[:200]}"
                )
                if 400 <= status < 500 and status != 429:
                    logger.error(
                        f"Ollama generate: client-side error {status}. Aborting retries."
                    )
                    raise InferenceError(
                        f"Inference backend rejected the request with status {status}",
                        attempts=attempt,
                        cause=e_status,
                    ) from e_status
            except (httpx.HTTPError, ValueError) as exc:
                last_exc = exc
                logger.warning(
                    f"Ollama generate (Attempt {attempt}/{max_attempts}): {type(exc).__name__}: {exc}"
                )

            if attempt < max_attempts:
                delay = self.retry_delay(last_exc, attempt)
                logger.info(
                    f"Ollama generate: Retrying in {delay:.2f} seconds due to: {type(last_exc).__name__}."
                )
                await self._backoff_delay(delay)

        logger.error(
            f"Ollama generate: All {max_attempts} attempts failed. Last error: {last_exc}"
        )
        raise InferenceError(
            f"Inference failed after {max_attempts} attempts: {last_exc}",
            attempts=max_attempts,
            retry_after=self.retry_delay(last_exc, max_attempts),
            cause=last_exc,
        ) from last_exc

    def _make_response(
        self,
        request_type: RequestType,
        text: str,
        profile: ModelProfile,
        started: float,
    ) -> GeneratedResponse:
        content = text.strip()
        return GeneratedResponse(
            request_type=request_type,
            content=content,
            metadata=ResponseMetadata(
                processing_time_ms=round((time.perf_counter() - started) * 1000, 2),
                model_used=profile.model_name,
                token_count=estimate_tokens(
                    content, self._config.FALLBACK_CHARS_PER_TOKEN
                ),
                confidence=calculate_confidence(content, self._config),
            ),
        )

    def _check_prompt(self, prompt: str, profile: ModelProfile) -> None:
        if not prompt or not prompt.strip():
            raise InferenceError("Refusing to send an empty prompt", attempts=0)
        prompt_tokens = estimate_tokens(prompt, self._config.FALLBACK_CHARS_PER_TOKEN)
        if prompt_tokens > profile.context_window:
            logger.warning(
                "Prompt estimate exceeds model context window.",
                prompt_tokens=prompt_tokens,
                context_window=profile.context_window,
                model=profile.model_name,
            )

    async def generate(
        self,
        prompt: str,
        request_type: RequestType | str,
        overrides: Mapping[str, Any] | None = None,
    ) -> GeneratedResponse:
        """Issue one logical inference call with bounded retries."""
        started = time.perf_counter()
        kind = RequestType(request_type)
        profile = self.router.resolve(kind, overrides)
        self._check_prompt(prompt, profile)
        payload = self._build_payload(prompt, profile, stream=False)

        logger.debug(
            f"Calling Ollama '{profile.model_name}' for {kind.value}. "
            f"Max output tokens: {profile.max_tokens}. Temp: {profile.temperature}, TopP: {profile.top_p}"
        )
        try:
            data, attempts = await self._call_model_with_retries(payload)
        except InferenceError as exc:
            self.usage.record_failure(exc.attempts)
            raise

        response = self._make_response(kind, data["response"], profile, started)
        self.usage.record_success(
            kind.value,
            response.metadata.processing_time_ms,
            response.metadata.token_count,
            attempts,
        )
        logger.info(
            "Ollama responded.",
            request_type=kind.value,
            model=profile.model_name,
            processing_time_ms=response.metadata.processing_time_ms,
            attempts=attempts,
        )
        return response

    async def generate_stream(
        self,
        prompt: str,
        request_type: RequestType | str,
        on_chunk: Callable[[str], None],
        overrides: Mapping[str, Any] | None = None,
    ) -> GeneratedResponse:
        """Stream a generation, forwarding each text piece to ``on_chunk``."""
        started = time.perf_counter()
        kind = RequestType(request_type)
        profile = self.router.resolve(kind, overrides)
        self._check_prompt(prompt, profile)
        payload = self._build_payload(prompt, profile, stream=True)

        pieces: list[str] = []
        self.request_count += 1
        try:
            async with self._client.stream(
                "POST", "/api/generate", json=payload
            ) as response_stream:
                response_stream.raise_for_status()
                async for line in response_stream.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        chunk_data = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug("Skipping malformed stream line.", line=line[:80])
                        continue
                    piece = chunk_data.get("response")
                    if piece:
                        pieces.append(piece)
                        on_chunk(piece)
                    if chunk_data.get("done"):
                        break
        except httpx.HTTPError as exc:
            self.usage.record_failure(1)
            logger.error("Ollama streaming request failed.", error=str(exc))
            raise InferenceError(
                f"Streaming inference failed: {exc}",
                attempts=1,
                retry_after=self.retry_delay(exc, 1),
                cause=exc,
            ) from exc

        result = self._make_response(kind, "".join(pieces), profile, started)
        self.usage.record_success(
            kind.value,
            result.metadata.processing_time_ms,
            result.metadata.token_count,
            1,
        )
        return result

    # --- backend checks ---

    async def health(self) -> bool:
        """Return True when the backend answers the tags endpoint."""
        try:
            response = await self._client.get(
                "/api/tags", timeout=self._config.HEALTH_CHECK_TIMEOUT_SECONDS
            )
            return response.status_code == 200
        except httpx.HTTPError as exc:
            logger.warning("Ollama health check failed.", error=str(exc))
            return False

    async def list_models(self) -> list[str]:
        try:
            response = await self._client.get("/api/tags")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Failed to list Ollama models.", error=str(exc))
            return []
        return [m["name"] for m in data.get("models") or [] if "name" in m]

    async def load_model(self, model_name: str) -> bool:
        """Warm a model by requesting a single token from it."""
        logger.info("Loading model.", model=model_name)
        try:
            response = await self._client.post(
                "/api/generate",
                json={
                    "model": model_name,
                    "prompt": "test",
                    "options": {"num_predict": 1},
                    "stream": False,
                },
            )
            return response.status_code == 200
        except httpx.HTTPError as exc:
            logger.error("Failed to load model.", model=model_name, error=str(exc))
            return False

    # Cache size is fixed at import from the process-wide settings.
    @alru_cache(maxsize=settings.MODEL_INFO_CACHE_SIZE)
    async def get_model_info(self, model_name: str) -> dict[str, Any]:
        """Return backend metadata for a model. Failures are not cached."""
        try:
            response = await self._client.post("/api/show", json={"name": model_name})
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise InferenceError(
                f"Could not fetch model info for '{model_name}': {exc}", cause=exc
            ) from exc
