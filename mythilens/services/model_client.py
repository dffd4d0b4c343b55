import asyncio
import random
from typing import Any, Dict, Optional, Protocol

import httpx
import structlog

from mythilens.core.config import settings

logger = structlog.get_logger(__name__)

class ModelUnavailableError(RuntimeError):
    """The model API could not be reached, timed out, or is not configured."""

class ModelPayloadError(ValueError):
    """The model answered, but not with JSON of the requested shape."""

class ModelClient(Protocol):
    """Structured-output model call: prompt in, JSON object out."""
    async def invoke(
        self,
        prompt: str,
        response_schema: Dict[str, Any],
        add_context_from_internet: bool = False,
    ) -> Dict[str, Any]: ...

class HttpModelClient:
    """
    Posts the prompt and JSON schema to the model endpoint and returns the
    decoded JSON object. Timeouts, transport errors, 429 and 5xx responses
    are retried with exponential backoff and jitter.
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = settings.LLM_TIMEOUT,
        max_retries: int = settings.LLM_MAX_RETRIES,
        initial_backoff: float = settings.LLM_INITIAL_BACKOFF,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not url:
            raise ValueError("model API url is required")
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _backoff(self, attempt: int) -> None:
        wait_time = max(0.0, self.initial_backoff * (2 ** attempt) + random.uniform(-0.2, 0.2))
        logger.info("model_retry_scheduled", attempt=attempt + 1, wait_seconds=round(wait_time, 2))
        await asyncio.sleep(wait_time)

    async def invoke(
        self,
        prompt: str,
        response_schema: Dict[str, Any],
        add_context_from_internet: bool = False,
    ) -> Dict[str, Any]:
        body = {
            "prompt": prompt,
            "response_json_schema": response_schema,
            "add_context_from_internet": add_context_from_internet,
        }

        for attempt in range(self.max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                    response = await client.post(self.url, json=body, headers=self._headers())
                    response.raise_for_status()
                    try:
                        data = response.json()
                    except ValueError as e:
                        raise ModelPayloadError("model response is not valid JSON") from e
                    if not isinstance(data, dict):
                        raise ModelPayloadError(f"expected a JSON object, got {type(data).__name__}")
                    return data

            except (httpx.TimeoutException, httpx.TransportError) as e:
                logger.warning("model_request_failed", attempt=attempt + 1, error=str(e) or type(e).__name__)
            except httpx.HTTPStatusError as e:
                code = e.response.status_code
                logger.error("model_status_error", attempt=attempt + 1, status_code=code)
                if code != 429 and code < 500:
                    raise ModelUnavailableError(f"model API rejected the request ({code})") from e

            if attempt < self.max_retries:
                await self._backoff(attempt)

        raise ModelUnavailableError("model API is temporarily unavailable")

def build_model_client() -> Optional[ModelClient]:
    if not settings.LLM_API_URL:
        logger.warning("model_client_disabled", reason="LLM_API_URL not set")
        return None
    return HttpModelClient(settings.LLM_API_URL, api_key=settings.LLM_API_KEY)
