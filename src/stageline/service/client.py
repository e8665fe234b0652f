"""
Client for the reasoning service that turns pipeline instructions into SQL
"""
import asyncio
import logging
import time
from typing import Optional

import httpx
from pydantic import ValidationError

from stageline.config import settings
from stageline.contracts import TransformRequest, TransformResponse

logger = logging.getLogger(__name__)


class ReasoningServiceError(Exception):
    """Base exception for reasoning-service failures."""
    pass


class ReasoningServiceHTTPError(ReasoningServiceError):
    """Raised when the service answers with a non-2xx status."""
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"Reasoning service returned {status_code}: {message}")


class ReasoningServiceResponseError(ReasoningServiceError):
    """Raised when the response body is not a valid transform response."""
    pass


def _error_message(response: httpx.Response) -> str:
    """The service's own error text when the body carries one."""
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.reason_phrase or "Failed to transform data"


def _parse_response(response: httpx.Response) -> TransformResponse:
    if response.is_error:
        raise ReasoningServiceHTTPError(response.status_code, _error_message(response))
    try:
        return TransformResponse.model_validate(response.json())
    except (ValueError, ValidationError) as e:
        raise ReasoningServiceResponseError(f"Malformed response from reasoning service: {e}") from e


class ReasoningClient:
    """
    Posts transform requests to the reasoning service.

    Transport failures are retried with exponential backoff; HTTP errors
    and malformed bodies are not.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        transport: Optional[httpx.BaseTransport] = None,
        async_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.SERVICE_URL
        self.timeout = timeout if timeout is not None else settings.TIMEOUT
        self.max_attempts = max(1, max_attempts if max_attempts is not None else settings.MAX_ATTEMPTS)
        self.transport = transport
        self.async_transport = async_transport

    def transform(self, request: TransformRequest) -> TransformResponse:
        """Send a request and return the parsed response."""
        payload = request.to_wire()
        for attempt in range(self.max_attempts):
            try:
                with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                    response = client.post(self.base_url, json=payload)
            except httpx.TransportError as e:
                if attempt == self.max_attempts - 1:
                    logger.error(f"Reasoning service call failed after {self.max_attempts} attempts: {e}")
                    raise ReasoningServiceError(f"Could not reach reasoning service: {e}") from e
                wait_time = 2 ** attempt
                logger.warning(f"Attempt {attempt + 1} failed, retrying in {wait_time}s...")
                time.sleep(wait_time)
                continue
            return _parse_response(response)

        raise ReasoningServiceError("Reasoning service call was not attempted")

    async def transform_async(self, request: TransformRequest) -> TransformResponse:
        """
        Async version of transform for overlapping submissions
        """
        payload = request.to_wire()
        for attempt in range(self.max_attempts):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self.async_transport) as client:
                    response = await client.post(self.base_url, json=payload)
            except httpx.TransportError as e:
                if attempt == self.max_attempts - 1:
                    logger.error(f"Reasoning service call failed after {self.max_attempts} attempts: {e}")
                    raise ReasoningServiceError(f"Could not reach reasoning service: {e}") from e
                wait_time = 2 ** attempt
                logger.warning(f"Attempt {attempt + 1} failed, retrying in {wait_time}s...")
                await asyncio.sleep(wait_time)
                continue
            return _parse_response(response)

        raise ReasoningServiceError("Reasoning service call was not attempted")
