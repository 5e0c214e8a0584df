"""
Video provider clients - HTTP calls to the Veo long-running operation API
and a simulated provider for demo environments.
"""
import logging
import time
from typing import Callable, Optional, Set
from uuid import uuid4

import httpx

from ..config.contracts import ProviderConfig
from .contracts import (
    GenerationParams,
    InvalidGenerationRequest,
    ProviderJobState,
    ProviderRequestError,
    ProviderStatus,
    ProviderUnavailable,
    SubmissionResult,
)
from .core import (
    DEMO_ESTIMATED_COMPLETION_SECONDS,
    DEMO_TOTAL_SECONDS,
    REAL_ESTIMATED_COMPLETION_SECONDS,
    build_submit_payload,
    demo_status,
    parse_demo_operation_id,
    parse_operation_payload,
    validate_generation_params,
)


logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 429}


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or response.text[:200]
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("message") or response.reason_phrase
    return response.reason_phrase


def _raise_for_provider_status(response: httpx.Response, action: str) -> None:
    if response.is_success:
        return
    message = f"Veo {action} failed: {response.status_code} - {_error_message(response)}"
    if response.status_code >= 500 or response.status_code in RETRYABLE_STATUS_CODES:
        raise ProviderUnavailable(message)
    raise ProviderRequestError(message, status_code=response.status_code)


class VeoVideoProvider:
    """Veo video generation over the Gemini API long-running operations."""

    def __init__(self, client: httpx.AsyncClient, config: ProviderConfig):
        self.client = client
        self.config = config

    @property
    def _headers(self):
        return {"x-goog-api-key": self.config.api_key or ""}

    def _operation_url(self, operation_id: str) -> str:
        return f"{self.config.base_url}/{operation_id.lstrip('/')}"

    async def submit(self, prompt: str, params: GenerationParams) -> SubmissionResult:
        """
        Start a generation.

        Raises:
            InvalidGenerationRequest: Prompt or params failed validation
            ProviderUnavailable: Transport error, timeout, 429 or 5xx
            ProviderRequestError: Provider rejected the request
        """
        errors = validate_generation_params(prompt, params)
        if errors:
            raise InvalidGenerationRequest(errors)

        url = f"{self.config.base_url}/models/{self.config.model}:predictLongRunning"
        try:
            response = await self.client.post(
                url,
                json=build_submit_payload(prompt, params),
                headers=self._headers,
                timeout=self.config.timeout_seconds,
            )
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Veo submit failed: {e}") from e

        _raise_for_provider_status(response, "submit")

        operation_id = response.json().get("name")
        if not operation_id:
            raise ProviderRequestError("Veo submit response did not include an operation name")

        logger.info(f"Veo video generation operation started: {operation_id}")
        return SubmissionResult(
            operation_id=operation_id,
            status=ProviderJobState.PENDING,
            estimated_completion_seconds=REAL_ESTIMATED_COMPLETION_SECONDS,
        )

    async def poll_status(self, operation_id: str) -> ProviderStatus:
        """
        Fetch the current state of an operation.

        Raises:
            ProviderUnavailable: Transport error, timeout, 429 or 5xx
            ProviderRequestError: Operation unknown or request rejected
        """
        try:
            response = await self.client.get(
                self._operation_url(operation_id),
                headers=self._headers,
                timeout=self.config.timeout_seconds,
            )
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Veo status check failed: {e}") from e

        _raise_for_provider_status(response, "status check")

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderUnavailable(f"Veo status response was not JSON: {e}") from e

        return parse_operation_payload(payload)

    async def cancel(self, operation_id: str) -> bool:
        """
        Ask the provider to cancel an operation.

        Returns:
            True if the provider confirmed, False if it declined

        Raises:
            ProviderUnavailable: Transport error, timeout, 429 or 5xx
        """
        try:
            response = await self.client.post(
                f"{self._operation_url(operation_id)}:cancel",
                headers=self._headers,
                timeout=self.config.timeout_seconds,
            )
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Veo cancel failed: {e}") from e

        if response.status_code >= 500 or response.status_code in RETRYABLE_STATUS_CODES:
            raise ProviderUnavailable(f"Veo cancel failed: {response.status_code}")

        if not response.is_success:
            logger.warning(
                f"Veo declined cancellation of {operation_id}: "
                f"{response.status_code} - {_error_message(response)}"
            )
        return response.is_success


class DemoVideoProvider:
    """
    Simulated provider: pending for 3s, processing until 15s, then
    completed with a public sample video.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._cancelled: Set[str] = set()

    async def submit(self, prompt: str, params: GenerationParams) -> SubmissionResult:
        errors = validate_generation_params(prompt, params)
        if errors:
            raise InvalidGenerationRequest(errors)

        started_ms = int(self.clock() * 1000)
        operation_id = f"veo-demo-{started_ms}-{uuid4().hex[:8]}"
        logger.info(f"Demo video generation started: {operation_id}")

        return SubmissionResult(
            operation_id=operation_id,
            status=ProviderJobState.PENDING,
            estimated_completion_seconds=DEMO_ESTIMATED_COMPLETION_SECONDS,
        )

    def _elapsed(self, operation_id: str) -> Optional[float]:
        started_ms = parse_demo_operation_id(operation_id)
        if started_ms is None:
            return None
        return self.clock() - started_ms / 1000

    async def poll_status(self, operation_id: str) -> ProviderStatus:
        if operation_id in self._cancelled:
            return ProviderStatus(status=ProviderJobState.FAILED, error="cancelled by user")

        elapsed = self._elapsed(operation_id)
        if elapsed is None:
            raise ProviderRequestError(f"Unknown demo operation: {operation_id}", status_code=404)

        return demo_status(elapsed)

    async def cancel(self, operation_id: str) -> bool:
        elapsed = self._elapsed(operation_id)
        if elapsed is None or elapsed >= DEMO_TOTAL_SECONDS:
            return False
        self._cancelled.add(operation_id)
        return True
