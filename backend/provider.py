"""Provider strategies for the asynchronous generation API.

``ImageProvider`` is the capability the orchestrator and poller depend on:
start a job, and fetch one status snapshot. ``ModelScopeProvider`` talks to
the ModelScope inference API (Z-Image-Turbo) through a ``TransportClient``.
"""

import json
import logging
import re
from typing import Any, Dict, Optional, Protocol

import httpx
from pydantic import ValidationError

from config.settings import settings

from .cancel import CancelToken
from .errors import (
    AuthError,
    NetworkError,
    QuotaError,
    RemoteTaskError,
    truncate,
)
from .model import GenerationRequest, JobHandle, JobStatus, TaskState, VerifyResult
from .transport import TransportClient

logger = logging.getLogger(__name__)

GENERATIONS_ENDPOINT = "images/generations"
TASK_ENDPOINT = "tasks/{task_id}"

# ModelScope spells the async-mode and task-type headers with its own prefix
ASYNC_MODE_HEADER = "X-ModelScope-Async-Mode"
TASK_TYPE_HEADER = "X-ModelScope-Task-Type"

QUOTA_MARKER = "RESOURCE_EXHAUSTED"

_LATIN1 = re.compile(r"^[\u0000-\u00ff]*$")


class ImageProvider(Protocol):
    name: str

    async def submit(
        self, request: GenerationRequest, secret: str, cancel_token: Optional[CancelToken] = None
    ) -> JobHandle: ...

    async def poll_status(
        self, handle: JobHandle, secret: str, cancel_token: Optional[CancelToken] = None
    ) -> TaskState: ...


def build_payload(request: GenerationRequest) -> Dict[str, Any]:
    return {
        "model": request.model,
        "prompt": request.prompt,
        "n": 1,
        "size": f"{request.resolution.width}x{request.resolution.height}",
        "seed": request.seed,
        "steps": request.steps,
        "time_shift": request.time_shift,
        "guidance_scale": request.guidance_scale,
        "sampler": request.sampler,
        "scheduler": request.scheduler,
    }


def _parse_seed(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)


def parse_task_state(data: Dict[str, Any]) -> TaskState:
    raw_status = _as_text(data.get("task_status"))
    images = data.get("output_images")
    # Only a list of URLs counts as output
    if not isinstance(images, list):
        images = []
    return TaskState(
        status=JobStatus.parse(raw_status),
        raw_status=raw_status,
        output_images=[img for img in images if isinstance(img, str) and img],
        seed=_parse_seed(data.get("seed")),
        message=_as_text(data.get("message")),
    )


class ModelScopeProvider:
    name = "zimage"

    def __init__(self, transport: TransportClient):
        self.transport = transport

    async def submit(
        self, request: GenerationRequest, secret: str, cancel_token: Optional[CancelToken] = None
    ) -> JobHandle:
        """
        Start an async generation task.
        Returns the task handle; raises a classified GenerationError otherwise.
        """
        response = await self.transport.request(
            "POST",
            GENERATIONS_ENDPOINT,
            secret,
            cancel_token,
            json=build_payload(request),
            headers={ASYNC_MODE_HEADER: "true"},
        )
        body = response.text

        if response.status_code in (401, 403):
            logger.warning("[ModelScope] Submit rejected with %s", response.status_code)
            raise AuthError(f"Token rejected ({response.status_code})")

        if response.status_code == 429:
            raise QuotaError()

        if response.is_success:
            try:
                data = response.json()
            except ValueError:
                data = None
            task_id = data.get("task_id") if isinstance(data, dict) else None
            if not task_id:
                if QUOTA_MARKER in body:
                    raise QuotaError()
                raise RemoteTaskError("no task id returned")
            logger.info("[ModelScope] Got task_id: %s", task_id)
            return JobHandle(task_id=str(task_id))

        if QUOTA_MARKER in body:
            raise QuotaError()

        logger.error(
            "[ModelScope] Submit failed %s, prompt length=%d: %s",
            response.status_code,
            len(request.prompt),
            body[:500],
        )
        raise RemoteTaskError(truncate(f"{response.status_code}: {body}"))

    async def poll_status(
        self, handle: JobHandle, secret: str, cancel_token: Optional[CancelToken] = None
    ) -> TaskState:
        """Fetch one status snapshot. Non-2xx and unparseable bodies raise RemoteTaskError."""
        response = await self.transport.request(
            "GET",
            TASK_ENDPOINT.format(task_id=handle.task_id),
            secret,
            cancel_token,
            headers={TASK_TYPE_HEADER: "image_generation"},
        )
        if not response.is_success:
            raise RemoteTaskError(f"Task query failed: {response.status_code}")
        try:
            data = response.json()
        except ValueError:
            raise RemoteTaskError("Task query returned invalid JSON")
        if not isinstance(data, dict):
            raise RemoteTaskError("Task query returned unexpected payload")
        try:
            return parse_task_state(data)
        except (ValidationError, TypeError, ValueError) as e:
            raise RemoteTaskError("Task query returned unexpected payload") from e

    async def verify(
        self,
        key: str,
        endpoint: Optional[str] = None,
        model: Optional[str] = None,
        proxy: Optional[str] = None,
    ) -> VerifyResult:
        """Check that ``key`` is accepted by sending a small synchronous test request."""
        if not key:
            return VerifyResult(success=False, message="Please enter an API key")
        for label, value in (("API key", key), ("endpoint", endpoint), ("model id", model), ("proxy", proxy)):
            if value and not _LATIN1.match(value):
                return VerifyResult(
                    success=False,
                    message=f"The {label} contains non ISO-8859-1 characters",
                )

        payload = {
            "model": model or settings.MODEL_ID,
            "prompt": "test",
            "n": 1,
            "size": "1024x1024",
            "seed": 42,
            "steps": settings.DEFAULT_STEPS,
            "time_shift": settings.DEFAULT_TIME_SHIFT,
            "guidance_scale": settings.DEFAULT_GUIDANCE_SCALE,
            "sampler": settings.DEFAULT_SAMPLER,
            "scheduler": settings.DEFAULT_SCHEDULER,
        }
        try:
            response = await self.transport.request("POST", GENERATIONS_ENDPOINT, key, json=payload)
        except NetworkError:
            return VerifyResult(success=False, message="Network error: check the connection and API address")

        if response.status_code in (401, 403):
            return VerifyResult(success=False, message="Z-Image API token is invalid or lacks permission")
        if response.status_code in (200, 400):
            return VerifyResult(success=True)
        return VerifyResult(
            success=False,
            message=f"Verification failed ({response.status_code}): unexpected API response",
        )


def build_provider(
    relay_mode: bool = settings.RELAY_MODE,
    relay_base: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> ModelScopeProvider:
    return ModelScopeProvider(TransportClient(relay_mode=relay_mode, relay_base=relay_base, client=client))
