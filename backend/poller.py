import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from config.settings import settings

from .cancel import CancelToken
from .errors import GenerationCancelled, GenerationError, RemoteTaskError, TaskTimeoutError
from .model import GenerationResult, JobHandle, JobStatus, TaskState
from .provider import ImageProvider

logger = logging.getLogger(__name__)

# (attempt, max_attempts, status or None when the query failed); may be async
ProgressCallback = Callable[[int, int, Optional[JobStatus]], Union[None, Awaitable[Any]]]


class JobPoller:
    """
    Polls a submitted task until it reaches a terminal status.

    Each cycle: check the token, sleep ``interval`` (interruptible), query the
    status once. A failed query is logged and still consumes an attempt;
    after ``max_attempts`` cycles without a terminal status the poll fails
    with TaskTimeoutError.
    """

    def __init__(
        self,
        provider: ImageProvider,
        interval: float = settings.TASK_POLL_INTERVAL,
        max_attempts: int = settings.TASK_MAX_ATTEMPTS,
    ):
        self.provider = provider
        self.interval = interval
        self.max_attempts = max_attempts

    async def poll(
        self,
        handle: JobHandle,
        secret: str,
        cancel_token: CancelToken,
        requested_seed: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GenerationResult:
        attempts = 0
        while attempts < self.max_attempts:
            cancel_token.raise_if_cancelled()
            await cancel_token.sleep(self.interval)

            state: Optional[TaskState] = None
            try:
                state = await self.provider.poll_status(handle, secret, cancel_token)
            except GenerationCancelled:
                raise
            except GenerationError as e:
                logger.warning(
                    "[Poller] Task %s query failed (attempt %d/%d): %s",
                    handle.task_id,
                    attempts + 1,
                    self.max_attempts,
                    e,
                )

            attempts += 1
            status = state.status if state else None
            if on_progress:
                outcome = on_progress(attempts, self.max_attempts, status)
                if inspect.isawaitable(outcome):
                    await outcome

            if state is None:
                continue

            if status is not None and status.is_terminal:
                if status is JobStatus.SUCCEEDED:
                    if not state.output_images:
                        raise RemoteTaskError("succeeded without output")
                    seed = state.seed if state.seed is not None else requested_seed
                    return GenerationResult(image_uri=state.output_images[0], resolved_seed=seed)
                if status is JobStatus.FAILED:
                    raise RemoteTaskError(state.message or "unknown error")
                raise RemoteTaskError("task canceled")

            if status is None:
                logger.warning("[Poller] Task %s returned unknown status %r", handle.task_id, state.raw_status)
            else:
                logger.debug(
                    "[Poller] Task %s status: %s, attempt %d/%d",
                    handle.task_id,
                    status.value,
                    attempts,
                    self.max_attempts,
                )

        raise TaskTimeoutError(
            f"Generation timed out after {self.max_attempts} status checks "
            f"({self.max_attempts * self.interval:g} seconds)"
        )
