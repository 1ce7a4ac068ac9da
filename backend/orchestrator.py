import logging
from typing import Optional

from config.settings import settings

from .cancel import CancelToken
from .errors import AuthError, GenerationError, classify_exception
from .model import GenerationConfig, GenerationRequest, GenerationResult, Resolution
from .poller import JobPoller, ProgressCallback
from .provider import ImageProvider
from .sanitizer import sanitize

logger = logging.getLogger(__name__)


class GenerationOrchestrator:
    """
    sanitize -> submit -> poll, as one cancellable operation.

    Errors raised by the provider or the poller are already classified and
    are passed through. Anything else is wrapped as UnknownError. Keeping a
    single generation active per user is the caller's job: cancel the
    previous token before starting the next call.
    """

    def __init__(
        self,
        provider: ImageProvider,
        poller: Optional[JobPoller] = None,
        max_prompt_length: int = settings.MAX_PROMPT_LENGTH,
    ):
        self.provider = provider
        self.poller = poller or JobPoller(provider)
        self.max_prompt_length = max_prompt_length

    def build_request(self, prompt: str, resolution: Resolution, seed: int, config: GenerationConfig) -> GenerationRequest:
        return GenerationRequest(
            prompt=sanitize(prompt, self.max_prompt_length),
            resolution=resolution,
            seed=seed,
            steps=config.steps,
            time_shift=config.time_shift,
            guidance_scale=config.guidance_scale,
            sampler=config.sampler,
            scheduler=config.scheduler,
            model=config.model,
        )

    async def generate(
        self,
        prompt: str,
        resolution: Resolution,
        seed: int,
        config: GenerationConfig,
        cancel_token: CancelToken,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GenerationResult:
        if not config.secret:
            raise AuthError("Z-Image API token is missing")

        try:
            request = self.build_request(prompt, Resolution(resolution), seed, config)
            logger.info(
                "[Orchestrator] Submitting prompt (%d chars), size=%s, seed=%s",
                len(request.prompt),
                request.resolution.value,
                seed,
            )
            cancel_token.raise_if_cancelled()
            handle = await self.provider.submit(request, config.secret, cancel_token)
            return await self.poller.poll(handle, config.secret, cancel_token, seed, on_progress)
        except GenerationError:
            raise
        except Exception as e:
            logger.exception("[Orchestrator] Unexpected failure")
            raise classify_exception(e) from e
