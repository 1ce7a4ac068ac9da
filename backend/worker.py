# backend/worker.py

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple

import redis.asyncio as redis

from config.settings import settings

from .cancel import CancelToken
from .errors import GenerationError, classify_exception, user_message
from .history import HistoryStore
from .model import GenerationConfig, HistoryItem, JobStatus, Resolution
from .orchestrator import GenerationOrchestrator
from .provider import build_provider
from .utils import gen_seed, get_timestamp_ms

logger = logging.getLogger(__name__)

QUEUE_KEY = "image_jobs"  # pending jobs
JOB_KEY_PREFIX = "job:"  # job:{job_id}
CANCEL_KEY_PREFIX = "cancel:"  # cancel:{job_id}
ACTIVE_JOB_PREFIX = "active_job:"  # active_job:{user_id}

CANCEL_FLAG_TTL = 3600

# Polling covers 0..90%; 100% is reported only on success
MAX_POLL_PROGRESS = 90


async def get_redis_client() -> redis.Redis:
    return redis.from_url(settings.REDIS_URL, decode_responses=True)


async def set_job_state(rds: redis.Redis, job_id: str, **fields: Any) -> None:
    """Merge ``fields`` into the stored job record."""
    key = f"{JOB_KEY_PREFIX}{job_id}"
    raw = await rds.get(key)
    state: Dict[str, Any] = json.loads(raw) if raw else {}
    state.update(fields)
    await rds.set(key, json.dumps(state))


def poll_progress(attempt: int, max_attempts: int) -> int:
    if max_attempts <= 0:
        return MAX_POLL_PROGRESS
    return min(MAX_POLL_PROGRESS, int(attempt * MAX_POLL_PROGRESS / max_attempts))


class ActiveGenerations:
    """
    At most one running generation per user inside this worker process:
    starting a new one cancels the token of the previous one.
    """

    def __init__(self) -> None:
        self._active: Dict[str, Tuple[str, CancelToken]] = {}

    def start(self, user_id: str, job_id: str) -> CancelToken:
        previous = self._active.get(user_id)
        if previous is not None:
            prev_job_id, prev_token = previous
            logger.info("[Worker] Superseding job %s for user %s", prev_job_id, user_id)
            prev_token.cancel("superseded by a newer generation")
        token = CancelToken()
        self._active[user_id] = (job_id, token)
        return token

    def finish(self, user_id: str, job_id: str) -> None:
        current = self._active.get(user_id)
        if current is not None and current[0] == job_id:
            del self._active[user_id]

    def get(self, user_id: str) -> Optional[CancelToken]:
        current = self._active.get(user_id)
        return current[1] if current else None


async def watch_cancel_flag(
    rds: redis.Redis, job_id: str, token: CancelToken, interval: float = settings.POLL_INTERVAL
) -> None:
    """Fire ``token`` once the API has flagged the job as cancelled."""
    key = f"{CANCEL_KEY_PREFIX}{job_id}"
    while not token.cancelled:
        if await rds.exists(key):
            token.cancel("cancelled by user")
            return
        await token.wait(interval)


def build_config(job_data: Dict[str, Any]) -> GenerationConfig:
    overrides = {
        name: job_data[name]
        for name in ("steps", "time_shift", "guidance_scale", "sampler", "scheduler")
        if job_data.get(name) is not None
    }
    return GenerationConfig(secret=settings.MODELSCOPE_API_TOKEN or "", **overrides)


async def process_job(
    rds: redis.Redis,
    job_data: Dict[str, Any],
    orchestrator: GenerationOrchestrator,
    active: ActiveGenerations,
    history: Optional[HistoryStore] = None,
) -> None:
    job_id = job_data["job_id"]
    user_id = job_data["user_id"]
    prompt = job_data["prompt"]
    resolution = Resolution(job_data.get("resolution") or Resolution.SQUARE.value)
    seed = job_data.get("seed")
    if seed is None:
        seed = gen_seed()

    logger.info("[Worker] Processing job %s, user=%s, prompt=%s...", job_id, user_id, prompt[:50])

    if await rds.exists(f"{CANCEL_KEY_PREFIX}{job_id}"):
        await set_job_state(rds, job_id, status="cancelled", progress=0, error_code="cancelled")
        logger.info("[Worker] Job %s cancelled before start", job_id)
        return

    await set_job_state(rds, job_id, status="processing", progress=0, seed=seed)

    token = active.start(user_id, job_id)
    watcher = asyncio.create_task(watch_cancel_flag(rds, job_id, token))

    async def on_progress(attempt: int, max_attempts: int, status: Optional[JobStatus]) -> None:
        try:
            await set_job_state(rds, job_id, progress=poll_progress(attempt, max_attempts))
        except Exception as e:
            logger.warning("[Worker] Could not record progress for job %s: %s", job_id, e)

    try:
        result = await orchestrator.generate(
            prompt, resolution, seed, build_config(job_data), token, on_progress=on_progress
        )
    except Exception as e:
        err: GenerationError = classify_exception(e)
        if err.is_failure:
            logger.error("[Worker] Job %s failed: %s", job_id, err)
            await set_job_state(
                rds,
                job_id,
                status="error",
                progress=0,
                error_code=err.error_code,
                error_message=user_message(err),
            )
        else:
            logger.info("[Worker] Job %s cancelled (%s)", job_id, token.reason)
            await set_job_state(
                rds,
                job_id,
                status="cancelled",
                progress=0,
                error_code=err.error_code,
                error_message=user_message(err),
            )
        return
    finally:
        watcher.cancel()
        await asyncio.gather(watcher, return_exceptions=True)
        active.finish(user_id, job_id)
        await rds.delete(f"{CANCEL_KEY_PREFIX}{job_id}")

    await set_job_state(
        rds,
        job_id,
        status="done",
        progress=100,
        image_url=result.image_uri,
        seed=result.resolved_seed,
        error_code=None,
        error_message=None,
    )
    logger.info("[Worker] Job %s completed successfully", job_id)

    if history is not None:
        try:
            await history.add(
                user_id,
                HistoryItem(
                    id=job_id,
                    timestamp=get_timestamp_ms(),
                    image_url=result.image_uri,
                    prompt=prompt,
                    seed=result.resolved_seed,
                    resolution=resolution,
                    provider=getattr(orchestrator.provider, "name", "zimage"),
                ),
            )
        except Exception as e:
            logger.error("[Worker] Could not save job %s to history: %s", job_id, e)


async def worker_loop(
    worker_id: int,
    rds: redis.Redis,
    orchestrator: GenerationOrchestrator,
    active: ActiveGenerations,
) -> None:
    history = HistoryStore(rds)
    logger.info("[Worker %d] Started", worker_id)

    while True:
        # BRPOP blocks until a job is queued
        _, job_json = await rds.brpop(QUEUE_KEY)
        try:
            job_data = json.loads(job_json)
        except json.JSONDecodeError:
            logger.error("[Worker %d] Invalid job JSON: %s", worker_id, job_json)
            continue

        logger.info("[Worker %d] Processing job %s", worker_id, job_data.get("job_id"))
        try:
            await process_job(rds, job_data, orchestrator, active, history)
        except Exception as e:
            logger.exception("[Worker %d] Job %s aborted: %s", worker_id, job_data.get("job_id"), e)


async def main(num_workers: int = settings.NUM_WORKERS) -> None:
    rds = await get_redis_client()
    provider = build_provider()
    orchestrator = GenerationOrchestrator(provider)
    active = ActiveGenerations()
    tasks = [asyncio.create_task(worker_loop(i, rds, orchestrator, active)) for i in range(num_workers)]
    try:
        await asyncio.gather(*tasks)
    finally:
        await provider.transport.aclose()
        await rds.aclose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    # Each worker runs one generation at a time
    asyncio.run(main())
