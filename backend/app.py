# backend/app.py

import json
import logging
from typing import Dict, List, Optional

import redis.asyncio as redis
from fastapi import Depends, FastAPI, HTTPException

from config.settings import settings
from .history import HistoryStore
from .model import (
    Category,
    EnhanceRequest,
    EnhanceResponse,
    GenerateRequest,
    GenerateResponse,
    HistoryItem,
    JobResult,
    PromptRequest,
    PromptResponse,
    VerifyRequest,
    VerifyResult,
)
from .prompt_builder import (
    build_prompt,
    default_selections,
    load_categories,
    random_selections,
    save_categories,
)
from .provider import build_provider
from .sanitizer import sanitize
from .utils import PromptEnhancer, gen_job_id, gen_seed
from .worker import (
    ACTIVE_JOB_PREFIX,
    CANCEL_FLAG_TTL,
    CANCEL_KEY_PREFIX,
    JOB_KEY_PREFIX,
    QUEUE_KEY,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Knit Design Studio")

# Shared enhancer instance
enhancer = PromptEnhancer(
    base_url=settings.OPENAI_BASE_URL,
    api_key=settings.OPENAI_API_KEY,
    model=settings.OPENAI_MODEL,
)


async def get_redis_client() -> redis.Redis:
    return redis.from_url(settings.REDIS_URL, decode_responses=True)


async def flag_cancel(rds: redis.Redis, job_id: str) -> None:
    await rds.set(f"{CANCEL_KEY_PREFIX}{job_id}", "1", ex=CANCEL_FLAG_TTL)


@app.post("/generate", response_model=GenerateResponse)
async def generate(req: GenerateRequest, rds: redis.Redis = Depends(get_redis_client)):
    if req.prompt and req.prompt.strip():
        prompt = req.prompt
    elif req.selections:
        prompt = build_prompt(load_categories(), req.selections)
    else:
        raise HTTPException(status_code=400, detail="Prompt must not be empty")

    if req.enhance:
        prompt, _ = await enhancer.enhance(prompt)

    prompt = sanitize(prompt)

    seed = gen_seed() if req.random_seed or req.seed is None else req.seed

    # Only one active generation per user: flag the previous one
    previous_job = await rds.get(f"{ACTIVE_JOB_PREFIX}{req.user_id}")
    if previous_job:
        await flag_cancel(rds, previous_job)

    job_id = gen_job_id()

    job_data = {
        "job_id": job_id,
        "user_id": req.user_id,
        "prompt": prompt,
        "resolution": req.resolution.value,
        "seed": seed,
        "steps": req.steps,
        "time_shift": req.time_shift,
        "guidance_scale": req.guidance_scale,
        "sampler": req.sampler,
        "scheduler": req.scheduler,
    }

    await rds.set(
        f"{JOB_KEY_PREFIX}{job_id}",
        json.dumps({
            "status": "waiting",
            "progress": 0,
            "image_url": None,
            "seed": seed,
            "prompt": prompt,
            "error_code": None,
            "error_message": None,
        }),
    )
    await rds.set(f"{ACTIVE_JOB_PREFIX}{req.user_id}", job_id)

    # Hand the job to the worker queue
    await rds.lpush(QUEUE_KEY, json.dumps(job_data))
    logger.info("[API] Queued job %s for user %s", job_id, req.user_id)

    return GenerateResponse(job_id=job_id, status="waiting")


@app.get("/result/{job_id}", response_model=JobResult)
async def get_result(job_id: str, rds: redis.Redis = Depends(get_redis_client)):
    """Current state of a job, with image_url once done."""
    data = await rds.get(f"{JOB_KEY_PREFIX}{job_id}")
    if not data:
        raise HTTPException(status_code=404, detail="Job not found")

    obj = json.loads(data)
    return JobResult(
        job_id=job_id,
        status=obj.get("status", "waiting"),
        progress=obj.get("progress", 0),
        image_url=obj.get("image_url"),
        seed=obj.get("seed"),
        prompt=obj.get("prompt"),
        error_code=obj.get("error_code"),
        error_message=obj.get("error_message"),
    )


@app.post("/cancel/{job_id}", response_model=JobResult)
async def cancel(job_id: str, rds: redis.Redis = Depends(get_redis_client)):
    data = await rds.get(f"{JOB_KEY_PREFIX}{job_id}")
    if not data:
        raise HTTPException(status_code=404, detail="Job not found")

    obj = json.loads(data)
    status = obj.get("status", "waiting")
    if status in ("waiting", "processing"):
        await flag_cancel(rds, job_id)

    return JobResult(job_id=job_id, status=status, progress=obj.get("progress", 0))


@app.get("/history/{user_id}", response_model=List[HistoryItem])
async def list_history(user_id: str, rds: redis.Redis = Depends(get_redis_client)):
    return await HistoryStore(rds).list(user_id)


@app.delete("/history/{user_id}/{item_id}")
async def delete_history(user_id: str, item_id: str, rds: redis.Redis = Depends(get_redis_client)):
    if not await HistoryStore(rds).delete(user_id, item_id):
        raise HTTPException(status_code=404, detail="History item not found")
    return {"deleted": item_id}


@app.get("/categories", response_model=List[Category])
async def categories():
    return load_categories()


@app.put("/categories", response_model=List[Category])
async def update_categories(categories: List[Category]):
    """Replace the category presets used by the pickers."""
    if not categories:
        raise HTTPException(status_code=400, detail="At least one category is required")
    save_categories(categories)
    return categories


@app.get("/selections", response_model=Dict[str, str])
async def selections(random: bool = False):
    """Initial picks for every category: first items, or random ones."""
    categories = load_categories()
    return random_selections(categories) if random else default_selections(categories)


@app.post("/prompt", response_model=PromptResponse)
async def preview_prompt(req: PromptRequest):
    return PromptResponse(prompt=build_prompt(load_categories(), req.selections))


@app.post("/verify", response_model=VerifyResult)
async def verify(req: VerifyRequest):
    relay_base: Optional[str] = req.proxy or None
    provider = build_provider(relay_mode=relay_base is not None, relay_base=relay_base)
    async with provider.transport:
        return await provider.verify(req.key, endpoint=req.endpoint, model=req.model, proxy=req.proxy)


@app.post("/enhance", response_model=EnhanceResponse)
async def enhance(req: EnhanceRequest):
    if not req.prompt.strip():
        raise HTTPException(status_code=400, detail="Prompt must not be empty")
    prompt, enhanced = await enhancer.enhance(req.prompt)
    return EnhanceResponse(prompt=prompt, enhanced=enhanced)
