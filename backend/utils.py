import asyncio
import logging
import random
import re
import time
import uuid
from typing import Optional

import aiohttp

logger = logging.getLogger(__name__)

EMPTY_PROMPT_FALLBACK = "一件精美的毛衣设计。"

_LABEL_PREFIX = re.compile(r"^AI设计[：:]?\s*")


def clean_punctuation(text: str) -> str:
    """
    Local fallback polish for Chinese prompts:
    collapse repeated ，/。, drop leading/trailing commas, strip the
    builder label and make sure the prompt ends with sentence punctuation.
    """
    if not text or not text.strip():
        return EMPTY_PROMPT_FALLBACK

    cleaned = _LABEL_PREFIX.sub("", text.strip())
    cleaned = re.sub(r"，+", "，", cleaned)
    cleaned = re.sub(r"。+", "。", cleaned)
    cleaned = cleaned.strip("，").strip()
    if not cleaned:
        return EMPTY_PROMPT_FALLBACK

    if not cleaned.endswith(("。", "！", "？")):
        cleaned += "。"
    return cleaned


class PromptEnhancer:
    """
    Rewrites a garment prompt through an OpenAI-compatible chat endpoint.
    Without configuration, or on any error, falls back to clean_punctuation.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        request_timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.api_key = api_key
        self.model = model
        self.request_timeout = request_timeout

    @property
    def configured(self) -> bool:
        if not (self.base_url and self.api_key and self.model):
            return False
        # Placeholder values copied from sample .env files
        return "your_" not in self.api_key

    async def enhance(self, prompt: str) -> tuple[str, bool]:
        """Returns (prompt, enhanced_remotely)."""
        if not self.configured:
            return clean_punctuation(prompt), False

        instruction = f"""
你是一位顶级的AI绘画提示词优化师，专精于毛衣设计领域。
请对用户输入的毛衣设计提示词进行深度优化，包含：毛衣的颜色、材质、领型、剪裁，
模特的姿态与表情，摄影构图与视角，简约温馨的室内背景与光线氛围，照片级真实感。

输入提示词: "{prompt.strip()}"

要求：
1. 使用中文输出
2. 生成100-150字的详细描述
3. 只输出优化后的提示词文本，不要包含任何解释或标签
        """.strip()

        url = f"{self.base_url}/chat/completions"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": instruction}],
            "temperature": 0.7,
            "max_tokens": 500,
        }

        try:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, headers=headers, json=payload) as resp:
                    if resp.status != 200:
                        body_text = await resp.text()
                        logger.warning("[PromptEnhancer] HTTP %s from %s: %s", resp.status, url, body_text[:300])
                        return clean_punctuation(prompt), False
                    body = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning("[PromptEnhancer] Error calling %s: %s", url, e)
            return clean_punctuation(prompt), False

        text = ""
        choices = body.get("choices") if isinstance(body, dict) else None
        choices = choices or []
        if choices:
            text = ((choices[0] or {}).get("message") or {}).get("content") or ""
        text = text.strip()
        if not text:
            logger.info("[PromptEnhancer] Empty completion, keeping local cleanup")
            return clean_punctuation(prompt), False
        return text, True


def gen_job_id() -> str:
    return str(uuid.uuid4())


def gen_seed() -> int:
    return random.randint(0, 999_999)


def get_timestamp_ms() -> int:
    return int(time.time() * 1000)
