import re

from config.settings import settings

# Label the prompt builder prepends ("AI设计：...", "AI Design: ...")
_LABEL_PREFIX = re.compile(r"^(?:\s*(?:AI设计|AI Design)\s*[:：]\s*)+", re.IGNORECASE)

_BREAK_CHARS = (" ", ",", "，", ".", "。", "!", "?", "！", "？")

# A break point is accepted only within the last 20% of the limit
_BREAK_RATIO = 0.8


def _strip_label(text: str) -> str:
    return _LABEL_PREFIX.sub("", text, count=1).strip()


def _soft_cut(text: str, max_length: int) -> str:
    hard = text[:max_length]
    last_break = max(hard.rfind(ch) for ch in _BREAK_CHARS)
    if last_break > max_length * _BREAK_RATIO:
        return hard[:last_break]
    return hard


def sanitize(raw_prompt: str, max_length: int = settings.MAX_PROMPT_LENGTH) -> str:
    """
    Fit a prompt to the provider limit.

    Over-long prompts are cut at the last word break, comma or sentence end
    when one lies in the final 20% of ``max_length``; otherwise at the hard
    limit. The builder label is stripped and whitespace trimmed. The result
    is never empty for a non-blank prompt and never longer than ``max_length``.
    """
    raw_prompt = raw_prompt or ""
    max_length = max(1, int(max_length))

    if len(raw_prompt) <= max_length:
        cleaned = _strip_label(raw_prompt)
        return cleaned or raw_prompt.strip() or raw_prompt

    cut = _soft_cut(raw_prompt, max_length)
    cleaned = _strip_label(cut)
    if cleaned:
        return cleaned

    hard = raw_prompt[:max_length]
    return hard.strip() or hard
