# backend/prompt_builder.py

import json
import random
from pathlib import Path
from typing import Dict, List, Optional

from .model import Category

# Directory holding user-edited category presets (JSON)
PRESETS_DIR = Path(__file__).resolve().parents[1] / "presets"

PROMPT_LABEL = "AI设计："
PROMPT_SUBJECT = "一件精美毛衣"
PROMPT_SEPARATOR = "，"

DEFAULT_CATEGORIES: List[Category] = [
    Category(id="color", label="毛衣颜色", items=["奶油白", "焦糖橘", "莫兰迪绿", "燕麦色", "复古红"]),
    Category(id="material", label="面料材质", items=["山羊绒", "蓬松马海毛", "亲肤棉线", "粗旷羊毛"]),
    Category(id="collar", label="领型选择", items=["经典圆领", "优雅V领", "高领保暖", "Polo翻领"]),
    Category(id="fit", label="剪裁风格", items=["慵懒宽松", "修身款", "复古箱型"]),
    Category(
        id="style",
        label="整体风格",
        items=[
            "温暖色调，8k超清细节，时尚摄影特写，柔和唯美光影",
            "自然清新，日系风格，明亮光线，生活感",
            "复古胶片，电影感，高对比度，颗粒质感",
            "极简主义，冷淡风，棚拍质感，干净背景",
        ],
    ),
]


def load_categories(filename: str = "categories.json") -> List[Category]:
    """
    Read category presets from PRESETS_DIR; falls back to DEFAULT_CATEGORIES
    when the file does not exist.
    """
    path = PRESETS_DIR / filename
    if not path.exists():
        return [c.model_copy(deep=True) for c in DEFAULT_CATEGORIES]
    with path.open("r", encoding="utf-8") as f:
        return [Category.model_validate(item) for item in json.load(f)]


def save_categories(categories: List[Category], filename: str = "categories.json") -> None:
    PRESETS_DIR.mkdir(exist_ok=True)
    path = PRESETS_DIR / filename
    with path.open("w", encoding="utf-8") as f:
        json.dump([c.model_dump() for c in categories], f, indent=2, ensure_ascii=False)


def default_selections(categories: List[Category]) -> Dict[str, str]:
    """First item of every non-empty category."""
    return {c.id: c.items[0] for c in categories if c.items}


def random_selections(categories: List[Category], rng: Optional[random.Random] = None) -> Dict[str, str]:
    rng = rng or random.Random()
    return {c.id: rng.choice(c.items) for c in categories if c.items}


def build_prompt(categories: List[Category], selections: Dict[str, str]) -> str:
    """
    Assemble the prompt in category order:
    "AI设计：一件精美毛衣，<color>，<material>，..."
    Selections for unknown categories are ignored.
    """
    parts = [PROMPT_LABEL + PROMPT_SUBJECT]
    for category in categories:
        choice = selections.get(category.id)
        if choice:
            parts.append(choice)
    return PROMPT_SEPARATOR.join(parts)
