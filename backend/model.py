# backend/model.py
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from config.settings import settings


class Resolution(str, Enum):
    SQUARE = "1024x1024"
    PORTRAIT_3_4 = "864x1152"
    LANDSCAPE_4_3 = "1152x864"
    LANDSCAPE_3_2 = "1248x832"
    PORTRAIT_2_3 = "832x1248"
    LANDSCAPE_16_9 = "1280x720"
    PORTRAIT_9_16 = "720x1280"
    LANDSCAPE_21_9 = "1344x576"
    PORTRAIT_9_21 = "576x1344"

    @property
    def width(self) -> int:
        return int(self.value.split("x")[0])

    @property
    def height(self) -> int:
        return int(self.value.split("x")[1])


class JobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUSPENDED = "SUSPENDED"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELED)

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["JobStatus"]:
        """Provider status string -> JobStatus. Unknown values give None."""
        if not isinstance(raw, str) or not raw:
            return None
        value = raw.strip().upper()
        if value == "SUCCEED":
            return cls.SUCCEEDED
        try:
            return cls(value)
        except ValueError:
            return None


class GenerationConfig(BaseModel):
    """Caller-supplied settings for one generation; optional fields have provider defaults."""

    secret: str = ""
    steps: int = settings.DEFAULT_STEPS
    time_shift: float = settings.DEFAULT_TIME_SHIFT
    guidance_scale: float = settings.DEFAULT_GUIDANCE_SCALE
    sampler: str = settings.DEFAULT_SAMPLER
    scheduler: str = settings.DEFAULT_SCHEDULER
    model: str = settings.MODEL_ID


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt: str
    resolution: Resolution
    seed: int
    steps: int = settings.DEFAULT_STEPS
    time_shift: float = settings.DEFAULT_TIME_SHIFT
    guidance_scale: float = settings.DEFAULT_GUIDANCE_SCALE
    sampler: str = settings.DEFAULT_SAMPLER
    scheduler: str = settings.DEFAULT_SCHEDULER
    model: str = settings.MODEL_ID


class JobHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    task_id: str


class TaskState(BaseModel):
    """One status snapshot returned by the provider's task endpoint."""

    status: Optional[JobStatus] = None
    raw_status: Optional[str] = None
    output_images: List[str] = Field(default_factory=list)
    seed: Optional[int] = None
    message: Optional[str] = None


class GenerationResult(BaseModel):
    image_uri: str
    resolved_seed: Optional[int] = None


# ---- HTTP API models ----

Status = Literal["waiting", "processing", "done", "error", "cancelled"]


class GenerateRequest(BaseModel):
    user_id: str
    prompt: Optional[str] = None  # None -> built from selections
    selections: Optional[Dict[str, str]] = None
    resolution: Resolution = Resolution.SQUARE
    seed: Optional[int] = None
    random_seed: bool = True
    enhance: bool = False
    steps: Optional[int] = None
    time_shift: Optional[float] = None
    guidance_scale: Optional[float] = None
    sampler: Optional[str] = None
    scheduler: Optional[str] = None


class GenerateResponse(BaseModel):
    job_id: str
    status: Status


class JobResult(BaseModel):
    job_id: str
    status: Status
    progress: int = 0
    image_url: Optional[str] = None
    seed: Optional[int] = None
    prompt: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class HistoryItem(BaseModel):
    id: str
    timestamp: int
    image_url: str
    prompt: str
    seed: Optional[int] = None
    resolution: Resolution
    provider: str = "zimage"


class Category(BaseModel):
    id: str
    label: str
    items: List[str]


class VerifyRequest(BaseModel):
    key: str
    endpoint: Optional[str] = None
    model: Optional[str] = None
    proxy: Optional[str] = None


class VerifyResult(BaseModel):
    success: bool
    message: Optional[str] = None


class PromptRequest(BaseModel):
    selections: Dict[str, str] = Field(default_factory=dict)


class PromptResponse(BaseModel):
    prompt: str


class EnhanceRequest(BaseModel):
    prompt: str


class EnhanceResponse(BaseModel):
    prompt: str
    enhanced: bool
