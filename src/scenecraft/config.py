from pathlib import Path
from typing import Optional, Union
import os

from pydantic import BaseModel, Field, model_validator

API_KEY_ENV = "DASHSCOPE_API_KEY"


class GenerationConfig(BaseModel):
    api_key: str = Field(default="", repr=False)
    base_url: str = "https://dashscope.aliyuncs.com"
    chat_model: str = "qwen-long"
    image_model: str = "qwen-image-plus"
    tts_model: str = "qwen3-tts-flash"
    image_size: str = "1328*1328"
    image_watermark: bool = False
    voice: str = "Cherry"
    language_type: str = "Chinese"
    request_timeout: int = 300
    max_retries: int = 3
    requests_per_minute: int = 60
    summary_prompt: Optional[str] = None
    role_prompt: Optional[str] = None
    scene_prompt: Optional[str] = None
    usage_log: Optional[Path] = None


class RetryConfig(BaseModel):
    strategy: str = Field(default="forever", pattern="^(forever|backoff)$")
    base_seconds: float = 30.0
    max_seconds: float = 3600.0


class SchedulerConfig(BaseModel):
    enabled: bool = True
    role_interval_secs: float = Field(default=30, gt=0)
    scene_interval_secs: float = Field(default=30, gt=0)
    image_interval_secs: float = Field(default=30, gt=0)
    retry: RetryConfig = Field(default_factory=RetryConfig)


class DatabaseConfig(BaseModel):
    url: str = "sqlite+aiosqlite:///scenecraft.db"
    echo: bool = False


class LogConfig(BaseModel):
    level: str = "INFO"
    file: Optional[Path] = None
    max_bytes: int = 100 * 1024 * 1024
    backup_count: int = 10


class SplitOptions(BaseModel):
    chunk_size: int = Field(default=5000, gt=0)
    chunk_overlap: int = Field(default=100, ge=0)
    separator: str = "\n\n"

    @model_validator(mode="after")
    def _overlap_below_size(self) -> "SplitOptions":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self


class AppConfig(BaseModel):
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    log: LogConfig = Field(default_factory=LogConfig)
    split: SplitOptions = Field(default_factory=SplitOptions)


def load_config(path: Optional[Union[str, Path]] = None) -> AppConfig:
    """Read an ``AppConfig`` from a JSON file; missing sections keep their defaults."""
    if path is None:
        config = AppConfig()
    else:
        config = AppConfig.model_validate_json(Path(path).read_text(encoding="utf-8"))
    if not config.generation.api_key:
        config.generation.api_key = os.environ.get(API_KEY_ENV, "")
    return config
