from functools import lru_cache
from typing import Annotated
import json
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


BACKEND_ENV_FILE = Path(__file__).resolve().parents[2] / ".env"


class Settings(BaseSettings):
    # Resolve to backend/.env so the engine picks up overrides from any cwd.
    model_config = SettingsConfigDict(
        env_file=str(BACKEND_ENV_FILE),
        env_file_encoding="utf-8",
        env_prefix="TIMETABLE_",
    )

    lab_placement_attempts: int = Field(default=5, ge=1, le=50)
    theory_fill_guard_iterations: int = Field(default=1000, ge=1, le=100_000)

    open_elective_label: str = "Open Elective"
    open_elective_max_per_day: int = Field(default=2, ge=1, le=7)

    # Raw env strings reach split_weekday_only_tags undecoded.
    weekday_only_tags: Annotated[list[str], NoDecode] = ["SSA", "weekday-only"]

    # Saturday periods from here to the last period are held for the class counselor.
    counselor_reserved_from_period: int = Field(default=3, ge=1, le=7)

    generation_lock_timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("weekday_only_tags", mode="before")
    @classmethod
    def split_weekday_only_tags(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                try:
                    parsed = json.loads(stripped)
                    if isinstance(parsed, list):
                        return [str(item).strip() for item in parsed if str(item).strip()]
                except json.JSONDecodeError:
                    pass
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
