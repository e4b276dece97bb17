import re
from typing import Pattern

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from image_purger.base import RetentionPolicy


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore"
    )

    store_type: str = "crictl"
    target_repository: str = ""

    total_retain: int = 40
    other_retain: int = 10
    daily_retain: int = 3
    release_retain: int = 3

    daily_pattern: str = r"^d_"
    release_pattern: str = r"^r\d"
    weekly_pattern: str = r"^w_"
    recommended_tag: str = "recommended"

    dry_run: bool = True
    log_level: str = "INFO"
    summary_file: str = ""

    @field_validator("dry_run", mode="before")
    @classmethod
    def _parse_bool(cls, v: str | bool) -> bool:
        return v if isinstance(v, bool) else v.lower() == "true"

    @field_validator("total_retain", "other_retain", "daily_retain", "release_retain")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("retention counts must not be negative")
        return v

    @field_validator("daily_pattern", "release_pattern", "weekly_pattern")
    @classmethod
    def _valid_pattern(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"invalid tag pattern {v!r}: {e}") from e
        return v

    @model_validator(mode="after")
    def _other_within_total(self) -> "Settings":
        if self.other_retain > self.total_retain:
            raise ValueError(
                f"OTHER_RETAIN ({self.other_retain}) exceeds TOTAL_RETAIN ({self.total_retain})"
            )
        return self

    @property
    def compiled_daily_pattern(self) -> Pattern[str]:
        return re.compile(self.daily_pattern)

    @property
    def compiled_release_pattern(self) -> Pattern[str]:
        return re.compile(self.release_pattern)

    @property
    def compiled_weekly_pattern(self) -> Pattern[str]:
        return re.compile(self.weekly_pattern)

    @property
    def retention_policy(self) -> RetentionPolicy:
        return RetentionPolicy(
            total_retain=self.total_retain,
            other_retain=self.other_retain,
            daily_retain=self.daily_retain,
            release_retain=self.release_retain,
            target_repository=self.target_repository,
            daily_pattern=self.compiled_daily_pattern,
            release_pattern=self.compiled_release_pattern,
            weekly_pattern=self.compiled_weekly_pattern,
            recommended_tag=self.recommended_tag,
        )
