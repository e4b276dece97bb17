from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from re import Pattern
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from image_purger.settings import Settings


@dataclass
class ImageRecord:
    """Image as reported by an image store.

    It standardizes image data across store implementations so the retention
    logic can work with a single structure. ``recency_rank`` is the position in
    the store's listing, 0 being the most recent.
    """

    repository: str
    tag: str
    recency_rank: int = 0
    image_id: str = ""
    created_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def identifier(self) -> str:
        """Name used to remove the image from its store."""
        if self.tag:
            return f"{self.repository}:{self.tag}"
        return self.image_id or self.repository

    @property
    def reference(self) -> str:
        if self.tag:
            return f"{self.repository}:{self.tag}"
        return f"{self.repository}@{_short_id(self.image_id)}"


def _short_id(image_id: str) -> str:
    image_id = image_id.replace("sha256:", "")
    return image_id[:12] if len(image_id) > 12 else image_id


def rank_images(images: list[ImageRecord]) -> list[ImageRecord]:
    """Set each record's recency rank to its position in ``images``."""
    return [replace(image, recency_rank=rank) for rank, image in enumerate(images)]


@dataclass(frozen=True)
class RetentionPolicy:
    total_retain: int = 40
    other_retain: int = 10
    daily_retain: int = 3
    release_retain: int = 3
    target_repository: str = ""
    daily_pattern: Pattern[str] = re.compile(r"^d_")
    release_pattern: Pattern[str] = re.compile(r"^r\d")
    weekly_pattern: Pattern[str] = re.compile(r"^w_")
    recommended_tag: str = "recommended"

    def __post_init__(self) -> None:
        for name in ("total_retain", "other_retain", "daily_retain", "release_retain"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        if self.other_retain > self.total_retain:
            raise ValueError(
                f"other_retain ({self.other_retain}) exceeds total_retain ({self.total_retain})"
            )

    @property
    def target_retain_budget(self) -> int:
        return self.total_retain - self.other_retain

    def weekly_retain(self, kept_daily: int, kept_release: int) -> int:
        """Weekly images are never kept below the daily or release count."""
        leftover = self.target_retain_budget - (kept_daily + kept_release)
        return max(self.daily_retain, self.release_retain, leftover)


class StoreError(RuntimeError):
    """The image store could not list or remove images."""


class ImageStore(ABC):
    """Abstract base class for image store implementations."""

    @classmethod
    @abstractmethod
    def from_settings(cls, settings: Settings) -> ImageStore:
        pass

    @abstractmethod
    def list_images(self) -> list[ImageRecord]:
        """Return every image on the node, most recent first."""

    @abstractmethod
    def remove_images(self, identifiers: set[str]) -> None:
        """Remove images in one best-effort batch."""
