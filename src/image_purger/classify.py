"""Inventory classification by repository and tag naming convention."""

from dataclasses import dataclass, field
from enum import Enum

from image_purger.base import ImageRecord, RetentionPolicy

_IMPLICIT_REGISTRIES = ("docker.io/", "index.docker.io/")


class Category(str, Enum):
    UNTAGGED = "untagged"
    TARGET_TRASH = "trash"
    TARGET_DAILY = "daily"
    TARGET_RELEASE = "release"
    TARGET_WEEKLY = "weekly"
    TARGET_RECOMMENDED = "recommended"
    OTHER = "other"


TARGET_CATEGORIES = frozenset(
    {
        Category.TARGET_TRASH,
        Category.TARGET_DAILY,
        Category.TARGET_RELEASE,
        Category.TARGET_WEEKLY,
        Category.TARGET_RECOMMENDED,
    }
)


def _normalize_repository(repository: str) -> str:
    for registry in _IMPLICIT_REGISTRIES:
        if repository.startswith(registry):
            return repository[len(registry) :]
    return repository


def matches_repository(repository: str, target: str) -> bool:
    """Whole-name comparison, so ``foo/barbaz`` never matches ``foo/bar``."""
    if not target:
        return False
    return _normalize_repository(repository) == _normalize_repository(target)


def categorize(image: ImageRecord, policy: RetentionPolicy) -> Category:
    tag = image.tag
    if not tag or tag == "<none>":
        return Category.UNTAGGED
    if not matches_repository(image.repository, policy.target_repository):
        return Category.OTHER
    if tag == policy.recommended_tag:
        return Category.TARGET_RECOMMENDED
    if policy.daily_pattern.match(tag):
        return Category.TARGET_DAILY
    if policy.release_pattern.match(tag):
        return Category.TARGET_RELEASE
    if policy.weekly_pattern.match(tag):
        return Category.TARGET_WEEKLY
    return Category.TARGET_TRASH


@dataclass
class Inventory:
    """Images partitioned by category, each list in store recency order."""

    untagged: list[ImageRecord] = field(default_factory=list)
    trash: list[ImageRecord] = field(default_factory=list)
    daily: list[ImageRecord] = field(default_factory=list)
    release: list[ImageRecord] = field(default_factory=list)
    weekly: list[ImageRecord] = field(default_factory=list)
    recommended: list[ImageRecord] = field(default_factory=list)
    other: list[ImageRecord] = field(default_factory=list)
    target: list[ImageRecord] = field(default_factory=list)

    def by_category(self, category: Category) -> list[ImageRecord]:
        images: list[ImageRecord] = getattr(self, category.value)
        return images

    def counts(self) -> dict[Category, int]:
        return {category: len(self.by_category(category)) for category in Category}

    @property
    def total(self) -> int:
        return len(self.untagged) + len(self.other) + len(self.target)


def classify(images: list[ImageRecord], policy: RetentionPolicy) -> Inventory:
    inventory = Inventory()
    for image in images:
        category = categorize(image, policy)
        inventory.by_category(category).append(image)
        if category in TARGET_CATEGORIES:
            inventory.target.append(image)
    return inventory
