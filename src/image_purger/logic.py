"""Core logic for node image purging."""

from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from image_purger.base import ImageRecord, ImageStore, RetentionPolicy
from image_purger.classify import Inventory, classify
from image_purger.settings import Settings


class Outcome(str, Enum):
    CONVERGED = "converged"
    MANUAL_INTERVENTION_REQUIRED = "manual_intervention_required"
    CANNOT_CONVERGE = "cannot_converge"


@dataclass
class PhaseResult:
    name: str
    purged: list[ImageRecord]
    remaining: int | None = None  # image count seen by the check after this phase


@dataclass
class PurgeReport:
    policy: RetentionPolicy
    dry_run: bool
    initial_count: int = 0
    outcome: Outcome | None = None
    final_count: int | None = None
    phases: list[PhaseResult] = field(default_factory=list)

    @property
    def purged(self) -> list[ImageRecord]:
        return [image for phase in self.phases for image in phase.purged]

    @property
    def exit_code(self) -> int:
        """Non-convergence only fails a live run; a dry run destroyed nothing."""
        if self.outcome is Outcome.CONVERGED or self.dry_run:
            return 0
        return 1


def oldest(images: list[ImageRecord], keep: int) -> list[ImageRecord]:
    """Return the images past the ``keep`` most recent ones."""
    return list(images[max(keep, 0) :])


class PurgeRun:
    """A single pass of the retention policy against a store.

    Phases run in a fixed order. After each one the store is listed again and
    the run stops as soon as the node holds no more than ``total_retain``
    images. The listing taken by that check is what the next phase classifies.
    """

    def __init__(self, store: ImageStore, policy: RetentionPolicy, dry_run: bool):
        self.store = store
        self.policy = policy
        self.dry_run = dry_run
        self.images: list[ImageRecord] = []
        self.kept_daily = 0
        self.kept_release = 0
        self.report = PurgeReport(policy=policy, dry_run=dry_run)

    def run(self) -> PurgeReport:
        self.images = self.store.list_images()
        self.report.initial_count = len(self.images)
        logger.info(
            f"Found {len(self.images)} image(s), retention limit {self.policy.total_retain}"
        )
        if self._converged():
            logger.info("Image count within limit, nothing to purge")
            return self._finish(Outcome.CONVERGED)

        inventory = self._inventory()
        self._purge("untagged", inventory.untagged)
        if self._check():
            return self._finish(Outcome.CONVERGED)

        inventory = self._inventory()
        self._purge("trash", inventory.trash)
        if self._check():
            return self._finish(Outcome.CONVERGED)

        inventory = self._inventory()
        self._purge("other", oldest(inventory.other, self.policy.other_retain))
        if self._check():
            return self._finish(Outcome.CONVERGED)

        inventory = self._inventory()
        if not self._target_purge_feasible(inventory):
            return self._finish(Outcome.MANUAL_INTERVENTION_REQUIRED)

        self._purge("daily", oldest(inventory.daily, self.policy.daily_retain))
        if self._check():
            return self._finish(Outcome.CONVERGED)

        self._purge("release", oldest(inventory.release, self.policy.release_retain))
        if self._check():
            return self._finish(Outcome.CONVERGED)

        # Images that resisted removal still count against the weekly floor.
        inventory = classify(self._surviving(), self.policy)
        self.kept_daily = len(inventory.daily)
        self.kept_release = len(inventory.release)
        weekly_retain = self.policy.weekly_retain(self.kept_daily, self.kept_release)
        logger.info(
            f"Weekly retention: {weekly_retain} (kept {self.kept_daily} daily, "
            f"{self.kept_release} release)"
        )
        self._purge("weekly", oldest(inventory.weekly, weekly_retain))
        if self._check():
            return self._finish(Outcome.CONVERGED)

        self._log_failure(
            f"{len(self.images)} image(s) remain after all phases, limit is "
            f"{self.policy.total_retain}; remaining images may be in use"
        )
        return self._finish(Outcome.CANNOT_CONVERGE)

    def _inventory(self) -> Inventory:
        inventory = classify(self.images, self.policy)
        counts = ", ".join(
            f"{category.value}={count}" for category, count in inventory.counts().items()
        )
        logger.debug(f"Inventory: {counts}")
        return inventory

    def _surviving(self) -> list[ImageRecord]:
        """Current listing without the images a dry run has already purged."""
        if not self.dry_run:
            return self.images
        purged = {image.identifier for image in self.report.purged}
        return [image for image in self.images if image.identifier not in purged]

    def _converged(self) -> bool:
        return len(self.images) <= self.policy.total_retain

    def _check(self) -> bool:
        self.images = self.store.list_images()
        self.report.phases[-1].remaining = len(self.images)
        logger.info(f"{len(self.images)} image(s) on node")
        return self._converged()

    def _target_purge_feasible(self, inventory: Inventory) -> bool:
        budget = self.policy.target_retain_budget
        if len(inventory.target) > budget:
            return True
        self._log_failure(
            f"{len(inventory.target)} {self.policy.target_repository} image(s) fit the "
            f"budget of {budget} but {len(self.images)} image(s) exceed the limit of "
            f"{self.policy.total_retain}; manual intervention required"
        )
        return False

    def _without_shared(self, phase: str, images: list[ImageRecord]) -> list[ImageRecord]:
        """Drop images whose content is also held by a tag that stays.

        Runtimes remove by image id, so removing one tag of a shared image
        takes every other tag on it along.
        """
        identifiers = {image.identifier for image in images}
        retained = {
            image.image_id: image
            for image in self._surviving()
            if image.image_id and image.identifier not in identifiers
        }
        kept = []
        for image in images:
            holder = retained.get(image.image_id) if image.image_id else None
            if holder is None:
                kept.append(image)
            else:
                logger.warning(
                    f"[{phase}] not purging {image.reference}: image is also "
                    f"tagged {holder.reference}"
                )
        return kept

    def _purge(self, phase: str, images: list[ImageRecord]) -> None:
        images = self._without_shared(phase, images)
        self.report.phases.append(PhaseResult(phase, images))
        if not images:
            logger.info(f"{phase.upper()}: nothing to purge")
            return

        for image in images:
            logger.debug(f"[{phase}] purge {image.reference} (rank {image.recency_rank})")
        identifiers = {image.identifier for image in images}
        if self.dry_run:
            logger.info(f"DRY RUN: {phase.upper()}: would purge {len(identifiers)} image(s)")
            return
        logger.info(f"{phase.upper()}: purging {len(identifiers)} image(s)")
        self.store.remove_images(identifiers)

    def _log_failure(self, message: str) -> None:
        if self.dry_run:
            logger.warning(f"DRY RUN: {message}")
        else:
            logger.error(message)

    def _finish(self, outcome: Outcome) -> PurgeReport:
        self.report.outcome = outcome
        self.report.final_count = len(self.images)
        logger.info(f"Outcome: {outcome.value} ({len(self.images)} image(s) on node)")
        return self.report


def run_purge(store: ImageStore, policy: RetentionPolicy, dry_run: bool) -> PurgeReport:
    return PurgeRun(store, policy, dry_run).run()


def write_summary(report: PurgeReport, settings: Settings) -> None:
    """Write a markdown purge summary to the configured summary file."""
    if not settings.summary_file:
        return

    policy = report.policy
    action = "To purge" if report.dry_run else "Purged"
    mode = "Dry Run" if report.dry_run else "Live"
    outcome = report.outcome.value if report.outcome else "unknown"

    with open(settings.summary_file, "w") as f:
        f.write(
            f"### Node Image Purge\n\n"
            f"| Metric | Count |\n"
            f"|--------|-------|\n"
            f"| Images: before | {report.initial_count} |\n"
            f"| Images: after | {report.final_count} |\n"
            f"| Images: {action.lower()} | {len(report.purged)} |\n\n"
            f"**Mode:** {mode} | **Outcome:** {outcome} | "
            f"**Retention:** Total={policy.total_retain}, Other={policy.other_retain}, "
            f"Daily={policy.daily_retain}, Release={policy.release_retain}\n\n"
        )

        if report.purged:
            f.write(f"**{action}: {len(report.purged)} images**\n\n")
            f.write("| Phase | Image | Rank |\n")
            f.write("|-------|-------|------|\n")
            for phase in report.phases:
                for image in phase.purged:
                    f.write(f"| {phase.name} | `{image.reference}` | {image.recency_rank} |\n")
