from __future__ import annotations

import json
import os
import re
import subprocess
from datetime import UTC, datetime
from typing import Any

from dateutil import parser as date_parser  # type: ignore[import-untyped]
from loguru import logger
from pydantic import AliasChoices, BaseModel, Field

from image_purger.base import ImageRecord, ImageStore, StoreError, rank_images
from image_purger.settings import Settings


class CrictlSettings(BaseModel):
    crictl_path: str = Field(
        "crictl", validation_alias=AliasChoices("crictl_path", "CRICTL_PATH")
    )
    image_endpoint: str = Field(
        "",
        validation_alias=AliasChoices(
            "image_endpoint", "IMAGE_ENDPOINT", "CONTAINER_RUNTIME_ENDPOINT"
        ),
    )
    crictl_timeout: int = Field(
        300, validation_alias=AliasChoices("crictl_timeout", "CRICTL_TIMEOUT")
    )


def split_reference(reference: str) -> tuple[str, str]:
    """Split ``repository:tag``; a colon inside the registry host is not a tag."""
    repository, sep, tag = reference.rpartition(":")
    if not sep or "/" in tag:
        return reference, ""
    return repository, tag


def natural_key(text: str) -> list[str | int]:
    """Sort key comparing digit runs as numbers, so ``r10`` follows ``r9``."""
    return [int(part) if part.isdigit() else part for part in re.split(r"(\d+)", text)]


def _recency_key(record: ImageRecord) -> tuple[float, list[str | int]]:
    created = record.created_at.timestamp() if record.created_at else float("-inf")
    return created, natural_key(record.reference)


class CrictlStore(ImageStore):
    """Images known to a CRI runtime, listed and removed through crictl.

    Optional environment variables: CRICTL_PATH, IMAGE_ENDPOINT (or
    CONTAINER_RUNTIME_ENDPOINT), CRICTL_TIMEOUT

    ``crictl images`` carries no creation time, so each image is inspected once
    for the ``created`` field of its image spec. Images are ordered newest
    first; tags of the same image, or images without a known creation time,
    fall back to descending natural order of ``repository:tag``, which keeps
    date-stamped tags (``d_2021_05_03``, ``w_2021_18``) newest first.
    Untagged images are listed last.
    """

    @classmethod
    def from_settings(cls, settings: Settings) -> CrictlStore:
        crictl_settings = CrictlSettings.model_validate(dict(os.environ))
        return cls(
            crictl_settings.crictl_path,
            crictl_settings.image_endpoint,
            crictl_settings.crictl_timeout,
        )

    def __init__(
        self, crictl_path: str = "crictl", image_endpoint: str = "", timeout: int = 300
    ):
        self.crictl_path = crictl_path
        self.image_endpoint = image_endpoint
        self.timeout = timeout
        # Image ids are content digests, so a creation time never changes.
        self._created: dict[str, datetime | None] = {}

    def _run(self, *args: str) -> subprocess.CompletedProcess[str]:
        command = [self.crictl_path]
        if self.image_endpoint:
            command += ["--image-endpoint", self.image_endpoint]
        command += list(args)
        logger.debug(f"Running: {' '.join(command)}")
        try:
            return subprocess.run(
                command, capture_output=True, text=True, timeout=self.timeout
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise StoreError(f"Could not run {self.crictl_path}: {e}") from e

    def list_images(self) -> list[ImageRecord]:
        result = self._run("images", "-o", "json")
        if result.returncode != 0:
            raise StoreError(
                f"crictl images exited with {result.returncode}: {result.stderr.strip()}"
            )
        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise StoreError(f"Could not parse crictl images output: {e}") from e

        tagged: list[ImageRecord] = []
        untagged: list[ImageRecord] = []
        for image in data.get("images") or []:
            image_id = image.get("id", "")
            repo_tags = image.get("repoTags") or []
            created_at = self.created_at(image_id) if repo_tags else None
            for reference in repo_tags:
                repository, tag = split_reference(reference)
                tagged.append(self._record(repository, tag, image_id, created_at, image))
            if not repo_tags:
                untagged.append(
                    self._record(self._digest_repository(image), "", image_id, None, image)
                )

        tagged.sort(key=_recency_key, reverse=True)
        return rank_images(tagged + untagged)

    def created_at(self, image_id: str) -> datetime | None:
        """Creation time from ``crictl inspecti``, or None when unavailable."""
        if image_id not in self._created:
            self._created[image_id] = self._inspect_created(image_id)
        return self._created[image_id]

    def _inspect_created(self, image_id: str) -> datetime | None:
        if not image_id:
            return None
        result = self._run("inspecti", "-o", "json", image_id)
        if result.returncode != 0:
            logger.debug(f"Could not inspect image {image_id[:19]}: {result.stderr.strip()}")
            return None
        try:
            info = json.loads(result.stdout or "{}").get("info") or {}
            created = (info.get("imageSpec") or {}).get("created")
            return self._parse_time(created) if created else None
        except (json.JSONDecodeError, ValueError, OverflowError) as e:
            logger.debug(f"Could not read creation time of image {image_id[:19]}: {e}")
            return None

    @staticmethod
    def _parse_time(time_str: str) -> datetime:
        parsed = date_parser.parse(time_str)
        return parsed.replace(tzinfo=UTC) if parsed.tzinfo is None else parsed

    @staticmethod
    def _record(
        repository: str,
        tag: str,
        image_id: str,
        created_at: datetime | None,
        image: dict[str, Any],
    ) -> ImageRecord:
        return ImageRecord(
            repository=repository,
            tag=tag,
            image_id=image_id,
            created_at=created_at,
            metadata={"image": image},
        )

    @staticmethod
    def _digest_repository(image: dict[str, Any]) -> str:
        digests = image.get("repoDigests") or []
        return digests[0].partition("@")[0] if digests else "<none>"

    def remove_images(self, identifiers: set[str]) -> None:
        if not identifiers:
            return
        result = self._run("rmi", *sorted(identifiers))
        if result.returncode != 0:
            # Usually images held by running containers; the next listing shows them.
            logger.warning(
                f"crictl rmi exited with {result.returncode}: {result.stderr.strip()}"
            )
