from __future__ import annotations

import os
from datetime import UTC, datetime
from typing import Any

import docker
import docker.errors
from loguru import logger
from pydantic import AliasChoices, BaseModel, Field

from image_purger.base import ImageRecord, ImageStore, rank_images
from image_purger.settings import Settings
from image_purger.store.crictl import split_reference


class DockerSettings(BaseModel):
    docker_host: str = Field(
        "unix:///var/run/docker.sock",
        validation_alias=AliasChoices("docker_host", "DOCKER_HOST"),
    )
    docker_timeout: int = Field(
        60, validation_alias=AliasChoices("docker_timeout", "DOCKER_TIMEOUT")
    )


class DockerStore(ImageStore):
    """Docker Engine image store.

    Optional environment variables: DOCKER_HOST (unix://, tcp:// or http(s)://),
    DOCKER_TIMEOUT
    """

    @classmethod
    def from_settings(cls, settings: Settings) -> DockerStore:
        docker_settings = DockerSettings.model_validate(dict(os.environ))
        return cls(docker_settings.docker_host, docker_settings.docker_timeout)

    def __init__(self, docker_host: str, timeout: int = 60):
        self.docker_host = docker_host
        self.timeout = timeout
        self.client = docker.DockerClient(base_url=docker_host, timeout=timeout)

    def list_images(self) -> list[ImageRecord]:
        images = self.client.images.list()
        images.sort(key=lambda image: image.attrs.get("Created", 0), reverse=True)

        records = []
        for image in images:
            attrs: dict[str, Any] = image.attrs
            created_at = datetime.fromtimestamp(attrs.get("Created", 0), UTC)
            repo_tags = [t for t in image.tags if t != "<none>:<none>"]
            for reference in repo_tags:
                repository, tag = split_reference(reference)
                records.append(
                    ImageRecord(
                        repository=repository,
                        tag=tag,
                        image_id=image.id,
                        created_at=created_at,
                        metadata={"image": attrs},
                    )
                )
            if not repo_tags:
                digests = [
                    d for d in attrs.get("RepoDigests") or [] if d != "<none>@<none>"
                ]
                records.append(
                    ImageRecord(
                        repository=digests[0].partition("@")[0] if digests else "<none>",
                        tag="",
                        image_id=image.id,
                        created_at=created_at,
                        metadata={"image": attrs},
                    )
                )

        return rank_images(records)

    def remove_images(self, identifiers: set[str]) -> None:
        for identifier in sorted(identifiers):
            try:
                self.client.images.remove(identifier)
            except docker.errors.ImageNotFound:
                logger.warning(f"Image {identifier} already removed")
            except docker.errors.APIError as e:
                if e.status_code != 409:
                    raise
                logger.warning(f"Image {identifier} is in use, not removed: {e.explanation}")
