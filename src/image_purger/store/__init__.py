from __future__ import annotations

from image_purger.base import ImageRecord, ImageStore
from image_purger.settings import Settings

from .crictl import CrictlStore
from .docker import DockerStore

__all__ = [
    "ImageRecord",
    "ImageStore",
    "CrictlStore",
    "DockerStore",
    "init_store",
]


def init_store(settings: Settings) -> tuple[ImageStore, str]:
    store_type = settings.store_type.lower()
    stores: dict[str, type[ImageStore]] = {
        "crictl": CrictlStore,
        "docker": DockerStore,
    }
    if store_type not in stores:
        raise ValueError(
            f"STORE_TYPE must be one of {list(stores.keys())}, got '{store_type}'"
        )
    store = stores[store_type].from_settings(settings)
    if isinstance(store, DockerStore):
        location = store.docker_host
    elif isinstance(store, CrictlStore):
        location = store.image_endpoint or "default endpoint"
    else:
        location = None
    info = f"{store_type.upper()}: {location} | target {settings.target_repository or '<unset>'}"
    return store, info
