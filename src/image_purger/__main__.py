import sys

import docker.errors
import requests
from loguru import logger

from image_purger.base import StoreError
from image_purger.logic import run_purge, write_summary
from image_purger.settings import Settings
from image_purger.store import init_store


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def main() -> int:
    try:
        settings = Settings()
        _configure_logging(settings.log_level)
        store, store_info = init_store(settings)
    except (ValueError, docker.errors.DockerException) as e:
        logger.error(f"Error: {e}")
        return 1

    policy = settings.retention_policy
    logger.info(
        f"Store: {store_info} | Total={policy.total_retain}, Other={policy.other_retain}, "
        f"Daily={policy.daily_retain}, Release={policy.release_retain} | "
        f"Dry run: {settings.dry_run}"
    )

    try:
        report = run_purge(store, policy, settings.dry_run)
    except (
        StoreError,
        docker.errors.DockerException,
        requests.exceptions.RequestException,
    ) as e:
        logger.error(f"Aborting purge: {e}")
        return 1

    write_summary(report, settings)

    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
