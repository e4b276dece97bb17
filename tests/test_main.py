"""Tests for main module."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from image_purger.__main__ import main
from image_purger.base import ImageRecord, StoreError


def _set_env(monkeypatch: pytest.MonkeyPatch, **overrides: str) -> None:
    env = {
        "STORE_TYPE": "crictl",
        "TARGET_REPOSITORY": "foo/bar",
        "TOTAL_RETAIN": "2",
        "OTHER_RETAIN": "0",
        "DRY_RUN": "false",
        "LOG_LEVEL": "DEBUG",
    }
    env.update(overrides)
    for name, value in env.items():
        monkeypatch.setenv(name, value)


def test_main_returns_zero(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that main() returns 0 when there is nothing to purge."""
    _set_env(monkeypatch)
    monkeypatch.setattr(
        "image_purger.store.crictl.CrictlStore.list_images", lambda self: []
    )
    assert main() == 0


class TestMainFunction:
    def test_main_error_handling(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test main() handles store initialization errors."""
        _set_env(monkeypatch, STORE_TYPE="invalid")
        assert main() == 1

    def test_main_invalid_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _set_env(monkeypatch, OTHER_RETAIN="5")
        assert main() == 1

    def test_main_store_failure(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _set_env(monkeypatch)

        def fail(self: object) -> list[ImageRecord]:
            raise StoreError("crictl missing")

        monkeypatch.setattr("image_purger.store.crictl.CrictlStore.list_images", fail)
        assert main() == 1

    def test_main_cannot_converge(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Images that survive removal fail a live run and pass a dry run."""
        images = [ImageRecord("foo/bar", f"d_{n}") for n in range(5)]
        monkeypatch.setattr(
            "image_purger.store.crictl.CrictlStore.list_images", lambda self: images
        )
        monkeypatch.setattr(
            "image_purger.store.crictl.CrictlStore.remove_images",
            lambda self, identifiers: None,
        )
        _set_env(monkeypatch)
        assert main() == 1

        _set_env(monkeypatch, DRY_RUN="true")
        assert main() == 0

    def test_main_writes_summary(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        summary = tmp_path / "summary.md"
        _set_env(monkeypatch, SUMMARY_FILE=str(summary), DRY_RUN="true")
        images = [ImageRecord("foo/bar", f"d_{n}") for n in range(5)]
        monkeypatch.setattr(
            "image_purger.store.crictl.CrictlStore.list_images", lambda self: images
        )
        assert main() == 0
        content = summary.read_text()
        assert "Node Image Purge" in content
        assert "Dry Run" in content
