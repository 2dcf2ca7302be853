"""Pytest configuration and fixtures."""

from pathlib import Path

import pytest

from magtoepub.config.settings import MagtoepubSettings
from magtoepub.image.models import ExtractedImage
from tests.fakes import FakeDocument, FakePage, SleepRecorder


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_document():
    """Build a FakeDocument from FakePage objects."""

    def _make(pages: list[FakePage]) -> FakeDocument:
        return FakeDocument(pages)

    return _make


@pytest.fixture
def settings(tmp_path: Path) -> MagtoepubSettings:
    """Settings isolated from the environment and any local config file."""
    return MagtoepubSettings(
        llm={"api_key": "test-key"},
        log_dir=str(tmp_path / "logs"),
        output={"default_dir": str(tmp_path / "output")},
    )


@pytest.fixture
def sample_images() -> list[ExtractedImage]:
    return [
        ExtractedImage(page=1, index=1, data=b"cover", description="Magazine Cover"),
        ExtractedImage(page=2, index=1, data=b"img-2-1"),
        ExtractedImage(page=3, index=1, data=b"img-3-1"),
        ExtractedImage(page=3, index=2, data=b"img-3-2"),
    ]
