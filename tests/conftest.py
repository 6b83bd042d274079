"""Pytest configuration and shared fixtures."""

import pytest

from site_snacker.config import SnackerConfig

from .fakes import FakeDescriber, FakeRenderer, FakeTranscriber


@pytest.fixture
def config(tmp_path):
    """All-default configuration rooted in a temporary directory."""
    return SnackerConfig.default(tmp_path)


@pytest.fixture
def sleeps():
    """Recorded backoff delays; pass ``sleeps.sleep`` as the fetcher's sleep."""

    class Recorder(list):
        async def sleep(self, delay: float) -> None:
            self.append(delay)

    return Recorder()


@pytest.fixture
def describer():
    return FakeDescriber()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def renderer():
    return FakeRenderer()
