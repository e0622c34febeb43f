"""Shared pytest fixtures."""

import pytest

from src.harvest import HarvestConfig, ProgressEmitter


@pytest.fixture
def events():
    return []


@pytest.fixture
def emitter(events):
    return ProgressEmitter(events.append)


@pytest.fixture
def config():
    """Default config with a dummy API key (the OpenAI client is always injected)."""
    return HarvestConfig(openai_api_key="test-key")
