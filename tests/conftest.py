# tests/conftest.py
import pytest

from longform.engine.costs import CostLedger
from longform.engine.events import EventBus
from longform.engine.pipeline import ChapterPipeline
from longform.llm.client import LLMClient
from longform.llm.registry import ModelRegistry

from fakes import FakeGenerator, make_config


@pytest.fixture
def gen():
    return FakeGenerator()


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def llm(gen, config):
    return LLMClient(gen, ModelRegistry(config.resolved_models()), CostLedger())


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def events(bus):
    seen = []
    bus.on_any(seen.append)
    return seen


@pytest.fixture
def pipeline(config, llm, bus):
    return ChapterPipeline(config, llm, bus)
