import pytest
from unittest.mock import AsyncMock
from sanic import Sanic
from sanic_testing import TestManager
from sanic.log import logger

from ciless.config import Config
from ciless.pipeline import Pipeline
from ciless.reconciler import Reconciler
from ciless.github.contents import ConfigFetcher
from tests.utils import FakeGitHub, FakeTemplateStore


@pytest.fixture
def config():
    config = Config(
        WEBHOOK_SECRET="abc",
        GITHUB_PERSONAL_TOKEN="abc",
        OVERRIDE_LOGGING="DEBUG",
        FETCH_ATTEMPTS=3,
        FETCH_BACKOFF=0,
        UPDATE_ATTEMPTS=3,
        STERILE=False,
    )

    logger.setLevel(config.OVERRIDE_LOGGING)

    return config


@pytest.fixture
def store():
    return FakeTemplateStore()


@pytest.fixture
def gh():
    return FakeGitHub()


@pytest.fixture
def pipeline(gh, store, config):
    return Pipeline.from_config(
        ConfigFetcher.from_config(gh, config),
        Reconciler(store, update_attempts=config.UPDATE_ATTEMPTS),
        config,
    )


@pytest.fixture
def mock_pipeline():
    return AsyncMock(spec=Pipeline)


@pytest.fixture(scope="function")
def app(config, mock_pipeline) -> Sanic:
    """Create a Sanic app for testing."""
    from ciless.web import create_app

    Sanic.test_mode = True
    app = create_app(config=config, pipeline=mock_pipeline)
    TestManager(app)
    return app
