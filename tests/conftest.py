import pytest

from bingbot.config.schema import BingConfig
from fakes import CreateEndpoint


@pytest.fixture
def bing_config() -> BingConfig:
    """Short timers so timeout paths run in milliseconds."""
    return BingConfig(
        cookie="test-cookie",
        response_timeout=0.2,
        conversation_ttl=60.0,
        progress_interval=0.0,
    )


@pytest.fixture
def endpoint() -> CreateEndpoint:
    return CreateEndpoint()
