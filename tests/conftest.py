"""Pytest configuration and shared fixtures."""

import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock

from imgcloud_manager.core.config import ManagerConfig
from imgcloud_manager.core.context import ManagerContext
from imgcloud_manager.core.manager import ResourceManager
from imgcloud_manager.core.types import Instance, InstanceDescriptor
from imgcloud_manager.providers.base import InstanceProvider
from imgcloud_manager.stats.memory import InMemoryStatsSink


class FakeResponse:
    """Stand-in for an aiohttp response used as an async context manager."""
    
    def __init__(self, status=200, headers=None):
        self.status = status
        self.headers = headers or {}
    
    async def __aenter__(self):
        return self
    
    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class FailingRequest:
    """Request context manager that raises on entry."""
    
    def __init__(self, error):
        self.error = error
    
    async def __aenter__(self):
        raise self.error
    
    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class FakeSession:
    """Minimal aiohttp.ClientSession replacement keyed by URL."""
    
    def __init__(self, outcomes=None):
        self.outcomes = outcomes or {}
        self.requests = []
    
    def get(self, url, timeout=None):
        self.requests.append((url, timeout))
        outcome = self.outcomes[url]
        if isinstance(outcome, BaseException):
            return FailingRequest(outcome)
        return outcome
    
    async def close(self):
        pass


@pytest.fixture
def config():
    """Default configuration with the timers switched off."""
    return ManagerConfig(polling_enabled=False)


@pytest.fixture
def mock_provider():
    """Provider whose allocations succeed on localhost."""
    provider = AsyncMock(spec=InstanceProvider)
    provider.name = "mock"
    provider.allocate.side_effect = lambda instance_id, port=None: InstanceDescriptor(
        id=instance_id, host="localhost", port=port or 8000 + instance_id
    )
    provider.deallocate.return_value = None
    return provider


@pytest.fixture
def stats_sink():
    return InMemoryStatsSink()


@pytest.fixture
def context(config, mock_provider, stats_sink):
    return ManagerContext(config, mock_provider, stats_sink)


@pytest.fixture
def manager(config, mock_provider, stats_sink):
    return ResourceManager(mock_provider, config, stats_sink)


@pytest.fixture
def make_instance(config):
    """Factory for instances with an optional pre-filled history."""
    def _make(instance_id, load=0.0, history=None, host="localhost", port=None):
        instance = Instance(
            id=instance_id,
            host=host,
            port=port or 8000 + instance_id,
            load=load,
            history_window=config.history_window
        )
        for sample in history or []:
            instance.load_history.append(sample)
        return instance
    return _make


@pytest.fixture
def http_fakes():
    """Fake aiohttp session/response classes for probe tests."""
    return SimpleNamespace(Response=FakeResponse, Session=FakeSession)
