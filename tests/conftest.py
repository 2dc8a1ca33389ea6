"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from envforge.adapters.mock import MockAdapter
from envforge.adapters.registry import AdapterRegistry
from envforge.core import context


@pytest.fixture(autouse=True)
def _isolate_context():
    """Each test starts without a registered repository root."""
    context.set_project_root(None)
    yield
    context.set_project_root(None)


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for state files."""
    state_dir = tmp_path / ".state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def mock_adapter() -> MockAdapter:
    return MockAdapter()


@pytest.fixture
def registry(mock_adapter: MockAdapter, tmp_path: Path) -> AdapterRegistry:
    reg = AdapterRegistry(project_root=str(tmp_path))
    reg.register(mock_adapter)
    return reg

