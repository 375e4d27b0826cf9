"""
hc Test Configuration and Fixtures

Shared fixtures for the backlink index, cascade delete, link context and
CLI tests. Everything runs against in-memory fakes; no network.
"""

import io

import pytest
from rich.console import Console

from hypercerts.core.backlinks import LocalBacklinkIndex, RemoteBacklinkIndex
from hypercerts.core.confirm import AutoConfirmer
from hypercerts.testing.fakes import InMemoryRepository, FakeConstellation, make_activity


# =============================================================================
# PYTEST MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "critical: must-pass safety properties of delete and discovery")
    config.addinivalue_line("markers", "http: exercises the requests layer with a mocked session")


# =============================================================================
# REPOSITORY FIXTURES
# =============================================================================

@pytest.fixture
def repo():
    """Empty in-memory repository for one account."""
    return InMemoryRepository()


@pytest.fixture
def activity_uri(repo):
    """A single activity record, the usual cascade root."""
    return make_activity(repo)


@pytest.fixture
def constellation(repo):
    """Link index that answers from the repo's current contents."""
    return FakeConstellation(repo)


@pytest.fixture
def local_index(repo):
    return LocalBacklinkIndex(repo)


@pytest.fixture
def remote_index(constellation):
    return RemoteBacklinkIndex(constellation=constellation)


# =============================================================================
# OUTPUT / PROMPT FIXTURES
# =============================================================================

@pytest.fixture
def console():
    """Rich console writing to a buffer; read it back with console.file.getvalue()."""
    return Console(file=io.StringIO(), width=200, color_system=None, force_terminal=False)


@pytest.fixture
def yes():
    return AutoConfirmer(True)


@pytest.fixture
def no():
    return AutoConfirmer(False)
