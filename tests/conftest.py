"""Pytest configuration for openbook client tests."""

import pytest
from solders.keypair import Keypair

from factories import FakeFetcher

pytest_plugins = ["pytest_asyncio"]


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def owner():
    return Keypair.from_seed(bytes(range(32)))
