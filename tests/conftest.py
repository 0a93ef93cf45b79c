"""Shared pytest configuration."""

import pytest


@pytest.fixture
def anyio_backend():
    # The relay is built on aiohttp, which runs on asyncio only.
    return "asyncio"
