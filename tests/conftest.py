import pytest


@pytest.fixture
def anyio_backend():
    # The application is asyncio-only (asyncio.to_thread, AsyncIOScheduler).
    return "asyncio"
