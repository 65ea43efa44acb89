import pytest

from utils import FakeServer


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def server() -> FakeServer:
    return FakeServer()
