import pytest

from tests.helpers import FakeTransport


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
