import pytest

from fakes import FakeConnection


@pytest.fixture
def connection():
    return FakeConnection()
