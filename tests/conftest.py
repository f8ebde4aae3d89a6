import pytest

from qasmcc import CompilerOptions, MappingSourceProvider


@pytest.fixture
def provider():
    return MappingSourceProvider()


@pytest.fixture
def options():
    return CompilerOptions()
