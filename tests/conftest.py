"""
Pytest configuration for dynamodm tests.

Starts moto's DynamoDB mock for the whole session and parametrizes every
MultiBackendTestBase class over its enabled backends.
"""

import os

import pytest
from moto import mock_aws

from dynamodm.testing import MultiBackendTestBase


@pytest.fixture(scope="session", autouse=True)
def setup_moto():
    """Set up moto mock for all tests."""
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
    os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
    with mock_aws():
        yield


def pytest_generate_tests(metafunc):
    """
    Generate tests for each enabled backend.

    This hook allows MultiBackendTestBase classes to parametrize their tests
    across multiple backends.
    """
    if metafunc.cls and issubclass(metafunc.cls, MultiBackendTestBase):
        if "orm" in metafunc.fixturenames:
            backends = metafunc.cls.get_available_backends()
            metafunc.parametrize("orm", backends, indirect=True, ids=backends)
