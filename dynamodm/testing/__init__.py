"""
Testing helpers for dynamodm.

Provides drivers for each backend and a base class that runs a test class
against all of them:

    from dynamodm.testing import MultiBackendTestBase
"""

from dynamodm.testing.drivers import DriverInterface, DynamoDBDriver, InMemoryDriver
from dynamodm.testing.multi_backend_base import MultiBackendTestBase, multi_backend_test_class

__all__ = [
    "DriverInterface",
    "InMemoryDriver",
    "DynamoDBDriver",
    "MultiBackendTestBase",
    "multi_backend_test_class",
]
