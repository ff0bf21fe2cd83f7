"""Shared fixtures for the payment relay test suite."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from tests.helpers import fake_redis


@pytest.fixture()
def redis_client() -> MagicMock:
    return fake_redis()
