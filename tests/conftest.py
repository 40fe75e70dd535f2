"""Pytest configuration shared across the suite."""

import pytest

from stubs import IntervalRecorder


@pytest.fixture
def recorder():
    return IntervalRecorder()
