"""
Shared fixtures
"""
from datetime import datetime, timedelta, timezone

import pytest

from omr_grader.pipeline.sheet_layout import layout_for


@pytest.fixture
def template_20x4():
    return layout_for(20, 4)


@pytest.fixture
def answers_20():
    """Answer key for 20 questions cycling A-D"""
    return {q: "ABCD"[(q - 1) % 4] for q in range(1, 21)}


@pytest.fixture
def base_time():
    return datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def later(base_time):
    return lambda minutes: base_time + timedelta(minutes=minutes)
