"""Pytest configuration for the Onebox sync service."""

import sys
from pathlib import Path

import pytest

# Add src/ and tests/ to sys.path for absolute imports
root = Path(__file__).parent.parent
for path in (root / "src", root / "tests"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from fakes import FakeClassifier, FakeIndex, RecordingNotifier, make_account  # noqa: E402


@pytest.fixture
def account():
    return make_account()


@pytest.fixture
def index():
    return FakeIndex()


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def notifier():
    return RecordingNotifier()
