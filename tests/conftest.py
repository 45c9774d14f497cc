import pytest
from descriptor_samples import FailingConsumer, RecordingConsumer


@pytest.fixture
def recorder() -> RecordingConsumer:
    return RecordingConsumer()


@pytest.fixture
def failing() -> FailingConsumer:
    return FailingConsumer()
