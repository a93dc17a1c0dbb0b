"""Shared pytest fixtures for the message logger infrastructure tests.

Region validation queries EC2 through boto3, so the lookup is replaced with a fixed
list of regions before any configuration object is built.
"""

import os
from unittest import mock

import pytest

# Set AWS environment variables before importing boto3-dependent modules
os.environ["AWS_DEFAULT_REGION"] = "eu-north-1"
os.environ["AWS_REGION"] = "eu-north-1"
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
# pragma: allowlist secret
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"  # noqa: S105

MOCK_REGIONS = ["eu-north-1", "eu-west-1", "us-east-1", "us-west-2"]

_regions_patcher = mock.patch(
    "msglog_infrastructure.lib.msglog_types.aws_regions", return_value=MOCK_REGIONS
)
_regions_patcher.start()

from msglog_infrastructure.config import MessageLoggerConfig  # noqa: E402
from msglog_infrastructure.declarations import build_declarations  # noqa: E402
from msglog_infrastructure.engine.executor import Executor  # noqa: E402
from msglog_infrastructure.engine.provider import SimulatedProvider  # noqa: E402
from msglog_infrastructure.engine.settings import EngineSettings  # noqa: E402
from msglog_infrastructure.engine.state import StateStore  # noqa: E402

TAGS = {"Application": "message-logger", "Environment": "qa"}


@pytest.fixture
def tags():
    """Return the tags required on every configuration object."""
    return dict(TAGS)


@pytest.fixture
def message_logger_config(tags):
    """Default deployment configuration."""
    return MessageLoggerConfig(tags=tags)


@pytest.fixture
def declarations(message_logger_config):
    return build_declarations(message_logger_config)


@pytest.fixture
def state_store(tmp_path):
    """State store backed by a file in a temporary directory."""
    return StateStore(tmp_path / "state.json")


@pytest.fixture
def provider():
    return SimulatedProvider()


@pytest.fixture
def engine_settings(tmp_path):
    """Settings with retries that do not actually wait."""
    return EngineSettings(
        state_path=tmp_path / "state.json",
        remote_path=tmp_path / "remote.json",
        max_attempts=3,
        backoff_base_seconds=0.5,
        backoff_max_seconds=2,
    )


@pytest.fixture
def sleeps():
    """Records the delays an executor would have slept for."""
    return []


@pytest.fixture
def executor(provider, state_store, engine_settings, sleeps):
    return Executor(provider, state_store, engine_settings, sleep=sleeps.append)
