"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for paragon_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from paragon_mock import FakeGateway, make_access_token  # noqa: E402
from paragon_operator.config import Config  # noqa: E402
from paragon_operator.state import StateStore  # noqa: E402


@pytest.fixture
def access_token() -> str:
    return make_access_token({"email": "operator@example.com", "sub": "user-1"})


@pytest.fixture
def config(tmp_path: Path, access_token: str) -> Config:
    return Config(
        access_token=access_token,
        spec_file=tmp_path / "resources.yaml",
        state_file=tmp_path / "state" / "state.json",
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def store(config: Config) -> StateStore:
    return StateStore(config.state_file)
