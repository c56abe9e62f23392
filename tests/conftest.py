"""Test session configuration.

Loads the project `.env` once so tests see the same NATS and Krist settings a
developer runs the bridge with. Individual tests override variables through
`monkeypatch`.
"""

from __future__ import annotations

import pytest
from dotenv import load_dotenv


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    # No error if .env is absent.
    load_dotenv()
