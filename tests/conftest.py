"""Pytest configuration and shared fixtures.

This module provides common fixtures for all tests.
"""

from __future__ import annotations

import pytest

from fakes import API_URL, FakeSettingsStore, FakeVault
from readeck_sync.config.integrations import ReadeckConfig


@pytest.fixture
def vault() -> FakeVault:
    return FakeVault()


@pytest.fixture
def settings_store() -> FakeSettingsStore:
    return FakeSettingsStore({"api_token": "secret-token"})


@pytest.fixture
def readeck_config() -> ReadeckConfig:
    return ReadeckConfig(api_url=API_URL)
