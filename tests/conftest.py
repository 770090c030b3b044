# /*
# Copyright 2026 The Kong Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Shared fixtures for testenv_manager unit tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from testenv_manager.config import TestEnvSettings

_ENV_VARS = (
    "KONG_TEST_CLUSTER",
    "KONG_CLUSTER_VERSION",
    "TEST_KONG_IMAGE",
    "TEST_KONG_TAG",
    "TEST_KONG_HELM_CHART_VERSION",
    "KONG_TEST_ENVIRONMENT_READY_TIMEOUT",
    "KONG_CONTROLLER_FEATURE_GATES",
    "KONG_TEST_CONTROLLER_EXTRA_ARGS",
    "KONG_TEST_CONTROLLER_BINARY",
    "KONG_BRING_MY_OWN_KIC",
    "TEST_RUN_INVALID_CONFIG_CASES",
    "CI",
    "KONG_TEST_KEEP_ENVIRONMENT",
    "KONG_TEST_LOG_LEVEL",
    "KONG_TEST_CONTROLLER_LOG_FILE",
    "GOOGLE_PROJECT",
    "GOOGLE_LOCATION",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the caller's environment out of settings resolution."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def no_sleep() -> list[float]:
    """Record requested delays instead of sleeping."""
    return []


@pytest.fixture
def settings(tmp_path: Path) -> TestEnvSettings:
    return TestEnvSettings(controller_log_file=tmp_path / "manager.log")
