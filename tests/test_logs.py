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

"""Unit tests for logger setup."""

from __future__ import annotations

from pathlib import Path

import pytest

from testenv_manager.constants import EXIT_CODE_CANT_CREATE_LOGGER
from testenv_manager.errors import LoggerSetupError
from testenv_manager.logs import setup_loggers


def test_explicit_log_file_is_created(tmp_path: Path) -> None:
    target = tmp_path / "logs" / "manager.log"

    assert setup_loggers("debug", target) == target
    assert target.exists()


def test_temporary_log_file_when_unset() -> None:
    path = setup_loggers("INFO")
    try:
        assert path.exists()
        assert path.name.startswith("kic-manager-")
    finally:
        path.unlink()


def test_unknown_level_fails() -> None:
    with pytest.raises(LoggerSetupError) as excinfo:
        setup_loggers("chatty")
    assert excinfo.value.exit_code == EXIT_CODE_CANT_CREATE_LOGGER


def test_unwritable_log_file_fails(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")

    with pytest.raises(LoggerSetupError):
        setup_loggers("INFO", blocker / "manager.log")
