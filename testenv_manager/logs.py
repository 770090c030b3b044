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

"""Logger setup for the harness and the controller under test."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from testenv_manager import console, logger
from testenv_manager.errors import LoggerSetupError

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"


def setup_loggers(level: str, output: Path | None = None) -> Path:
    """Configure harness logging and prepare the controller log file.

    Args:
        level: Python logging level name (e.g. ``INFO``).
        output: File receiving controller output, or None for a new
            temporary file.

    Returns:
        Path of the controller log file.

    Raises:
        LoggerSetupError: If the level is unknown or the file is unusable.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise LoggerSetupError(f"invalid log level {level!r}", stage="logger setup")
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    logger.setLevel(numeric_level)

    try:
        if output is None:
            fd, path = tempfile.mkstemp(prefix="kic-manager-", suffix=".log")
            os.close(fd)
            output = Path(path)
        else:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.touch()
    except OSError as err:
        raise LoggerSetupError(f"can't create controller log file {output}: {err}", stage="logger setup") from err

    console.print(f"[yellow]\u2139\ufe0f  writing manager logs to {output}[/yellow]")
    return output
