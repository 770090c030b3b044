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

"""LIFO registry of compensating actions run during teardown."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from testenv_manager import console, logger


@dataclass(frozen=True)
class CleanupAction:
    """A compensating operation registered during bootstrap.

    Attributes:
        description: Short human-readable label used in teardown output.
        action: Idempotent callable reversing one setup step.
    """

    description: str
    action: Callable[[], None]


@dataclass(frozen=True)
class CleanupFailure:
    """A compensating action that raised during unwind."""

    description: str
    error: Exception


class CleanupStack:
    """Compensating actions executed in reverse registration order.

    Unwinding is best-effort: a failing action is logged and collected, and
    the remaining actions still run. Actions are consumed by ``unwind`` so a
    second call does nothing.
    """

    def __init__(self) -> None:
        self._actions: list[CleanupAction] = []

    def __len__(self) -> int:
        return len(self._actions)

    def register(self, description: str, action: Callable[[], None]) -> None:
        """Push a compensating action onto the stack.

        Args:
            description: Short human-readable label.
            action: Callable reversing one setup step.
        """
        logger.debug("registered cleanup action: %s", description)
        self._actions.append(CleanupAction(description, action))

    def unwind(self) -> list[CleanupFailure]:
        """Run every registered action, most recent first.

        Returns:
            The failures raised by individual actions, in execution order.
        """
        failures: list[CleanupFailure] = []
        while self._actions:
            entry = self._actions.pop()
            console.print(f"[yellow]\u2139\ufe0f  Cleaning up {entry.description}...[/yellow]")
            try:
                entry.action()
            except Exception as err:
                console.print(f"[red]\u2717 failed cleaning up {entry.description}: {err}[/red]")
                logger.debug("cleanup of %s failed", entry.description, exc_info=True)
                failures.append(CleanupFailure(entry.description, err))
        return failures
