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

"""Bounded retry policy with a retryable-error predicate and retry observer."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential,
)

from testenv_manager.errors import SetupCancelled

T = TypeVar("T")


def _always(_err: BaseException) -> bool:
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to attempt an operation and which failures to retry.

    The last error is re-raised once the attempt budget is exhausted. A
    failure the predicate rejects is raised immediately. Setting ``cancel``
    stops retrying after the current attempt and raises SetupCancelled.

    Attributes:
        max_attempts: Total number of attempts, including the first one.
        delay: Base inter-attempt delay in seconds, doubled on each retry.
        max_delay: Upper bound for a single inter-attempt delay.
        retryable: Predicate deciding whether an error may be retried.
        on_retry: Observer called with (attempt number, error) for each
            retryable failed attempt.
        sleep: Sleep function used between attempts. Defaults to waiting on
            ``cancel`` when one is given, otherwise ``time.sleep``.
        cancel: Parent cancellation signal.
    """

    max_attempts: int = 10
    delay: float = 1.0
    max_delay: float = 10.0
    retryable: Callable[[BaseException], bool] = _always
    on_retry: Callable[[int, BaseException], None] | None = None
    sleep: Callable[[float], None] | None = None
    cancel: threading.Event | None = None

    def _observe(self, state: RetryCallState) -> None:
        if self.on_retry is not None and state.outcome is not None:
            self.on_retry(state.attempt_number, state.outcome.exception())

    def _cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    def call(self, fn: Callable[[], T]) -> T:
        """Run *fn* under this policy.

        Args:
            fn: Zero-argument operation to attempt.

        Returns:
            The first successful result of *fn*.

        Raises:
            SetupCancelled: If ``cancel`` is set before or between attempts.
            Exception: The terminal error, or the last error once the
                attempt budget is exhausted.
        """
        if self._cancelled():
            raise SetupCancelled("cancelled before the first attempt")

        stop = stop_after_attempt(self.max_attempts)
        sleep = self.sleep or time.sleep
        if self.cancel is not None:
            stop = stop | stop_when_event_set(self.cancel)
            sleep = self.sleep or self.cancel.wait

        retrying = Retrying(
            stop=stop,
            wait=wait_exponential(multiplier=self.delay, max=self.max_delay),
            retry=retry_if_exception(self.retryable),
            after=self._observe,
            sleep=sleep,
            reraise=True,
        )
        try:
            return retrying(fn)
        except Exception as err:
            if self._cancelled():
                raise SetupCancelled(f"cancelled after a failed attempt: {err}") from err
            raise
