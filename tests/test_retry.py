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

"""Unit tests for RetryPolicy."""

from __future__ import annotations

import threading

import pytest

from testenv_manager.errors import SetupCancelled
from testenv_manager.retry import RetryPolicy


class _Flaky:
    """Fails a fixed number of times, then returns a value."""

    def __init__(self, failures: int, exc_type: type[Exception] = ValueError) -> None:
        self.failures = failures
        self.exc_type = exc_type
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc_type(f"attempt {self.calls}")
        return "ok"


def test_succeeds_after_retryable_failures(no_sleep: list[float]) -> None:
    observed: list[int] = []
    flaky = _Flaky(failures=3)
    policy = RetryPolicy(on_retry=lambda attempt, _err: observed.append(attempt), sleep=no_sleep.append)

    assert policy.call(flaky) == "ok"
    assert flaky.calls == 4
    assert observed == [1, 2, 3]
    assert len(no_sleep) == 3


def test_terminal_error_is_not_retried(no_sleep: list[float]) -> None:
    observed: list[int] = []
    flaky = _Flaky(failures=5, exc_type=KeyError)
    policy = RetryPolicy(
        retryable=lambda err: not isinstance(err, KeyError),
        on_retry=lambda attempt, _err: observed.append(attempt),
        sleep=no_sleep.append,
    )

    with pytest.raises(KeyError):
        policy.call(flaky)
    assert flaky.calls == 1
    assert observed == []
    assert no_sleep == []


def test_exhausted_budget_raises_last_error(no_sleep: list[float]) -> None:
    flaky = _Flaky(failures=10)
    policy = RetryPolicy(max_attempts=4, sleep=no_sleep.append)

    with pytest.raises(ValueError, match="attempt 4"):
        policy.call(flaky)
    assert flaky.calls == 4


def test_delay_is_bounded(no_sleep: list[float]) -> None:
    policy = RetryPolicy(max_attempts=6, delay=1.0, max_delay=4.0, sleep=no_sleep.append)

    with pytest.raises(ValueError):
        policy.call(_Flaky(failures=10))
    assert len(no_sleep) == 5
    assert max(no_sleep) <= 4.0


def test_cancel_stops_retrying_after_current_attempt(no_sleep: list[float]) -> None:
    cancel = threading.Event()
    flaky = _Flaky(failures=10)

    def _observe(attempt: int, _err: BaseException) -> None:
        if attempt == 2:
            cancel.set()

    policy = RetryPolicy(on_retry=_observe, sleep=no_sleep.append, cancel=cancel)

    with pytest.raises(SetupCancelled) as excinfo:
        policy.call(flaky)
    assert flaky.calls == 2
    assert isinstance(excinfo.value.__cause__, ValueError)


def test_cancelled_policy_never_attempts(no_sleep: list[float]) -> None:
    cancel = threading.Event()
    cancel.set()
    flaky = _Flaky(failures=0)

    with pytest.raises(SetupCancelled):
        RetryPolicy(sleep=no_sleep.append, cancel=cancel).call(flaky)
    assert flaky.calls == 0


def test_uncancelled_policy_waits_on_event() -> None:
    cancel = threading.Event()
    flaky = _Flaky(failures=2)

    assert RetryPolicy(delay=0.01, max_delay=0.01, cancel=cancel).call(flaky) == "ok"
    assert flaky.calls == 3
