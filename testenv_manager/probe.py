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

"""Gateway data-plane compatibility probing through the admin API."""

from __future__ import annotations

import re
import threading
from collections.abc import Callable

import requests
from packaging.version import Version

from testenv_manager import console
from testenv_manager.constants import (
    ADMIN_TOKEN_HEADER,
    GATEWAY_VERSION_PROBE_DELAY_SECONDS,
    GATEWAY_VERSION_PROBE_MAX_ATTEMPTS,
    GATEWAY_VERSION_PROBE_MAX_DELAY_SECONDS,
    MINIMAL_SUPPORTED_GATEWAY_VERSION,
    REQUEST_TIMEOUT_SECONDS,
)
from testenv_manager.errors import DataPlaneIncompatible, TransientProbeFailure
from testenv_manager.retry import RetryPolicy

# Enterprise builds report four components (3.4.3.4) or suffixes (3.6.0-enterprise).
_GATEWAY_VERSION_RE = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)")


def parse_gateway_version(raw: str) -> Version:
    """Extract the MAJOR.MINOR.PATCH part of a gateway version string.

    Args:
        raw: Version as reported by the admin API.

    Returns:
        Parsed version.

    Raises:
        TransientProbeFailure: If no semantic version can be extracted.
    """
    match = _GATEWAY_VERSION_RE.match(raw.strip())
    if not match:
        raise TransientProbeFailure(f"unparseable Kong Gateway version {raw!r}")
    return Version(".".join(match.groups()))


def fetch_gateway_version(admin_url: str, token: str, timeout: float = REQUEST_TIMEOUT_SECONDS) -> str:
    """Read the gateway version from the admin API root endpoint.

    Args:
        admin_url: Base URL of the gateway admin API.
        token: Admin API token sent in the ``Kong-Admin-Token`` header.
        timeout: Per-request timeout in seconds.

    Returns:
        The raw version string.

    Raises:
        TransientProbeFailure: On connection errors, non-200 responses, or
            responses without a version.
    """
    try:
        resp = requests.get(f"{admin_url.rstrip('/')}/", headers={ADMIN_TOKEN_HEADER: token}, timeout=timeout)
    except requests.RequestException as err:
        raise TransientProbeFailure(f"failed to reach Kong admin API at {admin_url}: {err}") from err
    if resp.status_code != 200:
        raise TransientProbeFailure(
            f"Kong admin API at {admin_url} responded with status {resp.status_code}",
            details={"body": resp.text[:200]},
        )
    try:
        version = resp.json().get("version")
    except ValueError as err:
        raise TransientProbeFailure(f"Kong admin API at {admin_url} returned invalid JSON") from err
    if not version:
        raise TransientProbeFailure(f"Kong admin API at {admin_url} did not report a version")
    return str(version)


def validate_minimal_supported_version(
    admin_url: str,
    token: str,
    minimum: str = MINIMAL_SUPPORTED_GATEWAY_VERSION,
    timeout: float = REQUEST_TIMEOUT_SECONDS,
) -> str:
    """Fetch the gateway version and check it against *minimum*.

    Returns:
        The raw version string.

    Raises:
        DataPlaneIncompatible: If the gateway is older than *minimum*.
        TransientProbeFailure: If the version could not be read.
    """
    raw = fetch_gateway_version(admin_url, token, timeout)
    if parse_gateway_version(raw) < Version(minimum):
        raise DataPlaneIncompatible(raw, minimum)
    return raw


def _is_retryable(err: BaseException) -> bool:
    return not isinstance(err, DataPlaneIncompatible)


def _report_attempt(max_attempts: int) -> Callable[[int, BaseException], None]:
    def _report(attempt: int, err: BaseException) -> None:
        console.print(
            f"[yellow]\u26a0\ufe0f  try to get Kong Gateway version attempt {attempt}/{max_attempts} - error: {err}[/yellow]"
        )
    return _report


class CompatibilityProber:
    """Polls the gateway admin API until a supported version is confirmed.

    Args:
        admin_url: Base URL of the gateway admin API.
        token: Admin API token.
        policy: Retry policy; defaults to 10 attempts with exponential delay,
            retrying everything except DataPlaneIncompatible.
        check: Single-attempt check, ``(admin_url, token) -> version``.
        cancel: Parent cancellation signal for the default policy.
    """

    def __init__(
        self,
        admin_url: str,
        token: str,
        policy: RetryPolicy | None = None,
        check: Callable[[str, str], str] = validate_minimal_supported_version,
        cancel: threading.Event | None = None,
    ) -> None:
        self.admin_url = admin_url
        self.token = token
        self.policy = policy or RetryPolicy(
            max_attempts=GATEWAY_VERSION_PROBE_MAX_ATTEMPTS,
            delay=GATEWAY_VERSION_PROBE_DELAY_SECONDS,
            max_delay=GATEWAY_VERSION_PROBE_MAX_DELAY_SECONDS,
            retryable=_is_retryable,
            on_retry=_report_attempt(GATEWAY_VERSION_PROBE_MAX_ATTEMPTS),
            cancel=cancel,
        )
        self._check = check

    def probe(self) -> str:
        """Return the confirmed gateway version.

        Raises:
            DataPlaneIncompatible: Immediately, if the gateway is too old.
            SetupCancelled: If cancelled between attempts.
            TestEnvError: The last attempt's error once the budget is spent.
        """
        version = self.policy.call(lambda: self._check(self.admin_url, self.token))
        console.print(f"[green]\u2705 using Kong instance (version: {version!r}) reachable at {self.admin_url}[/green]")
        return version
