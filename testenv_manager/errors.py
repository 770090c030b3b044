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

"""Exception types raised while bootstrapping the test environment.

Every fatal condition is raised as a subclass of TestEnvError and carried
back to the top-level driver, which unwinds the cleanup stack before turning
the error into a process exit code.

Exception Hierarchy:
    TestEnvError (base, environment setup failed)
    ├── LoggerSetupError - Logging could not be configured
    ├── IncompatibleOptions - Mutually exclusive options supplied
    ├── MalformedClusterDescriptor - Existing cluster not in <type>:<name> form
    ├── UnsupportedClusterType - Unknown cluster type in descriptor
    ├── ClusterUnavailable - Existing cluster cannot be attached
    ├── ClusterCreationFailed - Ephemeral cluster could not be created
    ├── InvalidVersionFormat - Cluster version is not a semantic version
    ├── ReadinessTimeout - Environment not ready before the deadline
    ├── DataPlaneIncompatible - Gateway version too old (terminal)
    ├── TransientProbeFailure - Gateway admin probe failed (retryable)
    ├── ResourceConflict - Cluster resource already exists
    ├── SetupCancelled - Shutdown requested while bootstrapping
    ├── ClusterDestructionUnsupported - Cluster type cannot be destroyed
    └── UnrecoverableSetupFailure - Any other setup failure
"""

from __future__ import annotations

from typing import Any

from testenv_manager.constants import (
    EXIT_CODE_CANT_CREATE_CLUSTER,
    EXIT_CODE_CANT_CREATE_LOGGER,
    EXIT_CODE_CANT_USE_EXISTING_CLUSTER,
    EXIT_CODE_CLEANUP_FAILED,
    EXIT_CODE_ENV_SETUP_FAILED,
    EXIT_CODE_INCOMPATIBLE_OPTIONS,
)


class TestEnvError(Exception):
    """Base exception for all test environment setup errors.

    Attributes:
        message: Human-readable error description.
        stage: Name of the bootstrap stage that failed, once known.
        details: Optional dictionary with additional error context.
        exit_code: Process exit code the driver uses for this error class.
    """

    __test__ = False

    exit_code: int = EXIT_CODE_ENV_SETUP_FAILED

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class LoggerSetupError(TestEnvError):
    """Logging could not be configured."""

    exit_code = EXIT_CODE_CANT_CREATE_LOGGER


class IncompatibleOptions(TestEnvError):
    """Options that cannot be combined were supplied together."""

    exit_code = EXIT_CODE_INCOMPATIBLE_OPTIONS


class MalformedClusterDescriptor(TestEnvError):
    """The existing cluster descriptor is not of the form ``<type>:<name>``."""

    exit_code = EXIT_CODE_CANT_USE_EXISTING_CLUSTER

    def __init__(self, descriptor: str) -> None:
        super().__init__(
            f"existing cluster in wrong format ({descriptor}): "
            "format is <TYPE>:<NAME> (e.g. kind:test-cluster)",
            details={"descriptor": descriptor},
        )
        self.descriptor = descriptor


class UnsupportedClusterType(TestEnvError):
    """The existing cluster descriptor names an unknown cluster type."""

    exit_code = EXIT_CODE_CANT_USE_EXISTING_CLUSTER

    def __init__(self, cluster_type: str) -> None:
        super().__init__(f"unknown cluster type: {cluster_type}")
        self.cluster_type = cluster_type


class ClusterUnavailable(TestEnvError):
    """An existing cluster could not be attached."""

    exit_code = EXIT_CODE_CANT_USE_EXISTING_CLUSTER


class ClusterCreationFailed(TestEnvError):
    """An ephemeral cluster could not be created."""

    exit_code = EXIT_CODE_CANT_CREATE_CLUSTER


class InvalidVersionFormat(TestEnvError):
    """The requested cluster version is not a semantic version."""

    def __init__(self, version: str) -> None:
        super().__init__(
            f"invalid cluster version {version!r}: expected MAJOR.MINOR.PATCH",
            details={"version": version},
        )
        self.version = version


class ReadinessTimeout(TestEnvError):
    """The environment did not become ready before the deadline.

    Attributes:
        pending: Names of the constituents that were still not ready.
    """

    def __init__(self, message: str, pending: list[str] | None = None) -> None:
        self.pending = list(pending or [])
        details = {"pending": ",".join(self.pending)} if self.pending else None
        super().__init__(message, details=details)


class DataPlaneIncompatible(TestEnvError):
    """The deployed gateway is older than the minimal supported version.

    Never retried.
    """

    def __init__(self, version: str, minimum: str) -> None:
        super().__init__(
            f"Kong Gateway version {version} is too old, minimal supported version is {minimum}",
            details={"version": version, "minimum": minimum},
        )
        self.version = version
        self.minimum = minimum


class TransientProbeFailure(TestEnvError):
    """The gateway admin endpoint could not be probed yet."""


class ResourceConflict(TestEnvError):
    """A cluster-scoped resource already exists."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"{kind} {name!r} already exists", details={"kind": kind, "name": name})
        self.kind = kind
        self.name = name


class SetupCancelled(TestEnvError):
    """A shutdown was requested before the environment was ready."""


class ClusterDestructionUnsupported(TestEnvError):
    """The cluster type has no destroy operation."""

    exit_code = EXIT_CODE_CLEANUP_FAILED


class UnrecoverableSetupFailure(TestEnvError):
    """Catch-all for setup failures raised by collaborators."""
