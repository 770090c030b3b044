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

"""Configuration settings and config resolution/display."""

from __future__ import annotations

import shlex
from pathlib import Path

from pydantic import AliasChoices, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.panel import Panel

from testenv_manager import console
from testenv_manager.constants import (
    DEFAULT_CONTROLLER_BINARY,
    DEFAULT_ENVIRONMENT_READY_TIMEOUT,
    DEFAULT_FEATURE_GATES,
    DEFAULT_KONG_CHART_VERSION,
)
from testenv_manager.errors import IncompatibleOptions


def _env(name: str, field_name: str) -> AliasChoices:
    return AliasChoices(name, field_name)


# ============================================================================
# Configuration classes
# ============================================================================

class TestEnvSettings(BaseSettings):
    """Test environment configuration, auto-loaded from environment variables.

    Attributes:
        existing_cluster: ``<type>:<name>`` of a cluster to reuse, or None.
        cluster_version: Kubernetes version for a new kind cluster, or None.
        kong_image: Kong image repository override, or None.
        kong_tag: Kong image tag override, or None.
        kong_helm_chart_version: Pinned Kong Helm chart version.
        environment_ready_timeout: Seconds to wait for the environment to be ready.
        controller_feature_gates: Feature gates passed to the controller.
        controller_extra_args: Extra controller arguments (shell syntax).
        controller_binary: Path or name of the controller executable.
        bring_my_own_controller: Whether the caller runs the controller itself.
        run_invalid_config_cases: Whether to run invalid configuration tests.
        ci: Whether running in an ephemeral CI environment.
        keep_environment: Whether to leave the environment running on exit.
        log_level: Python logging level name.
        controller_log_file: File receiving controller output, or None for a temp file.
        google_project: GCP project of an existing GKE cluster.
        google_location: GCP zone or region of an existing GKE cluster.
    """

    __test__ = False

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    existing_cluster: str | None = Field(
        default=None, validation_alias=_env("KONG_TEST_CLUSTER", "existing_cluster"))
    cluster_version: str | None = Field(
        default=None, validation_alias=_env("KONG_CLUSTER_VERSION", "cluster_version"))
    kong_image: str | None = Field(
        default=None, validation_alias=_env("TEST_KONG_IMAGE", "kong_image"))
    kong_tag: str | None = Field(
        default=None, validation_alias=_env("TEST_KONG_TAG", "kong_tag"))
    kong_helm_chart_version: str = Field(
        default=DEFAULT_KONG_CHART_VERSION,
        pattern=r"^\d+\.\d+\.\d+(-[\w.]+)?$",
        validation_alias=_env("TEST_KONG_HELM_CHART_VERSION", "kong_helm_chart_version"),
    )
    environment_ready_timeout: float = Field(
        default=DEFAULT_ENVIRONMENT_READY_TIMEOUT,
        gt=0,
        validation_alias=_env("KONG_TEST_ENVIRONMENT_READY_TIMEOUT", "environment_ready_timeout"),
    )
    controller_feature_gates: str = Field(
        default=DEFAULT_FEATURE_GATES,
        validation_alias=_env("KONG_CONTROLLER_FEATURE_GATES", "controller_feature_gates"),
    )
    controller_extra_args: str = Field(
        default="", validation_alias=_env("KONG_TEST_CONTROLLER_EXTRA_ARGS", "controller_extra_args"))
    controller_binary: str = Field(
        default=DEFAULT_CONTROLLER_BINARY,
        validation_alias=_env("KONG_TEST_CONTROLLER_BINARY", "controller_binary"),
    )
    bring_my_own_controller: bool = Field(
        default=False, validation_alias=_env("KONG_BRING_MY_OWN_KIC", "bring_my_own_controller"))
    run_invalid_config_cases: bool = Field(
        default=False,
        validation_alias=_env("TEST_RUN_INVALID_CONFIG_CASES", "run_invalid_config_cases"),
    )
    ci: bool = Field(default=False, validation_alias=_env("CI", "ci"))
    keep_environment: bool = Field(
        default=False, validation_alias=_env("KONG_TEST_KEEP_ENVIRONMENT", "keep_environment"))
    log_level: str = Field(default="INFO", validation_alias=_env("KONG_TEST_LOG_LEVEL", "log_level"))
    controller_log_file: Path | None = Field(
        default=None, validation_alias=_env("KONG_TEST_CONTROLLER_LOG_FILE", "controller_log_file"))
    google_project: str | None = Field(
        default=None, validation_alias=_env("GOOGLE_PROJECT", "google_project"))
    google_location: str | None = Field(
        default=None, validation_alias=_env("GOOGLE_LOCATION", "google_location"))

    def extra_controller_args(self) -> list[str]:
        """Split the configured extra controller arguments."""
        return shlex.split(self.controller_extra_args)


# ============================================================================
# Config resolution
# ============================================================================

def resolve_settings(**overrides: object) -> TestEnvSettings:
    """Merge CLI overrides, environment variables, and defaults.

    Resolution priority: CLI arguments > environment variables > defaults.
    Overrides whose value is None are ignored.

    Args:
        **overrides: Field name to CLI value mapping.

    Returns:
        Validated settings.

    Raises:
        IncompatibleOptions: If any value fails validation.
    """
    updates = {key: value for key, value in overrides.items() if value is not None}
    try:
        return TestEnvSettings(**updates)
    except ValidationError as err:
        raise IncompatibleOptions(f"invalid test environment configuration: {err}", stage="configuration") from err


# ============================================================================
# Display
# ============================================================================

def display_config(settings: TestEnvSettings) -> None:
    """Print the configuration relevant to this run.

    Args:
        settings: Resolved test environment settings.
    """
    console.print(Panel.fit("Configuration", style="bold blue"))

    console.print("[yellow]Cluster:[/yellow]")
    console.print(f"  existing_cluster : {settings.existing_cluster or '(new kind cluster)'}")
    if settings.cluster_version:
        console.print(f"  cluster_version  : {settings.cluster_version}")

    console.print("[yellow]Kong:[/yellow]")
    console.print(f"  chart_version    : {settings.kong_helm_chart_version}")
    if settings.kong_image and settings.kong_tag:
        console.print(f"  image            : {settings.kong_image}:{settings.kong_tag}")

    console.print("[yellow]Controller:[/yellow]")
    if settings.bring_my_own_controller:
        console.print("  managed by caller")
    else:
        console.print(f"  binary           : {settings.controller_binary}")
        console.print(f"  feature_gates    : {settings.controller_feature_gates}")

    console.print("[yellow]Teardown:[/yellow]")
    console.print(f"  ci               : {settings.ci}")
    console.print(f"  keep_environment : {settings.keep_environment}")
