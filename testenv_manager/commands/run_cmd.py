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

"""Run command: bootstrap the environment, run pytest, tear down."""

from __future__ import annotations

import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer

from testenv_manager import console
from testenv_manager.config import display_config, resolve_settings
from testenv_manager.errors import IncompatibleOptions
from testenv_manager.orchestrator import pytest_test_phase, run


@contextmanager
def cancel_on_signals(cancel: threading.Event) -> Iterator[None]:
    """Set *cancel* on SIGINT/SIGTERM while the block runs.

    The first signal lets in-flight waits stop and teardown run; a second one
    raises KeyboardInterrupt.
    """

    def _handler(signum: int, _frame: object) -> None:
        name = signal.Signals(signum).name
        if cancel.is_set():
            raise KeyboardInterrupt(name)
        console.print(f"[yellow]\u26a0\ufe0f  received {name}, shutting down...[/yellow]")
        cancel.set()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def run_tests(
    ctx: typer.Context,
    existing_cluster: str | None = typer.Option(
        None, "--existing-cluster", help="Reuse a cluster, <type>:<name> (overrides KONG_TEST_CLUSTER)"),
    cluster_version: str | None = typer.Option(
        None, "--cluster-version", help="Kubernetes version of a new kind cluster (overrides KONG_CLUSTER_VERSION)"),
    kong_image: str | None = typer.Option(None, "--kong-image", help="Kong image repository"),
    kong_tag: str | None = typer.Option(None, "--kong-tag", help="Kong image tag"),
    ready_timeout: float | None = typer.Option(
        None, "--ready-timeout", help="Seconds to wait for the environment to become ready"),
    controller_binary: str | None = typer.Option(
        None, "--controller-binary", help="Controller executable to run against the environment"),
    bring_my_own_controller: bool | None = typer.Option(
        None, "--bring-my-own-controller/--managed-controller", help="Skip running the controller"),
    keep_environment: bool | None = typer.Option(
        None, "--keep/--no-keep", help="Leave the environment running after the tests"),
    log_level: str | None = typer.Option(None, "--log-level", help="Harness log level"),
    controller_log_file: Path | None = typer.Option(
        None, "--controller-log-file", help="File receiving controller output"),
) -> None:
    """Bootstrap the test environment, run pytest with the extra arguments, and tear down.

    Arguments not recognized here are passed to pytest.
    """
    try:
        settings = resolve_settings(
            existing_cluster=existing_cluster,
            cluster_version=cluster_version,
            kong_image=kong_image,
            kong_tag=kong_tag,
            environment_ready_timeout=ready_timeout,
            controller_binary=controller_binary,
            bring_my_own_controller=bring_my_own_controller,
            keep_environment=keep_environment,
            log_level=log_level,
            controller_log_file=controller_log_file,
        )
    except IncompatibleOptions as err:
        console.print(f"[red]\u274c {err.stage}: {err}[/red]")
        raise typer.Exit(err.exit_code) from err

    display_config(settings)

    cancel = threading.Event()
    with cancel_on_signals(cancel):
        code = run(settings, pytest_test_phase(ctx.args), cancel)
    raise typer.Exit(code)
