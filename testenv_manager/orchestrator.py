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

"""Orchestration of bootstrap, test phase, teardown, and exit code resolution."""

from __future__ import annotations

import os
import signal
import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import pytest
from rich.panel import Panel

from testenv_manager import console, logger
from testenv_manager.cleanup import CleanupStack
from testenv_manager.config import TestEnvSettings
from testenv_manager.constants import (
    ENV_CLUSTER_NAME,
    ENV_GATEWAY_VERSION,
    ENV_KUBECONFIG,
    ENV_PROXY_ADMIN_URL,
    ENV_PROXY_UDP_URL,
    ENV_PROXY_URL,
    ENV_RUN_INVALID_CONFIG_CASES,
)
from testenv_manager.controller import (
    ControllerConnection,
    ControllerProcess,
    build_controller_args,
    generate_webhook_certificate,
    wait_for_controller,
)
from testenv_manager.descriptor import resolve_cluster_source
from testenv_manager.environment import Environment, EnvironmentBuilder, build_environment_spec, wait_for_ready
from testenv_manager.errors import LoggerSetupError, SetupCancelled, TestEnvError, UnrecoverableSetupFailure
from testenv_manager.logs import setup_loggers
from testenv_manager.probe import CompatibilityProber
from testenv_manager.reconcile import (
    ConflictPolicy,
    delete_ignoring_missing,
    gateway_class_target,
    ingress_class_target,
    namespace_target,
    reconcile,
)

# ============================================================================
# Run context
# ============================================================================


@dataclass
class TestContext:
    """State of one bootstrap/test/teardown run.

    Attributes:
        settings: Resolved settings.
        cancel: Set when the run should stop waiting and tear down.
        controller_log: File receiving controller output.
        cleanup: Compensating actions registered during bootstrap.
        environment: Environment handle, set as soon as the cluster exists.
        proxy_url: Gateway proxy URL.
        proxy_admin_url: Gateway admin API URL.
        proxy_udp_url: Gateway UDP proxy URL.
        gateway_version: Gateway version confirmed by the prober.
        cluster_version: Kubernetes API server version.
        run_invalid_config_cases: Whether invalid configuration tests run.
    """

    __test__ = False

    settings: TestEnvSettings
    cancel: threading.Event = field(default_factory=threading.Event)
    controller_log: Path | None = None
    cleanup: CleanupStack = field(default_factory=CleanupStack)
    environment: Environment | None = None
    proxy_url: str | None = None
    proxy_admin_url: str | None = None
    proxy_udp_url: str | None = None
    gateway_version: str | None = None
    cluster_version: str | None = None
    run_invalid_config_cases: bool = False

    def attach_environment(self, environment: Environment) -> None:
        self.environment = environment


TestPhase = Callable[[TestContext], int]


# ============================================================================
# Exit coordination
# ============================================================================


class RunState(Enum):
    RUNNING = "running"
    TERMINATING = "terminating"


class ExitCoordinator:
    """Resolves the process exit code exactly once per run."""

    def __init__(self) -> None:
        self.state = RunState.RUNNING
        self.exit_code: int | None = None

    def _terminate(self, code: int) -> int:
        if self.state is RunState.TERMINATING:
            raise RuntimeError(f"exit code already resolved to {self.exit_code}")
        self.state = RunState.TERMINATING
        self.exit_code = code
        return code

    def fail(self, err: TestEnvError) -> int:
        """Report a fatal setup error and return its exit code."""
        stage = err.stage or "setup"
        console.print(f"[red]\u274c {stage}: {err}[/red]")
        logger.debug("fatal error during %s", stage, exc_info=err)
        return self._terminate(err.exit_code)

    def complete(self, code: int) -> int:
        """Return the test phase's own exit code."""
        return self._terminate(code)

    def should_destroy(self, ctx: TestContext) -> bool:
        """Whether teardown may destroy the environment."""
        if ctx.settings.ci:
            console.print("[yellow]\u2139\ufe0f  running in ephemeral CI, skipping cluster teardown[/yellow]")
            return False
        if ctx.settings.keep_environment:
            console.print("[yellow]\u2139\ufe0f  keeping the test environment as requested[/yellow]")
            return False
        return True


@contextmanager
def _stage(name: str, cancel: threading.Event | None = None) -> Iterator[None]:
    """Tag errors raised inside the block with the bootstrap stage name.

    Raises SetupCancelled before entering the stage if *cancel* is set.
    """
    if cancel is not None and cancel.is_set():
        raise SetupCancelled(f"cancelled before {name}", stage=name)
    try:
        yield
    except TestEnvError as err:
        if err.stage is None:
            err.stage = name
        raise
    except Exception as err:
        raise UnrecoverableSetupFailure(str(err) or type(err).__name__, stage=name) from err


# ============================================================================
# Bootstrap steps
# ============================================================================


def _collect_urls(ctx: TestContext, environment: Environment) -> None:
    ctx.proxy_url = environment.proxy_url()
    ctx.proxy_admin_url = environment.proxy_admin_url()
    ctx.proxy_udp_url = environment.proxy_udp_url()
    console.print(f"[green]  \u2713 proxy URL: {ctx.proxy_url}[/green]")
    console.print(f"[green]  \u2713 admin URL: {ctx.proxy_admin_url}[/green]")
    console.print(f"[green]  \u2713 UDP proxy URL: {ctx.proxy_udp_url}[/green]")


def _reconcile_resources(ctx: TestContext, environment: Environment) -> None:
    """Create the namespace, gateway class, and ingress class for the controller."""
    console.print(Panel.fit("Reconciling cluster resources", style="bold blue"))
    cluster = environment.cluster

    if not ctx.settings.bring_my_own_controller:
        namespace = namespace_target(cluster.core_v1())
        if reconcile(namespace):
            ctx.cleanup.register(f"namespace {namespace.name}", lambda: delete_ignoring_missing(namespace))

    gateway_class = gateway_class_target(cluster.custom_objects())
    reconcile(gateway_class)
    ctx.cleanup.register(f"gatewayclass {gateway_class.name}", lambda: delete_ignoring_missing(gateway_class))

    ingress_class = ingress_class_target(cluster.networking_v1(), policy=ConflictPolicy.REPLACE_IF_EXISTS)
    reconcile(ingress_class)
    ctx.cleanup.register(f"ingressclass {ingress_class.name}", lambda: delete_ignoring_missing(ingress_class))


def _deploy_controller(ctx: TestContext, environment: Environment) -> None:
    settings = ctx.settings
    kong = environment.kong()

    cert = generate_webhook_certificate()
    ctx.cleanup.register("admission webhook certificate", cert.remove)

    connection = ControllerConnection(
        kubeconfig=environment.cluster.kubeconfig,
        admin_url=ctx.proxy_admin_url or environment.proxy_admin_url(),
        admin_token=kong.spec.admin_token,
        publish_service=kong.proxy_service,
    )
    args = build_controller_args(
        settings.controller_feature_gates,
        cert,
        connection,
        settings.extra_controller_args(),
        election_namespace=kong.namespace,
    )
    process = ControllerProcess(settings.controller_binary, args, ctx.controller_log)
    ctx.cleanup.register("controller process", process.stop)
    process.start()
    wait_for_controller(process, cancel=ctx.cancel)


def bootstrap(ctx: TestContext) -> None:
    """Bring the test environment up, registering cleanup along the way.

    Args:
        ctx: Run context; populated with the environment and its endpoints.

    Raises:
        TestEnvError: Tagged with the failing stage.
    """
    settings = ctx.settings
    console.print(Panel.fit("Bootstrapping test environment", style="bold blue"))

    with _stage("cluster source", ctx.cancel):
        source = resolve_cluster_source(
            settings.existing_cluster,
            settings.cluster_version,
            google_project=settings.google_project,
            google_location=settings.google_location,
        )

    with _stage("environment build", ctx.cancel):
        spec = build_environment_spec(source, settings)
        environment = EnvironmentBuilder(spec, source.provisioner).build(
            on_provisioned=ctx.attach_environment, cancel=ctx.cancel,
        )

    with _stage("environment readiness", ctx.cancel):
        wait_for_ready(environment, settings.environment_ready_timeout, ctx.cancel)

    with _stage("environment endpoints", ctx.cancel):
        _collect_urls(ctx, environment)

    with _stage("gateway compatibility", ctx.cancel):
        prober = CompatibilityProber(ctx.proxy_admin_url, environment.kong().spec.admin_token, cancel=ctx.cancel)
        ctx.gateway_version = prober.probe()

    with _stage("cluster resources", ctx.cancel):
        _reconcile_resources(ctx, environment)

    if settings.bring_my_own_controller:
        console.print("[yellow]\u2139\ufe0f  skipping controller deployment, caller brings its own[/yellow]")
    else:
        with _stage("controller deployment", ctx.cancel):
            _deploy_controller(ctx, environment)

    if settings.run_invalid_config_cases:
        ctx.run_invalid_config_cases = True
        console.print(
            "[yellow]\u26a0\ufe0f  running invalid config cases, "
            "they may break other tests and should be run separately[/yellow]"
        )

    with _stage("cluster version", ctx.cancel):
        ctx.cluster_version = environment.cluster.version()
    console.print(f"[green]\u2705 testing environment is ready KUBERNETES_VERSION=({ctx.cluster_version})[/green]")


def teardown(ctx: TestContext, destroy: bool) -> None:
    """Unwind cleanup actions and, if allowed, destroy the environment.

    Errors are reported and never change the exit code.
    """
    console.print(Panel.fit("Tearing down test environment", style="bold blue"))
    failures = ctx.cleanup.unwind()
    if failures:
        console.print(f"[yellow]\u26a0\ufe0f  {len(failures)} cleanup action(s) failed[/yellow]")

    environment = ctx.environment
    if environment is None:
        return
    try:
        if destroy:
            environment.destroy()
    except Exception as err:
        console.print(f"[red]\u2717 failed destroying environment {environment.name}: {err}[/red]")
        logger.debug("environment destruction failed", exc_info=True)
    finally:
        environment.close()
    if ctx.controller_log is not None:
        console.print(f"[yellow]\u2139\ufe0f  manager logs written to {ctx.controller_log}[/yellow]")


# ============================================================================
# Test phase
# ============================================================================


def export_environment(ctx: TestContext) -> dict[str, str]:
    """Publish the collected environment as ``TEST_ENV_*`` variables."""
    exported = {
        ENV_PROXY_URL: ctx.proxy_url,
        ENV_PROXY_ADMIN_URL: ctx.proxy_admin_url,
        ENV_PROXY_UDP_URL: ctx.proxy_udp_url,
        ENV_GATEWAY_VERSION: ctx.gateway_version,
        ENV_RUN_INVALID_CONFIG_CASES: str(ctx.run_invalid_config_cases).lower(),
    }
    if ctx.environment is not None:
        exported[ENV_CLUSTER_NAME] = ctx.environment.name
        exported[ENV_KUBECONFIG] = str(ctx.environment.cluster.kubeconfig)
    exported = {key: value for key, value in exported.items() if value is not None}
    os.environ.update(exported)
    return exported


@contextmanager
def interrupt_on_signals(cancel: threading.Event) -> Iterator[None]:
    """Turn SIGINT/SIGTERM into KeyboardInterrupt while the block runs.

    pytest stops the session on KeyboardInterrupt and returns its own
    interrupted exit code, so teardown still runs afterwards.
    """

    def _handler(signum: int, _frame: object) -> None:
        cancel.set()
        raise KeyboardInterrupt(signal.Signals(signum).name)

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def pytest_test_phase(args: Sequence[str] = ()) -> TestPhase:
    """Build a test phase that runs pytest with *args* against the environment."""

    def _run(ctx: TestContext) -> int:
        export_environment(ctx)
        console.print(Panel.fit("Running tests", style="bold blue"))
        with interrupt_on_signals(ctx.cancel):
            return int(pytest.main(list(args)))

    return _run


# ============================================================================
# Driver
# ============================================================================


def run(settings: TestEnvSettings, test_phase: TestPhase, cancel: threading.Event | None = None) -> int:
    """Bootstrap, run the test phase, tear down, and resolve the exit code.

    Args:
        settings: Resolved settings.
        test_phase: Called with the context once the environment is ready.
        cancel: Cancellation signal shared with signal handlers.
            Once set, no further bootstrap stage starts and the test phase
            is skipped.

    Returns:
        The process exit code: the error class code on setup failure,
        otherwise the test phase's own code.
    """
    coordinator = ExitCoordinator()
    try:
        controller_log = setup_loggers(settings.log_level, settings.controller_log_file)
    except LoggerSetupError as err:
        return coordinator.fail(err)

    ctx = TestContext(settings=settings, cancel=cancel or threading.Event(), controller_log=controller_log)
    try:
        try:
            bootstrap(ctx)
        except TestEnvError as err:
            return coordinator.fail(err)
        if ctx.cancel.is_set():
            return coordinator.fail(SetupCancelled("cancelled before running tests", stage="test phase"))
        return coordinator.complete(test_phase(ctx))
    finally:
        teardown(ctx, destroy=coordinator.should_destroy(ctx))
