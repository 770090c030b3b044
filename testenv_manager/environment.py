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

"""Environment specification, building, readiness waiting, and destruction."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass

from rich.panel import Panel

from testenv_manager import console, logger
from testenv_manager.addons import Addon, AddonSpec, KongAddon, KongSpec, MetalLBSpec, addon_for
from testenv_manager.cluster import Cluster, ClusterProvisioner
from testenv_manager.config import TestEnvSettings
from testenv_manager.constants import READINESS_POLL_INTERVAL_SECONDS
from testenv_manager.descriptor import ClusterDescriptor, ClusterSource, EphemeralCluster
from testenv_manager.errors import ReadinessTimeout, SetupCancelled

# ============================================================================
# Specification
# ============================================================================


@dataclass(frozen=True)
class EnvironmentSpec:
    """Everything needed to materialize a test environment.

    Attributes:
        cluster: Where the cluster comes from.
        addons: Add-ons to deploy, in deployment order.
    """

    cluster: ClusterDescriptor
    addons: tuple[AddonSpec, ...]


def build_environment_spec(source: ClusterSource, settings: TestEnvSettings) -> EnvironmentSpec:
    """Compose the environment specification for a resolved cluster source.

    A load balancer add-on is attached when the cluster type has no native
    LoadBalancer support, and the Kong add-on is always attached with the
    pinned chart version.

    Args:
        source: Resolved cluster source.
        settings: Test environment settings with Kong overrides.

    Returns:
        Immutable environment specification.
    """
    addons: list[AddonSpec] = []
    if source.descriptor.cluster_type.needs_load_balancer:
        addons.append(MetalLBSpec())
    addons.append(KongSpec(
        chart_version=settings.kong_helm_chart_version,
        image=settings.kong_image,
        tag=settings.kong_tag,
    ))
    return EnvironmentSpec(cluster=source.descriptor, addons=tuple(addons))


# ============================================================================
# Live environment
# ============================================================================


class Environment:
    """A provisioned cluster and the add-ons deployed on it.

    Attributes:
        cluster: Cluster handle.
        provisioner: Strategy that attached or created the cluster.
        addons: Deployed add-ons, in deployment order.
    """

    def __init__(self, cluster: Cluster, provisioner: ClusterProvisioner) -> None:
        self.cluster = cluster
        self.provisioner = provisioner
        self.addons: list[Addon] = []

    @property
    def name(self) -> str:
        return self.cluster.name

    def kong(self) -> KongAddon:
        """Return the deployed Kong add-on."""
        for addon in self.addons:
            if isinstance(addon, KongAddon):
                return addon
        raise LookupError("Kong add-on is not deployed in this environment")

    def proxy_url(self) -> str:
        return self.kong().proxy_url(self.cluster)

    def proxy_admin_url(self) -> str:
        return self.kong().proxy_admin_url(self.cluster)

    def proxy_udp_url(self) -> str:
        return self.kong().proxy_udp_url(self.cluster)

    def readiness_checks(self) -> dict[str, Callable[[], bool]]:
        """Return one readiness check per constituent, keyed by name."""
        checks: dict[str, Callable[[], bool]] = {f"cluster/{self.cluster.name}": self.cluster.is_ready}
        for addon in self.addons:
            checks[f"addon/{addon.name}"] = lambda addon=addon: addon.is_ready(self.cluster)
        return checks

    def destroy(self) -> None:
        """Tear the environment down.

        Clusters created for this run are deleted. Attached clusters are
        kept, and only the add-ons deployed by this run are removed.
        """
        if self.cluster.created:
            self.provisioner.destroy(self.cluster)
            return
        for addon in reversed(self.addons):
            addon.delete(self.cluster)

    def close(self) -> None:
        self.cluster.close()


class EnvironmentBuilder:
    """Materializes an EnvironmentSpec.

    Args:
        spec: Environment specification.
        provisioner: Strategy bound to the spec's cluster type.
    """

    def __init__(self, spec: EnvironmentSpec, provisioner: ClusterProvisioner) -> None:
        self.spec = spec
        self.provisioner = provisioner

    def build(
        self,
        on_provisioned: Callable[[Environment], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> Environment:
        """Provision the cluster and deploy every add-on.

        Args:
            on_provisioned: Called with the environment as soon as the cluster
                exists, before any add-on is deployed, so a later failure can
                still be torn down.
            cancel: Parent cancellation signal, checked before each add-on.

        Returns:
            The built environment.

        Raises:
            SetupCancelled: If *cancel* is set before every add-on is deployed.
        """
        descriptor = self.spec.cluster
        console.print(Panel.fit("Building test environment", style="bold blue"))
        if isinstance(descriptor, EphemeralCluster):
            cluster = self.provisioner.create(descriptor.name, descriptor.version, cancel=cancel)
        else:
            cluster = self.provisioner.attach(descriptor.name)

        environment = Environment(cluster, self.provisioner)
        if on_provisioned is not None:
            on_provisioned(environment)

        for addon_spec in self.spec.addons:
            if cancel is not None and cancel.is_set():
                raise SetupCancelled(f"cancelled before deploying {addon_spec.name}")
            addon = addon_for(addon_spec)
            environment.addons.append(addon)
            addon.deploy(cluster)
        return environment


# ============================================================================
# Readiness
# ============================================================================


def _pending_constituents(checks: dict[str, Callable[[], bool]]) -> list[str]:
    """Run checks in parallel and return the names that are not ready."""
    pending: list[str] = []
    with ThreadPoolExecutor(max_workers=len(checks)) as executor:
        futures = {executor.submit(check): name for name, check in checks.items()}
        for future in as_completed(futures):
            name = futures[future]
            try:
                ready = future.result()
            except Exception as err:
                logger.debug("readiness check for %s failed: %s", name, err)
                ready = False
            if not ready:
                pending.append(name)
    return sorted(pending)


def _poll_until_ready(
    checks: dict[str, Callable[[], bool]],
    stop: threading.Event,
    poll_interval: float,
    status: dict[str, list[str]],
) -> bool:
    remaining = dict(checks)
    while not stop.is_set():
        pending = _pending_constituents(remaining)
        status["pending"] = pending
        if not pending:
            return True
        remaining = {name: checks[name] for name in pending}
        stop.wait(poll_interval)
    return False


def wait_for_ready(
    environment: Environment,
    timeout: float,
    cancel: threading.Event | None = None,
    poll_interval: float = READINESS_POLL_INTERVAL_SECONDS,
) -> None:
    """Block until the cluster and every add-on are ready.

    Readiness is polled by a background task; the caller blocks on its
    result until the deadline. A constituent stays ready once observed
    ready.

    Args:
        environment: Environment to wait for.
        timeout: Deadline in seconds.
        cancel: Parent cancellation signal; setting it aborts the wait.
        poll_interval: Seconds between polls.

    Raises:
        ReadinessTimeout: If the deadline elapses or the wait is cancelled
            before every constituent is ready.
    """
    console.print(f"[yellow]\u2139\ufe0f  waiting for cluster {environment.name} and all addons to become ready[/yellow]")
    checks = environment.readiness_checks()
    stop = threading.Event()
    status: dict[str, list[str]] = {"pending": sorted(checks)}
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(_poll_until_ready, checks, stop, poll_interval, status)

    deadline = time.monotonic() + timeout
    try:
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ReadinessTimeout(
                    f"environment {environment.name} not ready after {timeout}s", pending=status["pending"],
                )
            if cancel is not None and cancel.is_set():
                raise ReadinessTimeout(
                    f"cancelled while waiting for environment {environment.name}", pending=status["pending"],
                )
            try:
                if future.result(timeout=min(remaining, 1.0)):
                    break
            except FutureTimeoutError:
                continue
    finally:
        stop.set()
        executor.shutdown(wait=False)
    console.print(f"[green]\u2705 environment {environment.name} is ready[/green]")
