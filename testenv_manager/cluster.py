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

"""Cluster handles and kind/GKE provisioning strategies."""

from __future__ import annotations

import os
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path

import sh
from kubernetes import client, config
from packaging.version import Version
from rich.panel import Panel
from tenacity import retry, stop_after_attempt, stop_when_event_set, wait_fixed

from testenv_manager import console, logger
from testenv_manager.constants import (
    GKE_CONTEXT_TEMPLATE,
    KIND_CREATE_MAX_RETRIES,
    KIND_CREATE_RETRY_WAIT_SECONDS,
    KIND_CREATE_TIMEOUT,
    dep_value,
)
from testenv_manager.errors import (
    ClusterCreationFailed,
    ClusterDestructionUnsupported,
    ClusterUnavailable,
    SetupCancelled,
)


class ClusterType(str, Enum):
    """Cluster kinds the test environment can run on."""

    KIND = "kind"
    GKE = "gke"

    @property
    def needs_load_balancer(self) -> bool:
        """Whether LoadBalancer services need an in-cluster implementation."""
        return self is ClusterType.KIND

    @property
    def supports_ephemeral(self) -> bool:
        """Whether clusters of this type can be created for a single run."""
        return self is ClusterType.KIND


# ============================================================================
# Cluster handle
# ============================================================================

class Cluster:
    """Live handle to a Kubernetes cluster.

    Every tool talks to the cluster through a kubeconfig file owned by this
    handle, so the user's default kubeconfig is never modified.

    Attributes:
        name: Cluster name.
        cluster_type: Kind of cluster.
        kubeconfig: Path to the kubeconfig file for this cluster.
        context: kubeconfig context, or None for the file's current context.
        created: Whether this run created the cluster.
    """

    def __init__(
        self,
        name: str,
        cluster_type: ClusterType,
        kubeconfig: Path,
        context: str | None = None,
        created: bool = False,
    ) -> None:
        self.name = name
        self.cluster_type = cluster_type
        self.kubeconfig = kubeconfig
        self.context = context
        self.created = created
        self._api_client: client.ApiClient | None = None

    def __repr__(self) -> str:
        return f"Cluster(name={self.name!r}, type={self.cluster_type.value!r}, created={self.created})"

    def client(self) -> client.ApiClient:
        """Return the (cached) Kubernetes API client for this cluster."""
        if self._api_client is None:
            self._api_client = config.new_client_from_config(
                config_file=str(self.kubeconfig), context=self.context,
            )
        return self._api_client

    def core_v1(self) -> client.CoreV1Api:
        return client.CoreV1Api(self.client())

    def apps_v1(self) -> client.AppsV1Api:
        return client.AppsV1Api(self.client())

    def networking_v1(self) -> client.NetworkingV1Api:
        return client.NetworkingV1Api(self.client())

    def custom_objects(self) -> client.CustomObjectsApi:
        return client.CustomObjectsApi(self.client())

    def version(self) -> str:
        """Return the API server git version (e.g. ``v1.30.0``)."""
        return client.VersionApi(self.client()).get_code().git_version

    def helm_args(self) -> list[str]:
        """Return helm flags targeting this cluster."""
        args = ["--kubeconfig", str(self.kubeconfig)]
        if self.context:
            args += ["--kube-context", self.context]
        return args

    def is_ready(self) -> bool:
        """Return True when every node reports the Ready condition."""
        nodes = self.core_v1().list_node().items
        if not nodes:
            return False
        for node in nodes:
            conditions = node.status.conditions or []
            if not any(c.type == "Ready" and c.status == "True" for c in conditions):
                return False
        return True

    def close(self) -> None:
        """Release the API client and remove a temporary kubeconfig."""
        if self._api_client is not None:
            self._api_client.close()
            self._api_client = None
        self.kubeconfig.unlink(missing_ok=True)


def deployment_available(cluster: Cluster, name: str, namespace: str) -> bool:
    """Return True when *name* has every desired replica available.

    Args:
        cluster: Cluster to query.
        name: Deployment name.
        namespace: Deployment namespace.
    """
    deployment = cluster.apps_v1().read_namespaced_deployment(name, namespace)
    desired = deployment.spec.replicas or 0
    available = deployment.status.available_replicas or 0
    return desired > 0 and available >= desired


def _temp_kubeconfig(name: str) -> Path:
    fd, path = tempfile.mkstemp(prefix=f"{name}-", suffix=".kubeconfig")
    os.close(fd)
    kubeconfig = Path(path)
    kubeconfig.chmod(0o600)
    return kubeconfig


# ============================================================================
# Provisioning strategies
# ============================================================================

class ClusterProvisioner(ABC):
    """Strategy for attaching to, creating, and destroying clusters of one type."""

    cluster_type: ClusterType

    @abstractmethod
    def attach(self, name: str) -> Cluster:
        """Return a handle to an existing cluster.

        Raises:
            ClusterUnavailable: If the cluster cannot be used.
        """

    def create(
        self, name: str, version: Version | None = None, cancel: threading.Event | None = None,
    ) -> Cluster:
        """Create a new cluster for this run.

        Raises:
            ClusterCreationFailed: If the cluster cannot be created.
            SetupCancelled: If *cancel* is set before creation succeeds.
        """
        raise ClusterCreationFailed(f"{self.cluster_type.value} clusters cannot be created by the test environment")

    def destroy(self, cluster: Cluster) -> None:
        """Delete a cluster created by :meth:`create`.

        Raises:
            ClusterDestructionUnsupported: If this cluster type is never created.
        """
        raise ClusterDestructionUnsupported(
            f"{self.cluster_type.value} clusters cannot be destroyed by the test environment"
        )


class KindProvisioner(ClusterProvisioner):
    """Kubernetes in Docker clusters."""

    cluster_type = ClusterType.KIND

    def attach(self, name: str) -> Cluster:
        try:
            existing = str(sh.kind("get", "clusters")).split()
        except sh.ErrorReturnCode as err:
            raise ClusterUnavailable(f"failed to list kind clusters: {err.stderr.decode().strip()}") from err
        if name not in existing:
            raise ClusterUnavailable(f"kind cluster {name!r} not found", details={"available": ",".join(existing)})

        kubeconfig = _temp_kubeconfig(name)
        try:
            sh.kind("export", "kubeconfig", "--name", name, "--kubeconfig", str(kubeconfig))
        except sh.ErrorReturnCode as err:
            kubeconfig.unlink(missing_ok=True)
            raise ClusterUnavailable(f"failed to export kubeconfig for kind cluster {name!r}") from err
        return Cluster(name, self.cluster_type, kubeconfig, context=f"kind-{name}")

    def create(
        self, name: str, version: Version | None = None, cancel: threading.Event | None = None,
    ) -> Cluster:
        if cancel is not None and cancel.is_set():
            raise SetupCancelled(f"cancelled before creating kind cluster {name!r}")
        console.print(Panel.fit(f"Creating kind cluster {name}", style="bold blue"))
        kubeconfig = _temp_kubeconfig(name)
        args = ["create", "cluster", "--name", name, "--kubeconfig", str(kubeconfig), "--wait", KIND_CREATE_TIMEOUT]
        if version is not None:
            node_image = dep_value("kind", "node_image", default="kindest/node")
            console.print(f"[yellow]\u2139\ufe0f  Using Kubernetes version {version}[/yellow]")
            args += ["--image", f"{node_image}:v{version}"]

        stop = stop_after_attempt(KIND_CREATE_MAX_RETRIES)
        if cancel is not None:
            stop = stop | stop_when_event_set(cancel)

        @retry(
            stop=stop,
            wait=wait_fixed(KIND_CREATE_RETRY_WAIT_SECONDS),
            sleep=cancel.wait if cancel is not None else time.sleep,
            reraise=True,
        )
        def _attempt() -> None:
            try:
                sh.kind("delete", "cluster", "--name", name, "--kubeconfig", str(kubeconfig))
            except sh.ErrorReturnCode:
                logger.debug("no leftover kind cluster %s to remove", name)
            sh.kind(*args)

        try:
            _attempt()
        except sh.ErrorReturnCode as err:
            kubeconfig.unlink(missing_ok=True)
            if cancel is not None and cancel.is_set():
                raise SetupCancelled(f"cancelled while creating kind cluster {name!r}") from err
            raise ClusterCreationFailed(
                f"failed to create kind cluster {name!r}: {err.stderr.decode().strip()[-500:]}"
            ) from err
        console.print(f"[green]\u2705 Cluster {name} created[/green]")
        return Cluster(name, self.cluster_type, kubeconfig, context=f"kind-{name}", created=True)

    def destroy(self, cluster: Cluster) -> None:
        console.print(f"[yellow]\u2139\ufe0f  Deleting kind cluster '{cluster.name}'...[/yellow]")
        try:
            sh.kind("delete", "cluster", "--name", cluster.name, "--kubeconfig", str(cluster.kubeconfig))
            console.print(f"[green]\u2705 Cluster '{cluster.name}' deleted[/green]")
        except sh.ErrorReturnCode_1:
            console.print(f"[yellow]\u26a0\ufe0f  Cluster '{cluster.name}' not found or already deleted[/yellow]")


class GkeProvisioner(ClusterProvisioner):
    """Existing Google Kubernetes Engine clusters.

    Args:
        project: GCP project holding the cluster.
        location: GCP zone or region of the cluster.
    """

    cluster_type = ClusterType.GKE

    def __init__(self, project: str | None = None, location: str | None = None) -> None:
        self.project = project
        self.location = location

    def attach(self, name: str) -> Cluster:
        if not self.project or not self.location:
            raise ClusterUnavailable(
                "GOOGLE_PROJECT and GOOGLE_LOCATION must be set to use an existing GKE cluster",
            )
        kubeconfig = _temp_kubeconfig(name)
        try:
            sh.gcloud(
                "container", "clusters", "get-credentials", name,
                "--project", self.project,
                "--location", self.location,
                _env={**os.environ, "KUBECONFIG": str(kubeconfig)},
            )
        except sh.ErrorReturnCode as err:
            kubeconfig.unlink(missing_ok=True)
            raise ClusterUnavailable(
                f"failed to get credentials for GKE cluster {name!r}: {err.stderr.decode().strip()}"
            ) from err
        context = GKE_CONTEXT_TEMPLATE.format(project=self.project, location=self.location, name=name)
        return Cluster(name, self.cluster_type, kubeconfig, context=context)


PROVISIONERS: dict[ClusterType, type[ClusterProvisioner]] = {
    ClusterType.KIND: KindProvisioner,
    ClusterType.GKE: GkeProvisioner,
}

_missing = set(ClusterType) - set(PROVISIONERS)
if _missing:
    raise ImportError(f"no provisioner registered for cluster types: {sorted(t.value for t in _missing)}")
