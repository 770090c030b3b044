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

"""MetalLB and Kong add-on installation, readiness, and endpoint discovery."""

from __future__ import annotations

import ipaddress
from abc import ABC, abstractmethod
from dataclasses import dataclass

import docker
import sh
from kubernetes.client.exceptions import ApiException
from rich.panel import Panel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from testenv_manager import console, logger
from testenv_manager.cluster import Cluster, deployment_available
from testenv_manager.constants import (
    DEFAULT_KONG_CHART_VERSION,
    DEFAULT_METALLB_CHART_VERSION,
    KIND_DOCKER_NETWORK,
    KONG_ADMIN_PORT,
    KONG_ADMIN_SERVICE,
    KONG_DEPLOYMENT,
    KONG_NAMESPACE,
    KONG_PROXY_SERVICE,
    KONG_RELEASE,
    KONG_TEST_PASSWORD,
    KONG_UDP_PORT,
    KONG_UDP_PROXY_SERVICE,
    METALLB_API_GROUP,
    METALLB_API_VERSION,
    METALLB_CONFIG_MAX_RETRIES,
    METALLB_CONFIG_POLL_INTERVAL_SECONDS,
    METALLB_CONTROLLER_DEPLOYMENT,
    METALLB_NAMESPACE,
    METALLB_POOL_NAME,
    METALLB_RELEASE,
    dep_value,
)


# ============================================================================
# Add-on specifications
# ============================================================================

@dataclass(frozen=True)
class MetalLBSpec:
    """MetalLB load balancer add-on.

    Attributes:
        chart_version: Pinned MetalLB Helm chart version.
        namespace: Namespace MetalLB is installed into.
        docker_network: Docker network whose subnet hosts the address pool.
    """

    chart_version: str = DEFAULT_METALLB_CHART_VERSION
    namespace: str = METALLB_NAMESPACE
    docker_network: str = KIND_DOCKER_NETWORK

    @property
    def name(self) -> str:
        return "metallb"


@dataclass(frozen=True)
class KongSpec:
    """Kong gateway data-plane add-on.

    Attributes:
        chart_version: Pinned Kong Helm chart version.
        image: Image repository override, or None for the chart default.
        tag: Image tag override, or None for the chart default.
        namespace: Namespace Kong is installed into.
        admin_token: Admin API token used by the tests.
    """

    chart_version: str = DEFAULT_KONG_CHART_VERSION
    image: str | None = None
    tag: str | None = None
    namespace: str = KONG_NAMESPACE
    admin_token: str = KONG_TEST_PASSWORD

    @property
    def name(self) -> str:
        return "kong"


AddonSpec = MetalLBSpec | KongSpec


def collect_kong_helm_overrides(spec: KongSpec) -> list[str]:
    """Build helm ``--set`` values for the Kong chart.

    The controller under test runs outside the cluster, so the chart's own
    ingress controller is disabled and the admin API is exposed.

    Args:
        spec: Kong add-on specification.

    Returns:
        List of ``key=value`` strings for ``helm --set`` arguments.
    """
    overrides: list[tuple[bool, str, str]] = [
        (True, "ingressController.enabled", "false"),
        (True, "proxy.type", "LoadBalancer"),
        (True, "admin.enabled", "true"),
        (True, "admin.type", "LoadBalancer"),
        (True, "admin.http.enabled", "true"),
        (True, "admin.http.servicePort", str(KONG_ADMIN_PORT)),
        (True, "admin.tls.enabled", "false"),
        (True, "udpProxy.enabled", "true"),
        (True, "udpProxy.type", "LoadBalancer"),
        (True, "udpProxy.stream[0].containerPort", str(KONG_UDP_PORT)),
        (True, "udpProxy.stream[0].servicePort", str(KONG_UDP_PORT)),
        (True, "udpProxy.stream[0].protocol", "UDP"),
        (True, "env.password", spec.admin_token),
        (spec.image is not None, "image.repository", str(spec.image)),
        (spec.tag is not None, "image.tag", str(spec.tag)),
    ]
    return [f"{key}={value}" for enabled, key, value in overrides if enabled]


def metallb_address_range(subnet: str) -> tuple[str, str]:
    """Pick a LoadBalancer address range at the top of a docker subnet.

    Args:
        subnet: IPv4 CIDR of the docker network (e.g. ``172.18.0.0/16``).

    Returns:
        Tuple of (first, last) addresses for the MetalLB pool.
    """
    network = ipaddress.ip_network(subnet)
    last = network.broadcast_address - 1
    first = last - 49 if network.num_addresses > 64 else network.network_address + 2
    return str(first), str(last)


def _helm_repo_add(chart_key: str) -> None:
    repo = dep_value(chart_key, "helm_repo")
    url = dep_value(chart_key, "helm_repo_url")
    sh.helm("repo", "add", repo, url, "--force-update")
    sh.helm("repo", "update", repo)


def _load_balancer_address(cluster: Cluster, service: str, namespace: str) -> str | None:
    svc = cluster.core_v1().read_namespaced_service(service, namespace)
    ingress = (svc.status.load_balancer.ingress or []) if svc.status and svc.status.load_balancer else []
    if not ingress:
        return None
    return ingress[0].ip or ingress[0].hostname


# ============================================================================
# Add-ons
# ============================================================================

class Addon(ABC):
    """A component deployed on top of a cluster."""

    name: str

    @abstractmethod
    def deploy(self, cluster: Cluster) -> None:
        """Install the add-on."""

    @abstractmethod
    def is_ready(self, cluster: Cluster) -> bool:
        """Return True once the add-on is serving."""

    @abstractmethod
    def delete(self, cluster: Cluster) -> None:
        """Uninstall the add-on."""

    def _helm_uninstall(self, cluster: Cluster, release: str, namespace: str) -> None:
        try:
            sh.helm("uninstall", release, "-n", namespace, *cluster.helm_args())
            console.print(f"[green]\u2705 Removed {self.name} release[/green]")
        except sh.ErrorReturnCode_1:
            console.print(f"[yellow]   No existing {self.name} release found[/yellow]")


class MetalLBAddon(Addon):
    """Installs MetalLB and an L2 address pool carved from the kind network."""

    def __init__(self, spec: MetalLBSpec) -> None:
        self.spec = spec
        self.name = spec.name

    def _docker_subnet(self) -> str:
        docker_client = docker.from_env()
        try:
            configs = docker_client.networks.get(self.spec.docker_network).attrs["IPAM"]["Config"]
        finally:
            docker_client.close()
        for entry in configs:
            subnet = entry.get("Subnet", "")
            if subnet and ipaddress.ip_network(subnet).version == 4:
                return subnet
        raise RuntimeError(f"docker network {self.spec.docker_network!r} has no IPv4 subnet")

    @retry(
        stop=stop_after_attempt(METALLB_CONFIG_MAX_RETRIES),
        wait=wait_fixed(METALLB_CONFIG_POLL_INTERVAL_SECONDS),
        retry=retry_if_exception_type(ApiException),
        reraise=True,
    )
    def _apply_pool(self, cluster: Cluster, first: str, last: str) -> None:
        """Create the address pool, retrying while the MetalLB webhook starts."""
        api = cluster.custom_objects()
        pool = {
            "apiVersion": f"{METALLB_API_GROUP}/{METALLB_API_VERSION}",
            "kind": "IPAddressPool",
            "metadata": {"name": METALLB_POOL_NAME, "namespace": self.spec.namespace},
            "spec": {"addresses": [f"{first}-{last}"]},
        }
        advertisement = {
            "apiVersion": f"{METALLB_API_GROUP}/{METALLB_API_VERSION}",
            "kind": "L2Advertisement",
            "metadata": {"name": METALLB_POOL_NAME, "namespace": self.spec.namespace},
            "spec": {"ipAddressPools": [METALLB_POOL_NAME]},
        }
        for plural, body in (("ipaddresspools", pool), ("l2advertisements", advertisement)):
            try:
                api.create_namespaced_custom_object(
                    METALLB_API_GROUP, METALLB_API_VERSION, self.spec.namespace, plural, body,
                )
            except ApiException as err:
                if err.status != 409:
                    raise

    def deploy(self, cluster: Cluster) -> None:
        console.print(Panel.fit("Installing MetalLB", style="bold blue"))
        console.print(f"[yellow]Version: {self.spec.chart_version}[/yellow]")
        _helm_repo_add("metallb")
        sh.helm(
            "upgrade", "--install", METALLB_RELEASE, dep_value("metallb", "chart"),
            "--version", self.spec.chart_version,
            "--namespace", self.spec.namespace,
            "--create-namespace",
            "--wait",
            *cluster.helm_args(),
        )
        first, last = metallb_address_range(self._docker_subnet())
        console.print(f"[yellow]\u2139\ufe0f  Configuring MetalLB address pool {first}-{last}...[/yellow]")
        self._apply_pool(cluster, first, last)
        console.print("[green]\u2705 MetalLB installed[/green]")

    def is_ready(self, cluster: Cluster) -> bool:
        return deployment_available(cluster, METALLB_CONTROLLER_DEPLOYMENT, self.spec.namespace)

    def delete(self, cluster: Cluster) -> None:
        self._helm_uninstall(cluster, METALLB_RELEASE, self.spec.namespace)


class KongAddon(Addon):
    """Installs the Kong gateway with its admin API exposed for the controller."""

    def __init__(self, spec: KongSpec) -> None:
        self.spec = spec
        self.name = spec.name

    @property
    def namespace(self) -> str:
        return self.spec.namespace

    @property
    def proxy_service(self) -> str:
        return f"{self.spec.namespace}/{KONG_PROXY_SERVICE}"

    def deploy(self, cluster: Cluster) -> None:
        console.print(Panel.fit("Installing Kong", style="bold blue"))
        console.print(f"[yellow]Chart version: {self.spec.chart_version}[/yellow]")
        if self.spec.image and self.spec.tag:
            console.print(f"[yellow]\u2139\ufe0f  custom kong image specified via env: {self.spec.image}:{self.spec.tag}[/yellow]")
        _helm_repo_add("kong")
        set_args = [item for val in collect_kong_helm_overrides(self.spec) for item in ("--set", val)]
        sh.helm(
            "upgrade", "--install", KONG_RELEASE, dep_value("kong", "chart"),
            "--version", self.spec.chart_version,
            "--namespace", self.spec.namespace,
            "--create-namespace",
            *set_args,
            *cluster.helm_args(),
        )
        console.print("[green]\u2705 Kong installed[/green]")

    def is_ready(self, cluster: Cluster) -> bool:
        if not deployment_available(cluster, KONG_DEPLOYMENT, self.spec.namespace):
            return False
        for service in (KONG_PROXY_SERVICE, KONG_ADMIN_SERVICE):
            if _load_balancer_address(cluster, service, self.spec.namespace) is None:
                logger.debug("service %s has no load balancer address yet", service)
                return False
        return True

    def delete(self, cluster: Cluster) -> None:
        self._helm_uninstall(cluster, KONG_RELEASE, self.spec.namespace)

    def _url(self, cluster: Cluster, service: str, scheme: str, port: int | None) -> str:
        address = _load_balancer_address(cluster, service, self.spec.namespace)
        if address is None:
            raise RuntimeError(f"service {self.spec.namespace}/{service} has no load balancer address")
        return f"{scheme}://{address}:{port}" if port else f"{scheme}://{address}"

    def proxy_url(self, cluster: Cluster) -> str:
        return self._url(cluster, KONG_PROXY_SERVICE, "http", None)

    def proxy_admin_url(self, cluster: Cluster) -> str:
        return self._url(cluster, KONG_ADMIN_SERVICE, "http", KONG_ADMIN_PORT)

    def proxy_udp_url(self, cluster: Cluster) -> str:
        return self._url(cluster, KONG_UDP_PROXY_SERVICE, "udp", KONG_UDP_PORT)


def addon_for(spec: AddonSpec) -> Addon:
    """Instantiate the add-on described by *spec*."""
    if isinstance(spec, MetalLBSpec):
        return MetalLBAddon(spec)
    return KongAddon(spec)
