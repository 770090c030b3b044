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

"""Cluster source resolution: reuse an existing cluster or create a new one."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Union

from packaging.version import InvalidVersion, Version

from testenv_manager import console
from testenv_manager.cluster import PROVISIONERS, ClusterProvisioner, ClusterType, GkeProvisioner
from testenv_manager.constants import EPHEMERAL_CLUSTER_PREFIX
from testenv_manager.errors import (
    IncompatibleOptions,
    InvalidVersionFormat,
    MalformedClusterDescriptor,
    UnsupportedClusterType,
)


def ephemeral_cluster_name() -> str:
    return f"{EPHEMERAL_CLUSTER_PREFIX}-{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class EphemeralCluster:
    """A cluster created for this run only.

    Attributes:
        cluster_type: Kind of cluster to create.
        version: Kubernetes version to create, or None for the default.
        name: Name given to the new cluster.
    """

    cluster_type: ClusterType = ClusterType.KIND
    version: Version | None = None
    name: str = field(default_factory=ephemeral_cluster_name)


@dataclass(frozen=True)
class ExistingCluster:
    """A pre-existing cluster the environment attaches to."""

    cluster_type: ClusterType
    name: str


ClusterDescriptor = Union[EphemeralCluster, ExistingCluster]


@dataclass(frozen=True)
class ClusterSource:
    """A cluster descriptor bound to the strategy that provisions it."""

    descriptor: ClusterDescriptor
    provisioner: ClusterProvisioner

    @property
    def is_existing(self) -> bool:
        return isinstance(self.descriptor, ExistingCluster)


def parse_cluster_version(raw: str) -> Version:
    """Parse a strict ``MAJOR.MINOR.PATCH`` version, allowing a leading ``v``.

    Raises:
        InvalidVersionFormat: If *raw* is not a three-part release version.
    """
    try:
        version = Version(raw.removeprefix("v"))
    except InvalidVersion as err:
        raise InvalidVersionFormat(raw) from err
    if len(version.release) != 3 or version.is_prerelease or version.local or version.epoch:
        raise InvalidVersionFormat(raw)
    return version


def parse_existing_cluster(descriptor: str) -> ExistingCluster:
    """Parse ``<type>:<name>`` into an ExistingCluster.

    Raises:
        MalformedClusterDescriptor: If the descriptor does not have exactly
            two non-empty fields.
        UnsupportedClusterType: If the type is not a known ClusterType.
    """
    parts = descriptor.split(":")
    if len(parts) != 2 or not all(parts):
        raise MalformedClusterDescriptor(descriptor)
    raw_type, name = parts
    try:
        cluster_type = ClusterType(raw_type)
    except ValueError as err:
        raise UnsupportedClusterType(raw_type) from err
    return ExistingCluster(cluster_type, name)


def bind_provisioner(
    cluster_type: ClusterType,
    google_project: str | None = None,
    google_location: str | None = None,
) -> ClusterProvisioner:
    """Instantiate the provisioning strategy registered for *cluster_type*."""
    provisioner_cls = PROVISIONERS[cluster_type]
    if provisioner_cls is GkeProvisioner:
        return GkeProvisioner(google_project, google_location)
    return provisioner_cls()


def resolve_cluster_source(
    existing_cluster: str | None,
    cluster_version: str | None,
    *,
    google_project: str | None = None,
    google_location: str | None = None,
) -> ClusterSource:
    """Decide whether to attach to an existing cluster or create a new one.

    Args:
        existing_cluster: ``<type>:<name>`` of a cluster to reuse, or None.
        cluster_version: Kubernetes version for a new cluster, or None.
        google_project: GCP project for GKE clusters.
        google_location: GCP zone or region for GKE clusters.

    Returns:
        The resolved ClusterSource.

    Raises:
        IncompatibleOptions: If both an existing cluster and a version are given.
        MalformedClusterDescriptor: If the descriptor is not ``<type>:<name>``.
        UnsupportedClusterType: If the descriptor names an unknown type.
        InvalidVersionFormat: If the version is not a semantic version.
    """
    if existing_cluster:
        if cluster_version:
            raise IncompatibleOptions("can't flag cluster version & provide an existing cluster at the same time")
        descriptor = parse_existing_cluster(existing_cluster)
        console.print(f"[yellow]\u2139\ufe0f  using existing {descriptor.cluster_type.value} cluster {descriptor.name}[/yellow]")
        return ClusterSource(
            descriptor, bind_provisioner(descriptor.cluster_type, google_project, google_location),
        )

    console.print("[yellow]\u2139\ufe0f  no existing cluster found, deploying using Kubernetes In Docker (KIND)[/yellow]")
    version = parse_cluster_version(cluster_version) if cluster_version else None
    if version is not None:
        console.print(f"[yellow]\u2139\ufe0f  build a new KIND cluster with version {version}[/yellow]")
    ephemeral = EphemeralCluster(ClusterType.KIND, version)
    return ClusterSource(ephemeral, bind_provisioner(ephemeral.cluster_type))
