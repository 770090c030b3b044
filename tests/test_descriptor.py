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

"""Unit tests for cluster source resolution."""

from __future__ import annotations

import pytest
from packaging.version import Version

from testenv_manager.cluster import ClusterType, GkeProvisioner, KindProvisioner
from testenv_manager.constants import (
    EXIT_CODE_CANT_USE_EXISTING_CLUSTER,
    EXIT_CODE_ENV_SETUP_FAILED,
    EXIT_CODE_INCOMPATIBLE_OPTIONS,
)
from testenv_manager.descriptor import (
    EphemeralCluster,
    ExistingCluster,
    parse_cluster_version,
    parse_existing_cluster,
    resolve_cluster_source,
)
from testenv_manager.errors import (
    IncompatibleOptions,
    InvalidVersionFormat,
    MalformedClusterDescriptor,
    UnsupportedClusterType,
)


@pytest.mark.parametrize("descriptor", ["kind", "kind:a:b", ":test-cluster", "kind:", ":"])
def test_malformed_descriptor_is_rejected(descriptor: str) -> None:
    with pytest.raises(MalformedClusterDescriptor) as excinfo:
        resolve_cluster_source(descriptor, None)
    assert excinfo.value.exit_code == EXIT_CODE_CANT_USE_EXISTING_CLUSTER
    assert "<TYPE>:<NAME>" in str(excinfo.value)


@pytest.mark.parametrize("descriptor", ["kind:test-cluster", "not-even-close"])
def test_descriptor_with_version_is_incompatible(descriptor: str) -> None:
    with pytest.raises(IncompatibleOptions) as excinfo:
        resolve_cluster_source(descriptor, "1.30.0")
    assert excinfo.value.exit_code == EXIT_CODE_INCOMPATIBLE_OPTIONS


def test_unknown_cluster_type() -> None:
    with pytest.raises(UnsupportedClusterType) as excinfo:
        parse_existing_cluster("eks:test-cluster")
    assert excinfo.value.cluster_type == "eks"
    assert excinfo.value.exit_code == EXIT_CODE_CANT_USE_EXISTING_CLUSTER


def test_existing_kind_cluster_binds_kind_provisioner() -> None:
    source = resolve_cluster_source("kind:test-cluster", None)

    assert source.is_existing
    assert source.descriptor == ExistingCluster(ClusterType.KIND, "test-cluster")
    assert isinstance(source.provisioner, KindProvisioner)


def test_existing_gke_cluster_carries_project() -> None:
    source = resolve_cluster_source(
        "gke:ci-cluster", None, google_project="proj", google_location="us-central1-a",
    )

    assert isinstance(source.provisioner, GkeProvisioner)
    assert source.provisioner.project == "proj"
    assert source.provisioner.location == "us-central1-a"


def test_no_descriptor_creates_ephemeral_kind_cluster() -> None:
    source = resolve_cluster_source(None, None)

    assert not source.is_existing
    assert isinstance(source.descriptor, EphemeralCluster)
    assert source.descriptor.cluster_type is ClusterType.KIND
    assert source.descriptor.version is None
    assert source.descriptor.name.startswith("kic-test-")
    assert isinstance(source.provisioner, KindProvisioner)


def test_ephemeral_cluster_with_version() -> None:
    source = resolve_cluster_source(None, "v1.29.4")

    assert source.descriptor.version == Version("1.29.4")


@pytest.mark.parametrize("raw", ["1.30.0", "v1.30.0"])
def test_parse_cluster_version(raw: str) -> None:
    assert parse_cluster_version(raw) == Version("1.30.0")


@pytest.mark.parametrize("raw", ["1.30", "latest", "1.30.0-rc.1", "1.30.0.1", "1.30.0+local", ""])
def test_invalid_cluster_version(raw: str) -> None:
    with pytest.raises(InvalidVersionFormat) as excinfo:
        parse_cluster_version(raw)
    assert excinfo.value.exit_code == EXIT_CODE_ENV_SETUP_FAILED


def test_every_cluster_type_has_capabilities() -> None:
    assert ClusterType.KIND.needs_load_balancer
    assert ClusterType.KIND.supports_ephemeral
    assert not ClusterType.GKE.needs_load_balancer
    assert not ClusterType.GKE.supports_ephemeral
