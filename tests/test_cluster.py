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

"""Unit tests for cluster provisioners."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest
import sh

from testenv_manager import cluster as cluster_mod
from testenv_manager.cluster import Cluster, ClusterType, GkeProvisioner, KindProvisioner
from testenv_manager.constants import EXIT_CODE_CLEANUP_FAILED
from testenv_manager.errors import ClusterDestructionUnsupported, SetupCancelled


class _FakeSh:
    """Replaces the ``sh`` module; ``kind create`` fails and sets the cancel event."""

    ErrorReturnCode = sh.ErrorReturnCode

    def __init__(self, cancel: threading.Event) -> None:
        self.cancel = cancel
        self.calls: list[tuple[str, ...]] = []

    def kind(self, *args: str) -> str:
        self.calls.append(args[:2])
        if args[0] == "create":
            self.cancel.set()
            raise sh.ErrorReturnCode_1("kind create cluster", b"", b"interrupted")
        return ""


def test_gke_clusters_cannot_be_destroyed(tmp_path: Path) -> None:
    handle = Cluster("ci", ClusterType.GKE, tmp_path / "ci.kubeconfig")

    with pytest.raises(ClusterDestructionUnsupported) as excinfo:
        GkeProvisioner("project", "us-west1").destroy(handle)
    assert excinfo.value.exit_code == EXIT_CODE_CLEANUP_FAILED


def test_cancelled_kind_create_never_runs_kind(monkeypatch: pytest.MonkeyPatch) -> None:
    cancel = threading.Event()
    cancel.set()
    fake = _FakeSh(cancel)
    monkeypatch.setattr(cluster_mod, "sh", fake)

    with pytest.raises(SetupCancelled):
        KindProvisioner().create("kic-test-1", cancel=cancel)
    assert fake.calls == []


def test_kind_create_stops_retrying_once_cancelled(monkeypatch: pytest.MonkeyPatch) -> None:
    cancel = threading.Event()
    fake = _FakeSh(cancel)
    monkeypatch.setattr(cluster_mod, "sh", fake)

    with pytest.raises(SetupCancelled):
        KindProvisioner().create("kic-test-1", cancel=cancel)
    assert fake.calls == [("delete", "cluster"), ("create", "cluster")]
