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

"""Unit tests for resource reconciliation."""

from __future__ import annotations

from typing import Any

import pytest
from kubernetes.client.exceptions import ApiException

from testenv_manager.constants import (
    GATEWAY_CLASS_UNMANAGED_ANNOTATION,
    GATEWAY_CONTROLLER_NAME,
    INGRESS_CLASS_CONTROLLER,
)
from testenv_manager.errors import ResourceConflict
from testenv_manager.reconcile import (
    ConflictPolicy,
    ReconciliationTarget,
    delete_ignoring_missing,
    gateway_class_target,
    ingress_class_target,
    namespace_target,
    reconcile,
)


class _FakeCoreV1:
    def __init__(self, existing: set[str]) -> None:
        self.existing = set(existing)
        self.calls: list[str] = []

    def read_namespace(self, name: str) -> Any:
        self.calls.append("read")
        if name not in self.existing:
            raise ApiException(status=404, reason="Not Found")
        return {"name": name}

    def create_namespace(self, body: Any) -> Any:
        self.calls.append("create")
        if body.metadata.name in self.existing:
            raise ApiException(status=409, reason="AlreadyExists")
        self.existing.add(body.metadata.name)
        return body

    def delete_namespace(self, name: str) -> None:
        self.calls.append("delete")
        self.existing.discard(name)


class _FakeNetworkingV1:
    def __init__(self, existing: set[str]) -> None:
        self.existing = set(existing)
        self.calls: list[str] = []
        self.created: list[Any] = []

    def create_ingress_class(self, body: Any) -> Any:
        self.calls.append("create")
        if body.metadata.name in self.existing:
            raise ApiException(status=409, reason="AlreadyExists")
        self.existing.add(body.metadata.name)
        self.created.append(body)
        return body

    def delete_ingress_class(self, name: str) -> None:
        self.calls.append("delete")
        if name not in self.existing:
            raise ApiException(status=404, reason="Not Found")
        self.existing.discard(name)


class _FakeCustomObjects:
    def __init__(self) -> None:
        self.created: list[tuple[str, str, str, dict]] = []

    def create_cluster_custom_object(self, group: str, version: str, plural: str, body: dict) -> dict:
        self.created.append((group, version, plural, body))
        return body


def test_ingress_class_conflict_is_replaced_once() -> None:
    api = _FakeNetworkingV1(existing={"kong"})

    created = reconcile(ingress_class_target(api))

    assert created
    assert api.calls == ["create", "delete", "create"]
    assert api.calls.count("delete") == 1
    assert api.created[0].spec.controller == INGRESS_CLASS_CONTROLLER


def test_new_ingress_class_is_created_without_delete() -> None:
    api = _FakeNetworkingV1(existing=set())

    assert reconcile(ingress_class_target(api))
    assert api.calls == ["create"]


def test_existing_namespace_is_left_untouched() -> None:
    api = _FakeCoreV1(existing={"kong-system"})

    created = reconcile(namespace_target(api))

    assert not created
    assert "create" not in api.calls
    assert "delete" not in api.calls


def test_missing_namespace_is_created() -> None:
    api = _FakeCoreV1(existing=set())

    assert reconcile(namespace_target(api))
    assert api.calls == ["read", "create"]
    assert "kong-system" in api.existing


def test_fail_policy_raises_conflict() -> None:
    api = _FakeNetworkingV1(existing={"kong"})

    with pytest.raises(ResourceConflict) as excinfo:
        reconcile(ingress_class_target(api, policy=ConflictPolicy.FAIL))
    assert excinfo.value.kind == "ingressclass"
    assert api.calls == ["create"]


def test_other_api_errors_propagate() -> None:
    def _create() -> None:
        raise ApiException(status=403, reason="Forbidden")

    target = ReconciliationTarget("namespace", "kong-system", _create, lambda: None, ConflictPolicy.REPLACE_IF_EXISTS)

    with pytest.raises(ApiException):
        reconcile(target)


def test_gateway_class_is_unmanaged() -> None:
    api = _FakeCustomObjects()

    reconcile(gateway_class_target(api))

    group, version, plural, body = api.created[0]
    assert (group, version, plural) == ("gateway.networking.k8s.io", "v1", "gatewayclasses")
    assert body["metadata"]["annotations"] == {GATEWAY_CLASS_UNMANAGED_ANNOTATION: "true"}
    assert body["spec"]["controllerName"] == GATEWAY_CONTROLLER_NAME


def test_delete_ignores_missing_resource() -> None:
    api = _FakeNetworkingV1(existing=set())

    delete_ignoring_missing(ingress_class_target(api))

    assert api.calls == ["delete"]
