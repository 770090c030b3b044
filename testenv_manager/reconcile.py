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

"""Create-or-reconcile of cluster-scoped resources the controller depends on."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from testenv_manager import console, logger
from testenv_manager.constants import (
    CONTROLLER_NAMESPACE,
    GATEWAY_API_GROUP,
    GATEWAY_API_VERSION,
    GATEWAY_CLASS_PLURAL,
    GATEWAY_CLASS_UNMANAGED_ANNOTATION,
    GATEWAY_CONTROLLER_NAME,
    INGRESS_CLASS,
    INGRESS_CLASS_CONTROLLER,
    UNMANAGED_GATEWAY_CLASS,
)
from testenv_manager.errors import ResourceConflict


class ConflictPolicy(Enum):
    """What to do when a resource with the same name already exists."""

    IGNORE_IF_EXISTS = "ignore"
    REPLACE_IF_EXISTS = "replace"
    FAIL = "fail"


@dataclass(frozen=True)
class ReconciliationTarget:
    """A named resource with create and delete operations.

    Attributes:
        kind: Resource kind, for messages.
        name: Resource name.
        create: Creates the resource; raises ApiException 409 on conflict.
        delete: Deletes the resource.
        policy: Conflict handling.
        exists: Optional read-only existence check; lets IGNORE_IF_EXISTS
            skip the create call entirely.
    """

    kind: str
    name: str
    create: Callable[[], object]
    delete: Callable[[], object]
    policy: ConflictPolicy = ConflictPolicy.FAIL
    exists: Callable[[], bool] | None = None


def _is_conflict(err: ApiException) -> bool:
    return err.status == 409


def reconcile(target: ReconciliationTarget) -> bool:
    """Create *target*, applying its conflict policy if it already exists.

    Args:
        target: Resource to reconcile.

    Returns:
        True if this call created the resource, False if an existing one
        was kept.

    Raises:
        ResourceConflict: If the resource exists and the policy is FAIL.
        ApiException: On any other API error.
    """
    if target.policy is ConflictPolicy.IGNORE_IF_EXISTS and target.exists is not None and target.exists():
        console.print(f"[yellow]\u2139\ufe0f  {target.kind} {target.name} already exists, keeping it[/yellow]")
        return False

    try:
        target.create()
        console.print(f"[green]  \u2713 created {target.kind} {target.name}[/green]")
        return True
    except ApiException as err:
        if not _is_conflict(err):
            raise

    if target.policy is ConflictPolicy.IGNORE_IF_EXISTS:
        console.print(f"[yellow]\u2139\ufe0f  {target.kind} {target.name} already exists, keeping it[/yellow]")
        return False
    if target.policy is ConflictPolicy.FAIL:
        raise ResourceConflict(target.kind, target.name)

    console.print(f"[yellow]\u2139\ufe0f  {target.kind} {target.name} already exists, replacing it[/yellow]")
    target.delete()
    target.create()
    console.print(f"[green]  \u2713 replaced {target.kind} {target.name}[/green]")
    return True


def _read_exists(read: Callable[[], object]) -> bool:
    try:
        read()
    except ApiException as err:
        if err.status == 404:
            return False
        raise
    return True


def delete_ignoring_missing(target: ReconciliationTarget) -> None:
    """Delete *target*, treating an already-missing resource as success."""
    try:
        target.delete()
    except ApiException as err:
        if err.status != 404:
            raise
        logger.debug("%s %s already deleted", target.kind, target.name)


# ============================================================================
# Targets
# ============================================================================

def namespace_target(
    core_v1: client.CoreV1Api,
    name: str = CONTROLLER_NAMESPACE,
    policy: ConflictPolicy = ConflictPolicy.IGNORE_IF_EXISTS,
) -> ReconciliationTarget:
    body = client.V1Namespace(metadata=client.V1ObjectMeta(name=name))
    return ReconciliationTarget(
        kind="namespace",
        name=name,
        create=lambda: core_v1.create_namespace(body),
        delete=lambda: core_v1.delete_namespace(name),
        policy=policy,
        exists=lambda: _read_exists(lambda: core_v1.read_namespace(name)),
    )


def ingress_class_target(
    networking_v1: client.NetworkingV1Api,
    name: str = INGRESS_CLASS,
    policy: ConflictPolicy = ConflictPolicy.REPLACE_IF_EXISTS,
) -> ReconciliationTarget:
    """IngressClass handled by the controller under test.

    A leftover class from an earlier run may point at another controller, so
    the default policy replaces it.
    """
    body = client.V1IngressClass(
        metadata=client.V1ObjectMeta(name=name),
        spec=client.V1IngressClassSpec(controller=INGRESS_CLASS_CONTROLLER),
    )
    return ReconciliationTarget(
        kind="ingressclass",
        name=name,
        create=lambda: networking_v1.create_ingress_class(body),
        delete=lambda: networking_v1.delete_ingress_class(name),
        policy=policy,
    )


def gateway_class_target(
    custom_objects: client.CustomObjectsApi,
    name: str = UNMANAGED_GATEWAY_CLASS,
    policy: ConflictPolicy = ConflictPolicy.IGNORE_IF_EXISTS,
) -> ReconciliationTarget:
    """Unmanaged GatewayClass reconciled by the controller under test."""
    body = {
        "apiVersion": f"{GATEWAY_API_GROUP}/{GATEWAY_API_VERSION}",
        "kind": "GatewayClass",
        "metadata": {
            "name": name,
            "annotations": {GATEWAY_CLASS_UNMANAGED_ANNOTATION: "true"},
        },
        "spec": {"controllerName": GATEWAY_CONTROLLER_NAME},
    }
    return ReconciliationTarget(
        kind="gatewayclass",
        name=name,
        create=lambda: custom_objects.create_cluster_custom_object(
            GATEWAY_API_GROUP, GATEWAY_API_VERSION, GATEWAY_CLASS_PLURAL, body,
        ),
        delete=lambda: custom_objects.delete_cluster_custom_object(
            GATEWAY_API_GROUP, GATEWAY_API_VERSION, GATEWAY_CLASS_PLURAL, name,
        ),
        policy=policy,
    )
