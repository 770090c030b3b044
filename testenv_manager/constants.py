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

"""Constants, pinned dependency loading, and dep_value helper."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml


def load_dependencies() -> dict:
    """Load pinned add-on versions from dependencies.yaml.

    Returns:
        Parsed YAML content as a nested dictionary.
    """
    deps_file = Path(__file__).resolve().parent / "dependencies.yaml"
    with open(deps_file) as f:
        return yaml.safe_load(f)


DEPENDENCIES = load_dependencies()


def dep_value(*keys: str, default: Any = None) -> Any:
    """Safely traverse the DEPENDENCIES dict by key path.

    Args:
        *keys: Sequence of dictionary keys to traverse.
        default: Value to return if any key is missing.

    Returns:
        The value at the nested key path, or *default* if not found.
    """
    node = DEPENDENCIES
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


# -- Process exit codes --
EXIT_CODE_INCOMPATIBLE_OPTIONS = 100
EXIT_CODE_CANT_USE_EXISTING_CLUSTER = 101
EXIT_CODE_CANT_CREATE_CLUSTER = 102
EXIT_CODE_CLEANUP_FAILED = 103
EXIT_CODE_ENV_SETUP_FAILED = 104
EXIT_CODE_CANT_CREATE_LOGGER = 105

# -- Timeouts (seconds) --
DEFAULT_ENVIRONMENT_READY_TIMEOUT = 600
ENVIRONMENT_CLEANUP_TIMEOUT = 300
READINESS_POLL_INTERVAL_SECONDS = 3
REQUEST_TIMEOUT_SECONDS = 10
KIND_CREATE_TIMEOUT = "180s"

KIND_CREATE_MAX_RETRIES = 3
KIND_CREATE_RETRY_WAIT_SECONDS = 10

# -- Gateway compatibility probe --
GATEWAY_VERSION_PROBE_MAX_ATTEMPTS = 10
GATEWAY_VERSION_PROBE_DELAY_SECONDS = 1.0
GATEWAY_VERSION_PROBE_MAX_DELAY_SECONDS = 10.0
MINIMAL_SUPPORTED_GATEWAY_VERSION = "3.4.1"
ADMIN_TOKEN_HEADER = "Kong-Admin-Token"
KONG_TEST_PASSWORD = "password"

# -- Controller under test --
DEFAULT_CONTROLLER_BINARY = "manager"
DEFAULT_FEATURE_GATES = "GatewayAlpha=true"
CONTROLLER_LOG_LEVEL = "trace"
ADMISSION_WEBHOOK_LISTEN_PORT = 49023
CONTROLLER_HEALTH_PORT = 10254
CONTROLLER_HEALTH_MAX_ATTEMPTS = 30
CONTROLLER_HEALTH_DELAY_SECONDS = 1.0
WEBHOOK_CERT_COMMON_NAME = "kong-validation-webhook.kong-system.svc"
WEBHOOK_CERT_VALIDITY_DAYS = 30

# -- Cluster-scoped resources --
CONTROLLER_NAMESPACE = "kong-system"
INGRESS_CLASS = "kong"
INGRESS_CLASS_CONTROLLER = "ingress-controllers.konghq.com/kong"
UNMANAGED_GATEWAY_CLASS = "kong-unmanaged"
GATEWAY_CONTROLLER_NAME = "konghq.com/kic-gateway-controller"
GATEWAY_CLASS_UNMANAGED_ANNOTATION = "konghq.com/gatewayclass-unmanaged"
GATEWAY_API_GROUP = "gateway.networking.k8s.io"
GATEWAY_API_VERSION = "v1"
GATEWAY_CLASS_PLURAL = "gatewayclasses"

# -- Kong add-on --
KONG_NAMESPACE = "kong"
KONG_RELEASE = "ingress-controller"
KONG_DEPLOYMENT = f"{KONG_RELEASE}-kong"
KONG_PROXY_SERVICE = f"{KONG_RELEASE}-kong-proxy"
KONG_ADMIN_SERVICE = f"{KONG_RELEASE}-kong-admin"
KONG_UDP_PROXY_SERVICE = f"{KONG_RELEASE}-kong-udp-proxy"
KONG_ADMIN_PORT = 8001
KONG_UDP_PORT = 9999

# -- MetalLB add-on --
METALLB_NAMESPACE = "metallb-system"
METALLB_RELEASE = "metallb"
METALLB_CONTROLLER_DEPLOYMENT = "metallb-controller"
METALLB_API_GROUP = "metallb.io"
METALLB_API_VERSION = "v1beta1"
METALLB_POOL_NAME = "testenv-pool"
METALLB_CONFIG_MAX_RETRIES = 12
METALLB_CONFIG_POLL_INTERVAL_SECONDS = 5
KIND_DOCKER_NETWORK = "kind"

# -- GKE --
GKE_CONTEXT_TEMPLATE = "gke_{project}_{location}_{name}"

# -- Exported test environment variables --
ENV_PROXY_URL = "TEST_ENV_PROXY_URL"
ENV_PROXY_ADMIN_URL = "TEST_ENV_PROXY_ADMIN_URL"
ENV_PROXY_UDP_URL = "TEST_ENV_PROXY_UDP_URL"
ENV_CLUSTER_NAME = "TEST_ENV_CLUSTER_NAME"
ENV_KUBECONFIG = "TEST_ENV_KUBECONFIG"
ENV_GATEWAY_VERSION = "TEST_ENV_GATEWAY_VERSION"
ENV_RUN_INVALID_CONFIG_CASES = "TEST_ENV_RUN_INVALID_CONFIG_CASES"

# -- Defaults --
DEFAULT_KONG_CHART_VERSION = dep_value("kong", "chart_version", default="2.38.0")
DEFAULT_METALLB_CHART_VERSION = dep_value("metallb", "chart_version", default="0.14.5")
EPHEMERAL_CLUSTER_PREFIX = "kic-test"
