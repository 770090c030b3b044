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

"""Running the ingress controller under test against the environment."""

from __future__ import annotations

import datetime
import shutil
import tempfile
import threading
from dataclasses import dataclass
from datetime import timezone
from pathlib import Path

import requests
import sh
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from rich.panel import Panel

from testenv_manager import console, logger
from testenv_manager.constants import (
    ADMISSION_WEBHOOK_LISTEN_PORT,
    CONTROLLER_HEALTH_DELAY_SECONDS,
    CONTROLLER_HEALTH_MAX_ATTEMPTS,
    CONTROLLER_HEALTH_PORT,
    CONTROLLER_LOG_LEVEL,
    INGRESS_CLASS,
    KONG_NAMESPACE,
    REQUEST_TIMEOUT_SECONDS,
    WEBHOOK_CERT_COMMON_NAME,
    WEBHOOK_CERT_VALIDITY_DAYS,
)
from testenv_manager.errors import UnrecoverableSetupFailure
from testenv_manager.retry import RetryPolicy


@dataclass(frozen=True)
class WebhookCertificate:
    """PEM files for the admission webhook server."""

    directory: Path
    cert_path: Path
    key_path: Path

    def remove(self) -> None:
        shutil.rmtree(self.directory, ignore_errors=True)


@dataclass(frozen=True)
class ControllerConnection:
    """Where the controller finds the cluster and the gateway admin API.

    Attributes:
        kubeconfig: Path to the cluster kubeconfig.
        admin_url: Gateway admin API URL.
        admin_token: Gateway admin API token.
        publish_service: ``<namespace>/<name>`` of the proxy service.
    """

    kubeconfig: Path
    admin_url: str
    admin_token: str
    publish_service: str


def health_probe_address() -> str:
    return f"127.0.0.1:{CONTROLLER_HEALTH_PORT}"


def standard_controller_args(
    feature_gates: str,
    cert: WebhookCertificate,
    election_namespace: str = KONG_NAMESPACE,
) -> list[str]:
    """Fixed flags every test controller run uses.

    Args:
        feature_gates: Value for ``--feature-gates``.
        cert: Admission webhook certificate files.
        election_namespace: Namespace for leader election, the Kong add-on's.

    Returns:
        Ordered list of flags.
    """
    return [
        f"--ingress-class={INGRESS_CLASS}",
        f"--admission-webhook-cert={cert.cert_path.read_text()}",
        f"--admission-webhook-key={cert.key_path.read_text()}",
        f"--admission-webhook-listen=0.0.0.0:{ADMISSION_WEBHOOK_LISTEN_PORT}",
        "--profiling",
        "--dump-config",
        f"--log-level={CONTROLLER_LOG_LEVEL}",
        "--anonymous-reports=false",
        f"--feature-gates={feature_gates}",
        f"--election-namespace={election_namespace}",
    ]


def connection_args(connection: ControllerConnection) -> list[str]:
    return [
        f"--kubeconfig={connection.kubeconfig}",
        f"--kong-admin-url={connection.admin_url}",
        f"--kong-admin-token={connection.admin_token}",
        f"--publish-service={connection.publish_service}",
        f"--health-probe-bind-address={health_probe_address()}",
    ]


def build_controller_args(
    feature_gates: str,
    cert: WebhookCertificate,
    connection: ControllerConnection,
    extra_args: list[str],
    election_namespace: str = KONG_NAMESPACE,
) -> list[str]:
    """Standard flags, then connection flags, then caller-supplied extras."""
    return [
        *standard_controller_args(feature_gates, cert, election_namespace),
        *connection_args(connection),
        *extra_args,
    ]


def generate_webhook_certificate(
    common_name: str = WEBHOOK_CERT_COMMON_NAME,
    days: int = WEBHOOK_CERT_VALIDITY_DAYS,
) -> WebhookCertificate:
    """Write a self-signed certificate and key for the admission webhook.

    Args:
        common_name: Subject and SAN DNS name.
        days: Validity period.

    Returns:
        Paths of the generated PEM files inside a new temporary directory.
    """
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    one_day = datetime.timedelta(1, 0, 0)
    now = datetime.datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .not_valid_before(now - one_day)
        .not_valid_after(now + one_day * days)
        .serial_number(x509.random_serial_number())
        .public_key(private_key.public_key())
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(common_name)]), critical=False)
        .sign(private_key=private_key, algorithm=hashes.SHA256())
    )

    directory = Path(tempfile.mkdtemp(prefix="kic-webhook-"))
    cert_path = directory / "tls.crt"
    key_path = directory / "tls.key"
    cert_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    key_path.chmod(0o600)
    return WebhookCertificate(directory, cert_path, key_path)


class ControllerExited(UnrecoverableSetupFailure):
    """The controller process exited before becoming healthy."""


class ControllerProcess:
    """The controller binary running as a background process.

    Args:
        binary: Executable name or path.
        args: Command-line flags.
        log_path: File receiving the combined stdout and stderr.
    """

    def __init__(self, binary: str, args: list[str], log_path: Path) -> None:
        self.binary = binary
        self.args = args
        self.log_path = log_path
        self._process = None

    def start(self) -> None:
        console.print(Panel.fit("Starting controller", style="bold blue"))
        try:
            command = sh.Command(self.binary)
        except sh.CommandNotFound as err:
            raise UnrecoverableSetupFailure(f"controller binary {self.binary!r} not found") from err
        self._process = command(
            *self.args,
            _bg=True,
            _bg_exc=False,
            _out=str(self.log_path),
            _err_to_out=True,
        )
        console.print(f"[yellow]\u2139\ufe0f  controller started (pid {self._process.pid}), logs in {self.log_path}[/yellow]")

    def is_alive(self) -> bool:
        return self._process is not None and self._process.is_alive()

    def stop(self) -> None:
        """Terminate the controller if it is still running."""
        if not self.is_alive():
            return
        try:
            self._process.terminate()
            self._process.wait()
        except sh.ErrorReturnCode:
            logger.debug("controller exited with a non-zero code after terminate")
        except sh.SignalException:
            logger.debug("controller stopped by signal")
        console.print("[green]  \u2713 controller stopped[/green]")


def check_controller_health(process: ControllerProcess, timeout: float = REQUEST_TIMEOUT_SECONDS) -> None:
    """Single health check against the controller's ``/healthz`` endpoint.

    Raises:
        ControllerExited: If the process is no longer running.
        requests.RequestException: If the endpoint is not healthy yet.
    """
    if not process.is_alive():
        raise ControllerExited(f"controller process exited early, see {process.log_path}")
    resp = requests.get(f"http://{health_probe_address()}/healthz", timeout=timeout)
    resp.raise_for_status()


def wait_for_controller(
    process: ControllerProcess,
    policy: RetryPolicy | None = None,
    cancel: threading.Event | None = None,
) -> None:
    """Poll controller health until it responds, the budget runs out, it exits, or *cancel* is set."""
    policy = policy or RetryPolicy(
        max_attempts=CONTROLLER_HEALTH_MAX_ATTEMPTS,
        delay=CONTROLLER_HEALTH_DELAY_SECONDS,
        max_delay=CONTROLLER_HEALTH_DELAY_SECONDS,
        retryable=lambda err: not isinstance(err, ControllerExited),
        cancel=cancel,
    )
    policy.call(lambda: check_controller_health(process))
    console.print("[green]\u2705 controller is healthy[/green]")
