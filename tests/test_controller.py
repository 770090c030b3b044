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

"""Unit tests for controller arguments, certificates, and health waiting."""

from __future__ import annotations

import dataclasses
import threading
from pathlib import Path

import pytest
from cryptography import x509

from testenv_manager import controller
from testenv_manager.controller import (
    ControllerConnection,
    ControllerExited,
    ControllerProcess,
    build_controller_args,
    generate_webhook_certificate,
    wait_for_controller,
)
from testenv_manager.errors import SetupCancelled
from testenv_manager.retry import RetryPolicy


@pytest.fixture
def cert(tmp_path: Path) -> controller.WebhookCertificate:
    cert_path = tmp_path / "tls.crt"
    key_path = tmp_path / "tls.key"
    cert_path.write_text("CERT")
    key_path.write_text("KEY")
    return controller.WebhookCertificate(tmp_path, cert_path, key_path)


@pytest.fixture
def connection() -> ControllerConnection:
    return ControllerConnection(
        kubeconfig=Path("/tmp/kic.kubeconfig"),
        admin_url="http://172.18.0.240:8001",
        admin_token="password",
        publish_service="kong/ingress-controller-kong-proxy",
    )


def test_controller_args_order(cert: controller.WebhookCertificate, connection: ControllerConnection) -> None:
    args = build_controller_args("GatewayAlpha=true", cert, connection, ["--watch-namespace=default", "-v"])

    assert args == [
        "--ingress-class=kong",
        "--admission-webhook-cert=CERT",
        "--admission-webhook-key=KEY",
        "--admission-webhook-listen=0.0.0.0:49023",
        "--profiling",
        "--dump-config",
        "--log-level=trace",
        "--anonymous-reports=false",
        "--feature-gates=GatewayAlpha=true",
        "--election-namespace=kong",
        "--kubeconfig=/tmp/kic.kubeconfig",
        "--kong-admin-url=http://172.18.0.240:8001",
        "--kong-admin-token=password",
        "--publish-service=kong/ingress-controller-kong-proxy",
        "--health-probe-bind-address=127.0.0.1:10254",
        "--watch-namespace=default",
        "-v",
    ]


def test_election_namespace_follows_kong(cert: controller.WebhookCertificate, connection: ControllerConnection) -> None:
    args = build_controller_args("", cert, connection, [], election_namespace="kong-test")

    assert "--election-namespace=kong-test" in args


def test_generated_certificate_is_self_signed() -> None:
    generated = generate_webhook_certificate(common_name="webhook.test.svc", days=1)
    try:
        certificate = x509.load_pem_x509_certificate(generated.cert_path.read_bytes())
        assert certificate.subject == certificate.issuer
        san = certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        assert san.get_values_for_type(x509.DNSName) == ["webhook.test.svc"]
        assert b"PRIVATE KEY" in generated.key_path.read_bytes()
    finally:
        generated.remove()
    assert not generated.directory.exists()


class _FakeProcess:
    def __init__(self, alive: bool = True) -> None:
        self.alive = alive
        self.terminated = False

    def is_alive(self) -> bool:
        return self.alive

    def terminate(self) -> None:
        self.terminated = True
        self.alive = False

    def wait(self) -> None:
        return None


def _process(tmp_path: Path, fake: _FakeProcess | None) -> ControllerProcess:
    process = ControllerProcess("manager", [], tmp_path / "manager.log")
    process._process = fake
    return process


def test_stop_terminates_running_controller(tmp_path: Path) -> None:
    fake = _FakeProcess()
    process = _process(tmp_path, fake)

    process.stop()
    process.stop()

    assert fake.terminated
    assert not process.is_alive()


def test_stop_before_start_is_a_no_op(tmp_path: Path) -> None:
    _process(tmp_path, None).stop()


def test_early_exit_is_not_retried(tmp_path: Path, no_sleep: list[float]) -> None:
    process = _process(tmp_path, _FakeProcess(alive=False))
    policy = dataclasses.replace(
        RetryPolicy(retryable=lambda err: not isinstance(err, ControllerExited)), sleep=no_sleep.append,
    )

    with pytest.raises(ControllerExited):
        wait_for_controller(process, policy)
    assert no_sleep == []


def test_health_is_polled_until_ok(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, no_sleep: list[float],
) -> None:
    attempts: list[str] = []

    def _check(process: ControllerProcess) -> None:
        attempts.append("check")
        if len(attempts) < 3:
            raise ConnectionError("not listening yet")

    monkeypatch.setattr(controller, "check_controller_health", _check)
    process = _process(tmp_path, _FakeProcess())

    wait_for_controller(process, RetryPolicy(max_attempts=5, sleep=no_sleep.append))

    assert len(attempts) == 3


def test_cancelled_wait_does_not_poll(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(controller, "check_controller_health", lambda process: pytest.fail("health polled"))
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(SetupCancelled):
        wait_for_controller(_process(tmp_path, _FakeProcess()), cancel=cancel)
