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

"""Cluster subcommands (create, delete) for reusable kind clusters."""

from __future__ import annotations

import typer

from testenv_manager import console
from testenv_manager.cluster import ClusterType, KindProvisioner
from testenv_manager.descriptor import ephemeral_cluster_name, parse_cluster_version
from testenv_manager.errors import TestEnvError

app = typer.Typer(help="Manage kind clusters reusable through KONG_TEST_CLUSTER.")


@app.command("create")
def create(
    name: str | None = typer.Option(None, "--name", help="kind cluster name"),
    version: str | None = typer.Option(None, "--version", help="Kubernetes version (MAJOR.MINOR.PATCH)"),
) -> None:
    """Create a kind cluster that outlives test runs."""
    try:
        parsed = parse_cluster_version(version) if version else None
        cluster = KindProvisioner().create(name or ephemeral_cluster_name(), parsed)
    except TestEnvError as err:
        console.print(f"[red]\u274c {err}[/red]")
        raise typer.Exit(err.exit_code) from err
    cluster.close()
    console.print(f"[green]\u2705 reuse it with KONG_TEST_CLUSTER={ClusterType.KIND.value}:{cluster.name}[/green]")


@app.command("delete")
def delete(
    name: str = typer.Option(..., "--name", help="kind cluster name"),
) -> None:
    """Delete a kind cluster."""
    provisioner = KindProvisioner()
    try:
        cluster = provisioner.attach(name)
    except TestEnvError as err:
        console.print(f"[red]\u274c {err}[/red]")
        raise typer.Exit(err.exit_code) from err
    try:
        provisioner.destroy(cluster)
    finally:
        cluster.close()
